# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Scan orchestration exports."""

from .orchestrator import INTERRUPTED_ERROR, SCORING_FAILED_ERROR, BackfillReport, ScanOrchestrator
from .status import resolve_overall_status

__all__ = [
    "INTERRUPTED_ERROR",
    "SCORING_FAILED_ERROR",
    "BackfillReport",
    "ScanOrchestrator",
    "resolve_overall_status",
]
