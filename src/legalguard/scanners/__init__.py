# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Scanner adapters."""

from .base import (
    HealthState,
    HealthStatus,
    JobHandle,
    JobState,
    ScannerAdapter,
    backoff_delays,
    run_adapter,
    wait_for_terminal,
)
from .fossology import FossologyAdapter
from .registry import build_default_adapters
from .semgrep import SemgrepAdapter

__all__ = [
    "FossologyAdapter",
    "HealthState",
    "HealthStatus",
    "JobHandle",
    "JobState",
    "ScannerAdapter",
    "SemgrepAdapter",
    "backoff_delays",
    "build_default_adapters",
    "run_adapter",
    "wait_for_terminal",
]
