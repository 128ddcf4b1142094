# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
LegalGuard package entrypoint.

LegalGuard clones a git repository, runs a license/copyright backend and an
export-control backend against it concurrently, normalizes what they report
into findings and scores the aggregate legal risk. Backends sit behind the
`ScannerAdapter` contract, HTTP and subprocess I/O are injectable, and domain
objects are typed dataclasses.
"""

from .config import Settings, load_settings
from .errors import (
    AcquisitionError,
    LegalGuardError,
    ParseError,
    ScanNotFoundError,
    ScannerError,
    ScanStateError,
    ScoringError,
    StoreError,
    SubmissionError,
)
from .export import build_spdx_document
from .log import setup_logging
from .models import Finding, FindingKind, RiskAssessment, RiskLevel, RiskRule, RiskRuleSet, Scan, ScanStatus, Severity
from .risk import RiskPolicy, default_rules, score_findings
from .runtime import LegalGuard
from .scan import BackfillReport, ScanOrchestrator
from .scanners import FossologyAdapter, ScannerAdapter, SemgrepAdapter
from .store import MemoryScanStore, SqliteScanStore, create_store
from .version import __version__

__all__ = [
    "AcquisitionError",
    "BackfillReport",
    "Finding",
    "FindingKind",
    "FossologyAdapter",
    "LegalGuard",
    "LegalGuardError",
    "MemoryScanStore",
    "ParseError",
    "RiskAssessment",
    "RiskLevel",
    "RiskPolicy",
    "RiskRule",
    "RiskRuleSet",
    "Scan",
    "ScanNotFoundError",
    "ScanOrchestrator",
    "ScanStateError",
    "ScanStatus",
    "ScannerAdapter",
    "ScannerError",
    "ScoringError",
    "SemgrepAdapter",
    "Settings",
    "Severity",
    "SqliteScanStore",
    "StoreError",
    "SubmissionError",
    "__version__",
    "build_spdx_document",
    "create_store",
    "default_rules",
    "load_settings",
    "score_findings",
    "setup_logging",
]
