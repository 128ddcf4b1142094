# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Dataclass exports for LegalGuard."""

from .finding import Finding, FindingKind, Severity
from .rules import RiskRule, RiskRuleSet, RuleCategory
from .scan import BackendState, RiskAssessment, RiskFactor, RiskLevel, Scan, ScanStatus, now_utc

__all__ = [
    "BackendState",
    "Finding",
    "FindingKind",
    "RiskAssessment",
    "RiskFactor",
    "RiskLevel",
    "RiskRule",
    "RiskRuleSet",
    "RuleCategory",
    "Scan",
    "ScanStatus",
    "Severity",
    "now_utc",
]
