# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Risk scoring exports."""

from .engine import DEFAULT_POLICY, FACTOR_ORDER, RiskPolicy, score_findings
from .patterns import match_pattern, select_rule, specificity
from .rules import DEFAULT_RULE_ROWS, default_rules

__all__ = [
    "DEFAULT_POLICY",
    "DEFAULT_RULE_ROWS",
    "FACTOR_ORDER",
    "RiskPolicy",
    "default_rules",
    "match_pattern",
    "score_findings",
    "select_rule",
    "specificity",
]
