# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Default license risk weights."""

from ..models.rules import RiskRule, RiskRuleSet, RuleCategory

_C = RuleCategory

# (pattern, weight, category, description)
DEFAULT_RULE_ROWS: list[tuple[str, int, RuleCategory, str]] = [
    # Strong copyleft
    ("GPL-3.0%", 10, _C.COPYLEFT, "GPLv3 strong copyleft, may require releasing derivative works"),
    ("GPL-2.0%", 10, _C.COPYLEFT, "GPLv2 strong copyleft, may require releasing derivative works"),
    ("GPL", 10, _C.COPYLEFT, "GPL without a version number"),
    ("AGPL%", 12, _C.COPYLEFT, "Affero GPL, copyleft triggered by network use"),
    ("Sleepycat", 10, _C.COPYLEFT, "Sleepycat license copyleft requirements"),
    # Weak copyleft
    ("LGPL%", 5, _C.COPYLEFT, "Lesser GPL, weak copyleft"),
    ("MPL%", 5, _C.COPYLEFT, "Mozilla Public License, file-level copyleft"),
    ("EPL%", 5, _C.COPYLEFT, "Eclipse Public License, weak copyleft"),
    ("CDDL%", 5, _C.COPYLEFT, "Common Development and Distribution License, weak copyleft"),
    ("CPL%", 5, _C.COPYLEFT, "Common Public License, weak copyleft"),
    # Proprietary
    ("%Proprietary%", 15, _C.PROPRIETARY, "Proprietary license, usage restrictions likely"),
    ("%Commercial%", 15, _C.PROPRIETARY, "Commercial license, may require payment or agreement"),
    # Unknown
    ("No_license_found", 8, _C.UNKNOWN, "No license detected, unclear usage rights"),
    ("See-file", 6, _C.UNKNOWN, "License in a separate file, requires manual review"),
    ("Unknown%", 8, _C.UNKNOWN, "Unrecognized license, requires manual review"),
    ("%possibility", 6, _C.UNKNOWN, "Uncertain license detection"),
    # Permissive
    ("MIT", 0, _C.PERMISSIVE, "MIT License"),
    ("Apache-2.0", 0, _C.PERMISSIVE, "Apache License 2.0"),
    ("Apache", 0, _C.PERMISSIVE, "Apache License"),
    ("BSD%", 0, _C.PERMISSIVE, "BSD license family"),
    ("ISC", 0, _C.PERMISSIVE, "ISC License"),
    ("0BSD", 0, _C.PERMISSIVE, "Zero-Clause BSD"),
    ("CC0%", 0, _C.PERMISSIVE, "Creative Commons Zero"),
    ("Unlicense", 0, _C.PERMISSIVE, "Unlicense"),
    ("WTFPL", 0, _C.PERMISSIVE, "WTFPL"),
    ("Zlib", 0, _C.PERMISSIVE, "Zlib License"),
    ("Curl", 0, _C.PERMISSIVE, "Curl License"),
    ("Libpng", 0, _C.PERMISSIVE, "Libpng License"),
    ("Python%", 0, _C.PERMISSIVE, "Python Software Foundation License"),
    ("CC-BY%", 1, _C.OTHER, "Creative Commons Attribution, requires attribution"),
    ("AFL%", 0, _C.PERMISSIVE, "Academic Free License"),
    ("BlueOak%", 0, _C.PERMISSIVE, "Blue Oak Model License"),
    ("Boost%", 0, _C.PERMISSIVE, "Boost Software License"),
    ("PostgreSQL", 0, _C.PERMISSIVE, "PostgreSQL License"),
]


def default_rules() -> RiskRuleSet:
    return RiskRuleSet(
        RiskRule(pattern=pattern, weight=weight, category=category, description=description)
        for pattern, weight, category, description in DEFAULT_RULE_ROWS
    )


__all__ = ["DEFAULT_RULE_ROWS", "default_rules"]
