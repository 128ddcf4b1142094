# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""`%`-wildcard license pattern matching."""

from __future__ import annotations

from collections.abc import Iterable

from ..models.rules import RiskRule

WILDCARD = "%"


def match_pattern(pattern: str, name: str) -> bool:
    """
    Anchored, case-sensitive match where `%` stands for any (possibly empty) sequence.

    >>> match_pattern("GPL-3.0%", "GPL-3.0-only")
    True
    >>> match_pattern("GPL", "GPL-2.0")
    False
    """
    segments = pattern.split(WILDCARD)
    if len(segments) == 1:
        return pattern == name

    head, tail = segments[0], segments[-1]
    if len(name) < len(head) + len(tail):
        return False
    if not name.startswith(head) or not name.endswith(tail):
        return False

    pos = len(head)
    end = len(name) - len(tail)
    for segment in segments[1:-1]:
        if not segment:
            continue
        idx = name.find(segment, pos, end)
        if idx < 0:
            return False
        pos = idx + len(segment)
    return True


def specificity(pattern: str) -> int:
    """Number of literal (non-wildcard) characters in the pattern."""
    return len(pattern) - pattern.count(WILDCARD)


def select_rule(name: str, rules: Iterable[RiskRule]) -> RiskRule | None:
    """
    Pick the rule governing `name`.

    The most specific matching pattern wins; ties go to the higher weight, then
    to the earlier rule.
    """
    best: RiskRule | None = None
    best_key: tuple[int, int] | None = None
    for rule in rules:
        if not match_pattern(rule.pattern, name):
            continue
        key = (specificity(rule.pattern), rule.weight)
        if best_key is None or key > best_key:
            best = rule
            best_key = key
    return best


__all__ = ["WILDCARD", "match_pattern", "select_rule", "specificity"]
