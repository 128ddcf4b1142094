# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""License risk rule configuration."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Any


class RuleCategory(str, Enum):
    COPYLEFT = "copyleft"
    PERMISSIVE = "permissive"
    PROPRIETARY = "proprietary"
    UNKNOWN = "unknown"
    OTHER = "other"


@dataclass(frozen=True)
class RiskRule:
    """
    Weight assigned to license names matching `pattern`.

    `%` in the pattern matches any sequence of characters; every other
    character matches itself, case-sensitively.
    """

    pattern: str
    weight: int
    category: RuleCategory = RuleCategory.OTHER
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "pattern": self.pattern,
            "weight": self.weight,
            "category": self.category.value,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RiskRule:
        return cls(
            pattern=str(data["pattern"]),
            weight=int(data["weight"]),
            category=RuleCategory(data.get("category") or RuleCategory.OTHER.value),
            description=data.get("description"),
        )


class RiskRuleSet:
    """Immutable, ordered collection of rules with unique patterns."""

    def __init__(self, rules: Iterable[RiskRule] = ()):
        seen: set[str] = set()
        ordered: list[RiskRule] = []
        for rule in rules:
            if not isinstance(rule, RiskRule):
                raise TypeError(f"expected RiskRule, got {type(rule).__name__}")
            if not rule.pattern:
                raise ValueError("rule pattern must not be empty")
            if rule.pattern in seen:
                raise ValueError(f"duplicate rule pattern: {rule.pattern!r}")
            seen.add(rule.pattern)
            ordered.append(rule)
        self._rules: tuple[RiskRule, ...] = tuple(ordered)

    def __iter__(self) -> Iterator[RiskRule]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __repr__(self) -> str:
        return f"RiskRuleSet({len(self._rules)} rules)"

    @property
    def rules(self) -> tuple[RiskRule, ...]:
        return self._rules

    def get(self, pattern: str) -> RiskRule | None:
        for rule in self._rules:
            if rule.pattern == pattern:
                return rule
        return None

    def with_rule(self, rule: RiskRule) -> RiskRuleSet:
        """Return a new set with `rule` added, replacing any rule with the same pattern in place."""
        replaced = False
        updated: list[RiskRule] = []
        for existing in self._rules:
            if existing.pattern == rule.pattern:
                updated.append(rule)
                replaced = True
            else:
                updated.append(existing)
        if not replaced:
            updated.append(rule)
        return RiskRuleSet(updated)

    @classmethod
    def from_mappings(cls, rows: Iterable[dict[str, Any]]) -> RiskRuleSet:
        return cls(RiskRule.from_dict(row) for row in rows)


__all__ = ["RiskRule", "RiskRuleSet", "RuleCategory"]
