# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Compliance risk scoring over normalized findings."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from ..config import _int_env
from ..errors import ScoringError
from ..models.finding import Finding, FindingKind, Severity
from ..models.rules import RiskRule, RiskRuleSet, RuleCategory
from ..models.scan import RiskAssessment, RiskFactor, RiskLevel
from .patterns import select_rule

logger = logging.getLogger(__name__)

FACTOR_HIGH_RISK_LICENSE = "high_risk_license"
FACTOR_COPYLEFT_LICENSE = "copyleft_license"
FACTOR_UNKNOWN_LICENSE = "unknown_license"
FACTOR_OTHER_LICENSE = "other_license"
FACTOR_PERMISSIVE_LICENSE = "permissive_license"
FACTOR_MISSING_SPDX = "missing_spdx"
FACTOR_LOW_CONFIDENCE = "low_confidence"
FACTOR_NO_LICENSE = "no_license"
FACTOR_EXPORT_CONTROL = "export_control"
FACTOR_CRYPTOGRAPHY = "cryptography"
FACTOR_LICENSE_DIVERSITY = "license_diversity"

FACTOR_ORDER: tuple[str, ...] = (
    FACTOR_HIGH_RISK_LICENSE,
    FACTOR_COPYLEFT_LICENSE,
    FACTOR_UNKNOWN_LICENSE,
    FACTOR_OTHER_LICENSE,
    FACTOR_PERMISSIVE_LICENSE,
    FACTOR_MISSING_SPDX,
    FACTOR_LOW_CONFIDENCE,
    FACTOR_NO_LICENSE,
    FACTOR_EXPORT_CONTROL,
    FACTOR_CRYPTOGRAPHY,
    FACTOR_LICENSE_DIVERSITY,
)

_CATEGORY_FACTOR: dict[RuleCategory, str] = {
    RuleCategory.PROPRIETARY: FACTOR_HIGH_RISK_LICENSE,
    RuleCategory.COPYLEFT: FACTOR_COPYLEFT_LICENSE,
    RuleCategory.UNKNOWN: FACTOR_UNKNOWN_LICENSE,
    RuleCategory.OTHER: FACTOR_OTHER_LICENSE,
    RuleCategory.PERMISSIVE: FACTOR_PERMISSIVE_LICENSE,
}

_LICENSE_FACTOR_TEXT: dict[str, tuple[Severity, str]] = {
    FACTOR_HIGH_RISK_LICENSE: (Severity.HIGH, "Proprietary or commercial licenses detected, usage restrictions likely"),
    FACTOR_COPYLEFT_LICENSE: (Severity.HIGH, "Copyleft licenses detected, derivative works may need to be released"),
    FACTOR_UNKNOWN_LICENSE: (Severity.MEDIUM, "Unknown or unrecognized licenses detected, unclear usage rights"),
    FACTOR_OTHER_LICENSE: (Severity.LOW, "Licenses with additional obligations detected"),
    FACTOR_PERMISSIVE_LICENSE: (Severity.LOW, "Permissive licenses with configured risk weight detected"),
}


@dataclass(frozen=True)
class RiskPolicy:
    """
    Tunable weights and thresholds for `score_findings`.

    Level boundaries are inclusive lower bounds: a score of `medium_at` is
    medium, `high_at` is high and `critical_at` is critical.
    """

    unknown_weight: int = 8
    missing_spdx_weight: int = 2
    no_license_weight: int = 8
    cryptography_weight: int = 10
    export_weights: dict[Severity, int] = field(
        default_factory=lambda: {
            Severity.CRITICAL: 20,
            Severity.HIGH: 12,
            Severity.MEDIUM: 6,
            Severity.LOW: 2,
        }
    )
    unspecified_export_weight: int = 6
    # (confidence upper bound, points), checked in order
    low_confidence_tiers: tuple[tuple[float, int], ...] = ((0.5, 15), (0.7, 8))
    # (minimum distinct license names, points), checked in order
    diversity_tiers: tuple[tuple[int, int], ...] = ((16, 10), (10, 6), (5, 3))
    medium_at: int = 26
    high_at: int = 51
    critical_at: int = 76
    max_details: int = 10

    @classmethod
    def from_env(cls) -> RiskPolicy:
        medium_at = _int_env("LEGALGUARD_RISK_MEDIUM_AT", cls.medium_at)
        high_at = _int_env("LEGALGUARD_RISK_HIGH_AT", cls.high_at)
        critical_at = _int_env("LEGALGUARD_RISK_CRITICAL_AT", cls.critical_at)
        if not 0 < medium_at < high_at < critical_at <= 100:
            logger.warning(
                "Ignoring invalid risk thresholds (%s, %s, %s); using defaults", medium_at, high_at, critical_at
            )
            medium_at, high_at, critical_at = cls.medium_at, cls.high_at, cls.critical_at
        return cls(
            unknown_weight=_int_env("LEGALGUARD_RISK_UNKNOWN_WEIGHT", cls.unknown_weight),
            medium_at=medium_at,
            high_at=high_at,
            critical_at=critical_at,
        )

    def level_for(self, score: int) -> RiskLevel:
        if score >= self.critical_at:
            return RiskLevel.CRITICAL
        if score >= self.high_at:
            return RiskLevel.HIGH
        if score >= self.medium_at:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    def export_weight(self, severity: Severity | None) -> int:
        if severity is None:
            return self.unspecified_export_weight
        return self.export_weights.get(severity, self.unspecified_export_weight)


DEFAULT_POLICY = RiskPolicy()


@dataclass
class _LicenseStats:
    files: set[str] = field(default_factory=set)
    has_spdx: bool = False
    min_confidence: float | None = None


def _bounded_details(items: Iterable[str], limit: int) -> list[str]:
    unique = sorted(set(items))
    if limit > 0 and len(unique) > limit:
        return unique[:limit] + [f"... and {len(unique) - limit} more"]
    return unique


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


def _export_label(finding: Finding) -> str:
    label = f"{finding.file_path}:{finding.line}" if finding.line is not None else finding.file_path
    if finding.check_id:
        label = f"{label} ({finding.check_id})"
    return label


def _export_rank(finding: Finding) -> tuple[int, bool]:
    return (finding.severity.rank if finding.severity else 0, finding.cryptography)


def _validate(findings: Iterable[Finding], rules: RiskRuleSet | Iterable[RiskRule]) -> tuple[list[Finding], list[RiskRule]]:
    try:
        items = list(findings)
        rule_list = list(rules)
    except TypeError as exc:
        raise ScoringError(f"scoring input is not iterable: {exc}") from exc

    for item in items:
        if not isinstance(item, Finding):
            raise ScoringError(f"cannot score {type(item).__name__}; expected Finding")
        if item.confidence is not None and not 0.0 <= item.confidence <= 1.0:
            raise ScoringError(f"confidence out of range for {item.name!r}: {item.confidence}")
    for rule in rule_list:
        if not isinstance(rule, RiskRule):
            raise ScoringError(f"cannot score with {type(rule).__name__}; expected RiskRule")
    return items, rule_list


def score_findings(
    findings: Iterable[Finding],
    rules: RiskRuleSet | Iterable[RiskRule],
    policy: RiskPolicy = DEFAULT_POLICY,
) -> RiskAssessment:
    """
    Fold findings into a clamped 0..100 score, a level and itemized factors.

    Every contribution is computed over distinct items, so the result does not
    depend on the order or multiplicity of `findings`.
    """
    items, rule_list = _validate(findings, rules)

    licenses: dict[str, _LicenseStats] = {}
    exports: dict[tuple, Finding] = {}
    for finding in items:
        if finding.kind == FindingKind.LICENSE and finding.name:
            stats = licenses.setdefault(finding.name, _LicenseStats())
            stats.files.add(finding.file_path)
            if finding.spdx_id:
                stats.has_spdx = True
            if finding.confidence is not None:
                if stats.min_confidence is None or finding.confidence < stats.min_confidence:
                    stats.min_confidence = finding.confidence
        elif finding.kind == FindingKind.EXPORT_CONTROL:
            key = finding.dedupe_key()
            existing = exports.get(key)
            if existing is None or _export_rank(finding) > _export_rank(existing):
                exports[key] = finding

    score = 0
    factors: dict[str, RiskFactor] = {}

    # License weights, once per distinct name.
    by_factor: dict[str, list[str]] = {}
    for name in sorted(licenses):
        rule = select_rule(name, rule_list)
        if rule is None:
            weight, category = policy.unknown_weight, RuleCategory.UNKNOWN
        else:
            weight, category = rule.weight, rule.category
        score += weight
        if weight > 0:
            by_factor.setdefault(_CATEGORY_FACTOR[category], []).append(name)

    for factor_name, names in by_factor.items():
        severity, description = _LICENSE_FACTOR_TEXT[factor_name]
        factors[factor_name] = RiskFactor(
            category=factor_name,
            severity=severity,
            description=description,
            affected_count=len(names),
            details=_bounded_details(
                (f"{name} ({_plural(len(licenses[name].files), 'file')})" for name in names), policy.max_details
            ),
        )

    missing = [name for name, stats in licenses.items() if not stats.has_spdx]
    if missing:
        score += policy.missing_spdx_weight * len(missing)
        factors[FACTOR_MISSING_SPDX] = RiskFactor(
            category=FACTOR_MISSING_SPDX,
            severity=Severity.MEDIUM,
            description="Licenses without SPDX identifiers, ambiguous or non-standard",
            affected_count=len(missing),
            details=_bounded_details(missing, policy.max_details),
        )

    low_conf_points = 0
    low_conf_names: list[str] = []
    severe = False
    for name, stats in licenses.items():
        if stats.min_confidence is None:
            continue
        for bound, points in policy.low_confidence_tiers:
            if stats.min_confidence < bound:
                low_conf_points += points
                low_conf_names.append(f"{name} ({int(stats.min_confidence * 100)}% confidence)")
                if bound == policy.low_confidence_tiers[0][0]:
                    severe = True
                break
    if low_conf_names:
        score += low_conf_points
        factors[FACTOR_LOW_CONFIDENCE] = RiskFactor(
            category=FACTOR_LOW_CONFIDENCE,
            severity=Severity.HIGH if severe else Severity.MEDIUM,
            description="Low confidence license detections, manual review recommended",
            affected_count=len(low_conf_names),
            details=_bounded_details(low_conf_names, policy.max_details),
        )

    if items and not any(f.kind == FindingKind.LICENSE for f in items):
        score += policy.no_license_weight
        factors[FACTOR_NO_LICENSE] = RiskFactor(
            category=FACTOR_NO_LICENSE,
            severity=Severity.MEDIUM,
            description="No license information found in the repository",
            affected_count=len({f.file_path for f in items}),
        )

    if exports:
        export_points = 0
        worst = Severity.MEDIUM
        for finding in exports.values():
            export_points += policy.export_weight(finding.severity)
            if finding.severity is not None and finding.severity.rank > worst.rank:
                worst = finding.severity
        score += export_points
        factors[FACTOR_EXPORT_CONTROL] = RiskFactor(
            category=FACTOR_EXPORT_CONTROL,
            severity=worst,
            description="Export control relevant code detected, compliance review recommended",
            affected_count=len(exports),
            details=_bounded_details((_export_label(f) for f in exports.values()), policy.max_details),
        )

        crypto = [f for f in exports.values() if f.cryptography]
        if crypto:
            score += policy.cryptography_weight
            factors[FACTOR_CRYPTOGRAPHY] = RiskFactor(
                category=FACTOR_CRYPTOGRAPHY,
                severity=Severity.HIGH,
                description="Cryptographic functionality detected, may be subject to export regulations",
                affected_count=len(crypto),
                details=_bounded_details((_export_label(f) for f in crypto), policy.max_details),
            )

    name_count = len(licenses)
    for minimum, points in policy.diversity_tiers:
        if name_count >= minimum:
            score += points
            factors[FACTOR_LICENSE_DIVERSITY] = RiskFactor(
                category=FACTOR_LICENSE_DIVERSITY,
                severity=Severity.LOW,
                description=f"High license diversity ({name_count} distinct licenses), check compatibility",
                affected_count=name_count,
                details=_bounded_details(licenses, policy.max_details),
            )
            break

    score = max(0, min(score, 100))
    ordered = [factors[name] for name in FACTOR_ORDER if name in factors]
    return RiskAssessment(score=score, level=policy.level_for(score), factors=ordered)


__all__ = [
    "DEFAULT_POLICY",
    "FACTOR_ORDER",
    "RiskPolicy",
    "score_findings",
]
