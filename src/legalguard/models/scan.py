# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Scan record, per-backend state and risk assessment models."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .finding import Severity


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_dt(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ScanStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ScanStatus.COMPLETED, ScanStatus.FAILED)


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class BackendState:
    """Lifecycle of one scanner backend within a scan."""

    status: ScanStatus = ScanStatus.PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BackendState:
        return cls(
            status=ScanStatus(data.get("status") or ScanStatus.PENDING.value),
            started_at=_parse_dt(data.get("started_at")),
            completed_at=_parse_dt(data.get("completed_at")),
            error=data.get("error"),
        )


@dataclass
class RiskFactor:
    category: str
    severity: Severity
    description: str
    affected_count: int = 0
    details: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "severity": self.severity.value,
            "description": self.description,
            "affected_count": self.affected_count,
            "details": list(self.details),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RiskFactor:
        return cls(
            category=str(data["category"]),
            severity=Severity(data["severity"]),
            description=str(data.get("description") or ""),
            affected_count=int(data.get("affected_count") or 0),
            details=[str(d) for d in data.get("details") or []],
        )


@dataclass
class RiskAssessment:
    score: int
    level: RiskLevel
    factors: list[RiskFactor] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "level": self.level.value,
            "factors": [f.to_dict() for f in self.factors],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RiskAssessment:
        return cls(
            score=int(data["score"]),
            level=RiskLevel(data["level"]),
            factors=[RiskFactor.from_dict(f) for f in data.get("factors") or []],
        )


@dataclass
class Scan:
    """
    One analysis request and its mutable lifecycle state.

    `overall_status` is derived from `error`, `started_at` and the backend
    states; it is never stored on its own. Clone credentials are not part of
    the record; the orchestrator holds them until the workspace is acquired.
    """

    source_location: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    sub_status: dict[str, BackendState] = field(default_factory=dict)
    created_at: datetime = field(default_factory=now_utc)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None
    risk: RiskAssessment | None = None

    @property
    def overall_status(self) -> ScanStatus:
        from ..scan.status import resolve_overall_status

        if self.error:
            return ScanStatus.FAILED
        status = resolve_overall_status([state.status for state in self.sub_status.values()])
        if status == ScanStatus.PENDING and self.started_at is not None:
            return ScanStatus.IN_PROGRESS
        return status

    @property
    def is_terminal(self) -> bool:
        return self.overall_status.is_terminal

    def backend(self, name: str) -> BackendState:
        return self.sub_status.setdefault(name, BackendState())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source_location": self.source_location,
            "overall_status": self.overall_status.value,
            "sub_status": {name: state.to_dict() for name, state in self.sub_status.items()},
            "created_at": _iso(self.created_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "error": self.error,
            "risk": self.risk.to_dict() if self.risk else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Scan:
        risk = data.get("risk")
        return cls(
            id=str(data["id"]),
            source_location=str(data["source_location"]),
            sub_status={name: BackendState.from_dict(state) for name, state in (data.get("sub_status") or {}).items()},
            created_at=_parse_dt(data.get("created_at")) or now_utc(),
            started_at=_parse_dt(data.get("started_at")),
            completed_at=_parse_dt(data.get("completed_at")),
            error=data.get("error"),
            risk=RiskAssessment.from_dict(risk) if risk else None,
        )


__all__ = [
    "BackendState",
    "RiskAssessment",
    "RiskFactor",
    "RiskLevel",
    "Scan",
    "ScanStatus",
    "now_utc",
]
