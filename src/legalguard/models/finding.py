# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Normalized finding model shared by every scanner backend."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


class FindingKind(str, Enum):
    LICENSE = "license"
    COPYRIGHT = "copyright"
    EXPORT_CONTROL = "export_control"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def parse(cls, value: Any) -> Severity | None:
        """Lenient parse: unknown or empty values yield None."""
        if isinstance(value, Severity):
            return value
        raw = str(value or "").strip().lower()
        try:
            return cls(raw)
        except ValueError:
            return None


_SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


@dataclass(frozen=True)
class Finding:
    """
    One detected item.

    Only the payload fields relevant to `kind` are populated:

    - license: `name`, `spdx_id`, `confidence`
    - copyright: `statement`, `holders`, `years`
    - export_control: `content`, `line`, `check_id`, `source`, `cryptography`
    """

    kind: FindingKind
    file_path: str
    backend: str = ""
    severity: Severity | None = None
    name: str | None = None
    spdx_id: str | None = None
    confidence: float | None = None
    statement: str | None = None
    holders: tuple[str, ...] = field(default_factory=tuple)
    years: tuple[str, ...] = field(default_factory=tuple)
    content: str | None = None
    line: int | None = None
    check_id: str | None = None
    source: str | None = None
    cryptography: bool = False

    @classmethod
    def license(
        cls,
        file_path: str,
        name: str,
        *,
        spdx_id: str | None = None,
        confidence: float | None = None,
        backend: str = "",
    ) -> Finding:
        return cls(
            kind=FindingKind.LICENSE,
            file_path=file_path,
            backend=backend,
            name=name,
            spdx_id=spdx_id,
            confidence=confidence,
        )

    @classmethod
    def copyright(
        cls,
        file_path: str,
        statement: str,
        *,
        holders: tuple[str, ...] | list[str] = (),
        years: tuple[str, ...] | list[str] = (),
        backend: str = "",
    ) -> Finding:
        return cls(
            kind=FindingKind.COPYRIGHT,
            file_path=file_path,
            backend=backend,
            statement=statement,
            holders=tuple(holders),
            years=tuple(years),
        )

    @classmethod
    def export_control(
        cls,
        file_path: str,
        content: str,
        *,
        severity: Severity | None = None,
        line: int | None = None,
        check_id: str | None = None,
        source: str | None = None,
        cryptography: bool = False,
        backend: str = "",
    ) -> Finding:
        return cls(
            kind=FindingKind.EXPORT_CONTROL,
            file_path=file_path,
            backend=backend,
            severity=severity,
            content=content,
            line=line,
            check_id=check_id,
            source=source,
            cryptography=cryptography,
        )

    def with_backend(self, backend: str) -> Finding:
        """Return a copy tagged with the producing backend."""
        if self.backend == backend:
            return self
        return replace(self, backend=backend)

    def dedupe_key(self) -> tuple[Any, ...]:
        """Identity used when scoring; repeated reports of the same item collapse."""
        if self.kind == FindingKind.LICENSE:
            return (self.kind.value, self.name)
        if self.kind == FindingKind.EXPORT_CONTROL:
            return (self.kind.value, self.file_path, self.line, self.check_id, self.content)
        return (self.kind.value, self.file_path, self.statement)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "kind": self.kind.value,
            "file_path": self.file_path,
            "backend": self.backend,
            "severity": self.severity.value if self.severity else None,
        }
        if self.kind == FindingKind.LICENSE:
            data.update(name=self.name, spdx_id=self.spdx_id, confidence=self.confidence)
        elif self.kind == FindingKind.COPYRIGHT:
            data.update(statement=self.statement, holders=list(self.holders), years=list(self.years))
        else:
            data.update(
                content=self.content,
                line=self.line,
                check_id=self.check_id,
                source=self.source,
                cryptography=self.cryptography,
            )
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Finding:
        confidence = data.get("confidence")
        line = data.get("line")
        return cls(
            kind=FindingKind(data["kind"]),
            file_path=str(data.get("file_path") or ""),
            backend=str(data.get("backend") or ""),
            severity=Severity.parse(data.get("severity")),
            name=data.get("name"),
            spdx_id=data.get("spdx_id"),
            confidence=float(confidence) if confidence is not None else None,
            statement=data.get("statement"),
            holders=tuple(data.get("holders") or ()),
            years=tuple(data.get("years") or ()),
            content=data.get("content"),
            line=int(line) if line is not None else None,
            check_id=data.get("check_id"),
            source=data.get("source"),
            cryptography=bool(data.get("cryptography", False)),
        )


__all__ = ["Finding", "FindingKind", "Severity"]
