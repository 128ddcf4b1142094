# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Persistence contract used by the scan orchestrator."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol

from ..models.finding import Finding
from ..models.rules import RiskRuleSet
from ..models.scan import Scan, ScanStatus


class ScanStore(Protocol):
    """
    Durable record of scans, their findings and the risk rule table.

    Implementations raise `ScanNotFoundError` for unknown ids and `StoreError`
    for persistence failures (`transient=True` when a retry may succeed).
    """

    def create(self, scan: Scan) -> None: ...

    def update(self, scan: Scan) -> None: ...

    def append_findings(self, scan_id: str, findings: Iterable[Finding]) -> None: ...

    def get(self, scan_id: str) -> Scan: ...

    def list(self, status: ScanStatus | None = None) -> list[Scan]: ...

    def delete(self, scan_id: str) -> None: ...

    def delete_all(self) -> int: ...

    def list_findings(self, scan_id: str) -> list[Finding]: ...

    def list_rules(self) -> RiskRuleSet: ...

    def close(self) -> None: ...
