# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""In-process ScanStore."""

from __future__ import annotations

import threading
from collections.abc import Iterable

from ..errors import ScanNotFoundError, StoreError
from ..models.finding import Finding
from ..models.rules import RiskRuleSet
from ..models.scan import Scan, ScanStatus
from ..risk.rules import default_rules


def _snapshot(scan: Scan) -> Scan:
    # Round-trip through to_dict so stored records never alias caller state.
    return Scan.from_dict(scan.to_dict())


class MemoryScanStore:
    """Dictionary-backed store; contents are lost when the process exits."""

    def __init__(self, rules: RiskRuleSet | None = None):
        self._scans: dict[str, Scan] = {}
        self._findings: dict[str, list[Finding]] = {}
        self._rules = rules if rules is not None else default_rules()
        self._lock = threading.Lock()

    def create(self, scan: Scan) -> None:
        with self._lock:
            if scan.id in self._scans:
                raise StoreError(f"scan {scan.id} already exists")
            self._scans[scan.id] = _snapshot(scan)
            self._findings[scan.id] = []

    def update(self, scan: Scan) -> None:
        with self._lock:
            self._scans[scan.id] = _snapshot(scan)
            self._findings.setdefault(scan.id, [])

    def append_findings(self, scan_id: str, findings: Iterable[Finding]) -> None:
        with self._lock:
            if scan_id not in self._scans:
                raise ScanNotFoundError(f"scan {scan_id} not found")
            self._findings[scan_id].extend(findings)

    def get(self, scan_id: str) -> Scan:
        with self._lock:
            try:
                return _snapshot(self._scans[scan_id])
            except KeyError:
                raise ScanNotFoundError(f"scan {scan_id} not found") from None

    def list(self, status: ScanStatus | None = None) -> list[Scan]:
        with self._lock:
            scans = [_snapshot(scan) for scan in self._scans.values()]
        scans.sort(key=lambda s: s.created_at)
        if status is None:
            return scans
        return [scan for scan in scans if scan.overall_status == status]

    def delete(self, scan_id: str) -> None:
        with self._lock:
            if scan_id not in self._scans:
                raise ScanNotFoundError(f"scan {scan_id} not found")
            del self._scans[scan_id]
            self._findings.pop(scan_id, None)

    def delete_all(self) -> int:
        with self._lock:
            count = len(self._scans)
            self._scans.clear()
            self._findings.clear()
        return count

    def list_findings(self, scan_id: str) -> list[Finding]:
        with self._lock:
            if scan_id not in self._scans:
                raise ScanNotFoundError(f"scan {scan_id} not found")
            return list(self._findings.get(scan_id, []))

    def list_rules(self) -> RiskRuleSet:
        return self._rules

    def close(self) -> None:
        return None
