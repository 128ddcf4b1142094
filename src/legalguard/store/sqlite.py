# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""SQLite-backed ScanStore."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ..errors import ScanNotFoundError, StoreError
from ..models.finding import Finding
from ..models.rules import RiskRuleSet
from ..models.scan import Scan, ScanStatus
from ..risk.rules import default_rules

logger = logging.getLogger(__name__)

_TRANSIENT_MARKERS = ("database is locked", "database is busy", "database table is locked")


def _is_transient(exc: sqlite3.Error) -> bool:
    return isinstance(exc, sqlite3.OperationalError) and any(m in str(exc).lower() for m in _TRANSIENT_MARKERS)


class SqliteScanStore:
    """
    Scan store on a single SQLite database file.

    Findings reference their scan with ``ON DELETE CASCADE``; the
    ``risk_rules`` table is seeded with the default weights the first time the
    database is created.
    """

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS scans (
        id TEXT PRIMARY KEY,
        source_location TEXT NOT NULL,
        created_at TEXT NOT NULL,
        started_at TEXT,
        completed_at TEXT,
        error TEXT,
        sub_status_json TEXT NOT NULL DEFAULT '{}',
        risk_json TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_scans_created_at ON scans(created_at);

    CREATE TABLE IF NOT EXISTS findings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        scan_id TEXT NOT NULL REFERENCES scans(id) ON DELETE CASCADE,
        kind TEXT NOT NULL CHECK (kind IN ('license', 'copyright', 'export_control')),
        file_path TEXT NOT NULL,
        backend TEXT NOT NULL,
        payload_json TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_findings_scan_id ON findings(scan_id);

    CREATE TABLE IF NOT EXISTS risk_rules (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        pattern TEXT NOT NULL UNIQUE,
        weight INTEGER NOT NULL,
        category TEXT NOT NULL CHECK (category IN ('copyleft', 'permissive', 'proprietary', 'unknown', 'other')),
        description TEXT
    );
    """

    def __init__(self, db_path: str | Path, *, timeout: float = 5.0, seed_rules: RiskRuleSet | None = None) -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(self.db_path, timeout=timeout, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.executescript(self.SCHEMA)
            self._conn.commit()
            self._seed_rules(seed_rules if seed_rules is not None else default_rules())
        except sqlite3.Error as exc:
            raise StoreError(f"cannot open database {self.db_path}: {exc}", transient=_is_transient(exc)) from exc

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> SqliteScanStore:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise StoreError(str(exc), transient=_is_transient(exc)) from exc
            except Exception:
                self._conn.rollback()
                raise

    def _seed_rules(self, rules: RiskRuleSet) -> None:
        count = self._conn.execute("SELECT COUNT(*) AS n FROM risk_rules").fetchone()["n"]
        if count:
            return
        self._conn.executemany(
            "INSERT INTO risk_rules (pattern, weight, category, description) VALUES (?, ?, ?, ?)",
            [(r.pattern, r.weight, r.category.value, r.description) for r in rules],
        )
        self._conn.commit()
        logger.debug("Seeded %d risk rules into %s", len(rules), self.db_path)

    # Scans

    @staticmethod
    def _scan_params(scan: Scan) -> tuple[Any, ...]:
        return (
            scan.id,
            scan.source_location,
            scan.created_at.isoformat(),
            scan.started_at.isoformat() if scan.started_at else None,
            scan.completed_at.isoformat() if scan.completed_at else None,
            scan.error,
            json.dumps({name: state.to_dict() for name, state in scan.sub_status.items()}),
            json.dumps(scan.risk.to_dict()) if scan.risk else None,
        )

    @staticmethod
    def _row_to_scan(row: sqlite3.Row) -> Scan:
        return Scan.from_dict(
            {
                "id": row["id"],
                "source_location": row["source_location"],
                "created_at": row["created_at"],
                "started_at": row["started_at"],
                "completed_at": row["completed_at"],
                "error": row["error"],
                "sub_status": json.loads(row["sub_status_json"]),
                "risk": json.loads(row["risk_json"]) if row["risk_json"] else None,
            }
        )

    def create(self, scan: Scan) -> None:
        try:
            with self.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO scans (
                        id, source_location, created_at, started_at, completed_at,
                        error, sub_status_json, risk_json
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    self._scan_params(scan),
                )
        except StoreError as exc:
            if "UNIQUE constraint failed" in str(exc):
                raise StoreError(f"scan {scan.id} already exists") from exc
            raise

    def update(self, scan: Scan) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO scans (
                    id, source_location, created_at, started_at, completed_at,
                    error, sub_status_json, risk_json
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    source_location = excluded.source_location,
                    created_at = excluded.created_at,
                    started_at = excluded.started_at,
                    completed_at = excluded.completed_at,
                    error = excluded.error,
                    sub_status_json = excluded.sub_status_json,
                    risk_json = excluded.risk_json
                """,
                self._scan_params(scan),
            )

    def get(self, scan_id: str) -> Scan:
        with self.transaction() as conn:
            row = conn.execute("SELECT * FROM scans WHERE id = ?", (scan_id,)).fetchone()
        if row is None:
            raise ScanNotFoundError(f"scan {scan_id} not found")
        return self._row_to_scan(row)

    def list(self, status: ScanStatus | None = None) -> list[Scan]:
        with self.transaction() as conn:
            rows = conn.execute("SELECT * FROM scans ORDER BY created_at, rowid").fetchall()
        scans = [self._row_to_scan(row) for row in rows]
        if status is None:
            return scans
        return [scan for scan in scans if scan.overall_status == status]

    def delete(self, scan_id: str) -> None:
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM scans WHERE id = ?", (scan_id,))
            deleted = cursor.rowcount
        if not deleted:
            raise ScanNotFoundError(f"scan {scan_id} not found")

    def delete_all(self) -> int:
        """Delete every scan; findings go with them. Returns the number of scans removed."""
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM scans")
            deleted = cursor.rowcount
        return deleted

    # Findings

    def append_findings(self, scan_id: str, findings: Iterable[Finding]) -> None:
        rows = []
        for finding in findings:
            data = finding.to_dict()
            rows.append((scan_id, finding.kind.value, finding.file_path, finding.backend, json.dumps(data)))
        with self.transaction() as conn:
            exists = conn.execute("SELECT 1 FROM scans WHERE id = ?", (scan_id,)).fetchone()
            if exists is None:
                raise ScanNotFoundError(f"scan {scan_id} not found")
            conn.executemany(
                "INSERT INTO findings (scan_id, kind, file_path, backend, payload_json) VALUES (?, ?, ?, ?, ?)",
                rows,
            )

    def list_findings(self, scan_id: str) -> list[Finding]:
        with self.transaction() as conn:
            exists = conn.execute("SELECT 1 FROM scans WHERE id = ?", (scan_id,)).fetchone()
            if exists is None:
                raise ScanNotFoundError(f"scan {scan_id} not found")
            rows = conn.execute(
                "SELECT payload_json FROM findings WHERE scan_id = ? ORDER BY id", (scan_id,)
            ).fetchall()
        return [Finding.from_dict(json.loads(row["payload_json"])) for row in rows]

    # Rules

    def list_rules(self) -> RiskRuleSet:
        with self.transaction() as conn:
            rows = conn.execute("SELECT pattern, weight, category, description FROM risk_rules ORDER BY id").fetchall()
        return RiskRuleSet.from_mappings(dict(row) for row in rows)
