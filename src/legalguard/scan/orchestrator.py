# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Scan lifecycle: queueing, workspace acquisition, concurrent backends, scoring."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeVar

from ..config import PollSettings, StoreSettings
from ..errors import (
    AcquisitionError,
    ScanNotFoundError,
    ScanStateError,
    StoreError,
    describe_exception,
)
from ..models.finding import Finding
from ..models.scan import BackendState, Scan, ScanStatus, now_utc
from ..risk.engine import DEFAULT_POLICY, RiskPolicy, score_findings
from ..scanners.base import HealthState, HealthStatus, ScannerAdapter, Sleep, run_adapter
from ..store.base import ScanStore
from ..workspace import Workspace, WorkspaceManager

logger = logging.getLogger(__name__)

INTERRUPTED_ERROR = "interrupted before completion"
SCORING_FAILED_ERROR = "scoring failed"

T = TypeVar("T")


def _error_text(exc: BaseException) -> str:
    text = str(exc).strip()
    return text or describe_exception(exc)


@dataclass
class BackfillReport:
    """Outcome of `ScanOrchestrator.backfill_risk`: scored scan ids and per-scan errors."""

    updated: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"updated": list(self.updated), "failed": dict(self.failed)}


class ScanOrchestrator:
    """
    Runs scans one at a time.

    Accepted scans wait in a FIFO queue drained by a single worker task;
    `run_scan` additionally holds a lock so direct callers cannot overlap the
    worker. Within a scan every registered adapter runs as its own task and a
    failure in one never affects its siblings.

    There is no mid-flight cancel. Adding one means failing every non-terminal
    backend with error "cancelled" and releasing the workspace, the same path
    a poll timeout takes.
    """

    def __init__(
        self,
        store: ScanStore,
        workspace_manager: WorkspaceManager,
        adapters: Sequence[ScannerAdapter],
        *,
        poll_settings: PollSettings | None = None,
        policy: RiskPolicy = DEFAULT_POLICY,
        store_settings: StoreSettings | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        names = [adapter.name for adapter in adapters]
        if not names:
            raise ValueError("at least one scanner adapter is required")
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate scanner adapter names: {names}")

        self.store = store
        self.workspace_manager = workspace_manager
        self.adapters: dict[str, ScannerAdapter] = {adapter.name: adapter for adapter in adapters}
        self.poll_settings = poll_settings or PollSettings.from_env()
        self.policy = policy
        self.store_settings = store_settings or StoreSettings.from_env()
        self._sleep = sleep

        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._lock = asyncio.Lock()
        self._worker: asyncio.Task | None = None
        self._credentials: dict[str, str] = {}
        self._accepted: dict[str, Scan] = {}
        self._queued: set[str] = set()
        self._active: str | None = None
        self._recovered = False

    # Store access

    async def _store_call(self, func: Callable[..., T], *args: Any) -> T:
        """Call a store method, retrying transient StoreErrors."""
        attempt = 0
        while True:
            try:
                return func(*args)
            except StoreError as exc:
                if not exc.transient or attempt >= self.store_settings.max_retries:
                    raise
                attempt += 1
                logger.debug("Transient store error (attempt %d): %s", attempt, exc)
                await self._sleep(self.store_settings.retry_delay)

    async def _persist(self, scan: Scan) -> None:
        await self._store_call(self.store.update, scan)

    # Lifecycle

    async def recover(self) -> list[str]:
        """
        Fail every stored scan left non-terminal by a previous process.

        Scans accepted by this orchestrator are left alone. Returns the ids of
        swept scans.
        """
        swept: list[str] = []
        for scan in await self._store_call(self.store.list):
            if scan.id in self._queued or scan.id == self._active:
                continue
            stale = [state for state in scan.sub_status.values() if not state.status.is_terminal]
            if scan.overall_status.is_terminal and not stale:
                continue
            now = now_utc()
            for state in stale:
                state.status = ScanStatus.FAILED
                state.error = INTERRUPTED_ERROR
                state.completed_at = now
            scan.error = scan.error or INTERRUPTED_ERROR
            scan.completed_at = now
            await self._persist(scan)
            swept.append(scan.id)
        if swept:
            logger.warning("Marked %d interrupted scan(s) as failed: %s", len(swept), ", ".join(swept))
        self._recovered = True
        return swept

    async def start(self) -> None:
        """Recover interrupted scans, then start the queue worker."""
        if not self._recovered:
            await self.recover()
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._worker_loop(), name="legalguard-scan-worker")

    async def stop(self) -> None:
        """Stop the worker. A scan in flight is abandoned and will be swept by the next recover()."""
        worker, self._worker = self._worker, None
        if worker is None:
            return
        worker.cancel()
        try:
            await worker
        except asyncio.CancelledError:
            logger.debug("Scan worker stopped")

    async def join(self) -> None:
        """Wait until every accepted scan has been processed."""
        await self._queue.join()

    async def _worker_loop(self) -> None:
        while True:
            scan_id = await self._queue.get()
            try:
                await self.run_scan(scan_id)
            except ScanNotFoundError:
                logger.info("Scan %s was deleted before it started", scan_id)
            except Exception:  # noqa: BLE001
                logger.exception("Scan %s could not be processed", scan_id)
            finally:
                self._queued.discard(scan_id)
                self._queue.task_done()

    # Request surface

    async def start_scan(self, source_location: str, credential: str | None = None) -> str:
        """Record a Pending scan and queue it. Returns the new scan id."""
        if not self._recovered:
            await self.recover()
        scan = Scan(
            source_location=source_location,
            sub_status={name: BackendState() for name in self.adapters},
        )
        await self._store_call(self.store.create, scan)
        self._accepted[scan.id] = scan
        if credential:
            self._credentials[scan.id] = credential
        self._queued.add(scan.id)
        await self._queue.put(scan.id)
        logger.info("Queued scan %s for %s", scan.id, source_location)
        if self._worker is None or self._worker.done():
            await self.start()
        return scan.id

    async def get_scan(self, scan_id: str) -> Scan:
        return await self._store_call(self.store.get, scan_id)

    async def get_findings(self, scan_id: str) -> list[Finding]:
        return await self._store_call(self.store.list_findings, scan_id)

    async def list_scans(self, status: ScanStatus | None = None) -> list[Scan]:
        return await self._store_call(self.store.list, status)

    async def delete_scan(self, scan_id: str) -> None:
        """Delete a scan and its findings. A queued scan is dropped before it runs."""
        if scan_id == self._active:
            raise ScanStateError(f"scan {scan_id} is in progress")
        await self._store_call(self.store.delete, scan_id)
        self._credentials.pop(scan_id, None)
        self._accepted.pop(scan_id, None)

    async def delete_all_scans(self) -> int:
        """Delete every stored scan. Queued scans are dropped; refused while a scan is running."""
        if self._active is not None:
            raise ScanStateError(f"scan {self._active} is in progress")
        deleted = await self._store_call(self.store.delete_all)
        self._credentials.clear()
        self._accepted.clear()
        logger.info("Deleted %d scan(s)", deleted)
        return deleted

    async def backfill_risk(self) -> BackfillReport:
        """
        Score every completed scan that has no risk assessment yet.

        Uses the current rule snapshot. A scan that cannot be scored or saved
        is reported in `failed` and left unchanged; the others are still
        processed. The running scan is skipped, it is scored when it finishes.
        """
        report = BackfillReport()
        candidates = [
            scan
            for scan in await self._store_call(self.store.list, ScanStatus.COMPLETED)
            if scan.risk is None and scan.id != self._active
        ]
        candidates.sort(key=lambda s: s.completed_at or s.created_at, reverse=True)
        logger.info("Found %d completed scan(s) without a risk score", len(candidates))
        if not candidates:
            return report

        rules = await self._store_call(self.store.list_rules)
        for scan in candidates:
            try:
                findings = await self._store_call(self.store.list_findings, scan.id)
                scan.risk = score_findings(findings, rules, self.policy)
                await self._persist(scan)
            except (StoreError, ScanNotFoundError) as exc:
                report.failed[scan.id] = f"store failure: {_error_text(exc)}"
            except Exception as exc:  # noqa: BLE001
                report.failed[scan.id] = f"{SCORING_FAILED_ERROR}: {describe_exception(exc)}"
            if scan.id in report.failed:
                logger.error("Scan %s: risk backfill failed: %s", scan.id, report.failed[scan.id])
                continue
            report.updated.append(scan.id)
            logger.info("Scan %s: risk score %d (%s)", scan.id, scan.risk.score, scan.risk.level.value)
        logger.info("Risk backfill complete: %d updated, %d failed", len(report.updated), len(report.failed))
        return report

    async def health_check(self) -> list[HealthStatus]:
        """Check every adapter; an adapter that raises is reported unreachable."""

        async def _check(adapter: ScannerAdapter) -> HealthStatus:
            try:
                return await adapter.health_check()
            except Exception as exc:  # noqa: BLE001
                return HealthStatus(backend=adapter.name, state=HealthState.UNREACHABLE, detail=describe_exception(exc))

        statuses = list(await asyncio.gather(*(_check(adapter) for adapter in self.adapters.values())))
        for status in statuses:
            if status.ok:
                logger.info("%s is healthy %s", status.backend, status.detail)
            else:
                logger.warning("%s is unavailable: %s", status.backend, status.detail)
        return statuses

    # Execution

    async def run_scan(self, scan_id: str) -> Scan:
        """Execute one scan end to end. Returns the final scan record."""
        async with self._lock:
            self._active = scan_id
            try:
                return await self._execute(scan_id)
            finally:
                self._active = None

    async def _execute(self, scan_id: str) -> Scan:
        accepted = self._accepted.pop(scan_id, None)
        credential = self._credentials.pop(scan_id, None)
        try:
            scan = await self._store_call(self.store.get, scan_id)
        except StoreError as exc:
            # Without a readable record only scans accepted here can be marked failed.
            if accepted is None:
                raise
            self._fail_on_store_error(accepted, exc)
            await self._release(scan_id)
            return accepted
        if scan.is_terminal:
            logger.info("Scan %s is already %s; skipping", scan_id, scan.overall_status.value)
            return scan

        try:
            for name in self.adapters:
                scan.backend(name)
            scan.started_at = now_utc()
            await self._persist(scan)

            workspace = await self._acquire(scan, credential)
            credential = None
            if workspace is None:
                return scan

            await self._run_backends(scan, workspace)
            await self._finalize(scan)
        except StoreError as exc:
            self._fail_on_store_error(scan, exc)
        finally:
            await self._release(scan_id)
        return scan

    async def _acquire(self, scan: Scan, credential: str | None) -> Workspace | None:
        try:
            return await self.workspace_manager.acquire(scan.id, scan.source_location, credential)
        except Exception as exc:  # noqa: BLE001
            error = _error_text(exc) if isinstance(exc, AcquisitionError) else f"workspace acquisition failed: {describe_exception(exc)}"
            logger.warning("Scan %s: %s", scan.id, error)
            now = now_utc()
            for state in scan.sub_status.values():
                state.status = ScanStatus.FAILED
                state.error = error
                state.completed_at = now
            scan.error = error
            scan.completed_at = now
            await self._persist(scan)
            return None

    async def _run_backends(self, scan: Scan, workspace: Workspace) -> None:
        now = now_utc()
        for name in self.adapters:
            state = scan.backend(name)
            state.status = ScanStatus.IN_PROGRESS
            state.started_at = now
        await self._persist(scan)

        outcomes = await asyncio.gather(
            *(self._run_backend(scan, adapter, workspace) for adapter in self.adapters.values()),
            return_exceptions=True,
        )
        # Only store failures escape _run_backend; surface the first once every backend has settled.
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

    async def _run_backend(self, scan: Scan, adapter: ScannerAdapter, workspace: Workspace) -> None:
        state = scan.backend(adapter.name)
        try:
            findings = await run_adapter(adapter, workspace, self.poll_settings, sleep=self._sleep)
        except Exception as exc:  # noqa: BLE001
            state.status = ScanStatus.FAILED
            state.error = _error_text(exc)
            state.completed_at = now_utc()
            logger.warning("Scan %s: %s failed: %s", scan.id, adapter.name, state.error)
            await self._persist(scan)
            return

        await self._store_call(self.store.append_findings, scan.id, findings)
        state.status = ScanStatus.COMPLETED
        state.completed_at = now_utc()
        logger.info("Scan %s: %s completed with %d findings", scan.id, adapter.name, len(findings))
        await self._persist(scan)

    async def _finalize(self, scan: Scan) -> None:
        completed = [name for name, state in scan.sub_status.items() if state.status == ScanStatus.COMPLETED]
        if completed:
            findings = await self._store_call(self.store.list_findings, scan.id)
            rules = await self._store_call(self.store.list_rules)
            try:
                scan.risk = score_findings(findings, rules, self.policy)
            except Exception as exc:  # noqa: BLE001
                logger.error("Scan %s: risk scoring failed: %s", scan.id, describe_exception(exc))
                scan.risk = None
                scan.error = SCORING_FAILED_ERROR
            else:
                logger.info("Scan %s: risk score %d (%s)", scan.id, scan.risk.score, scan.risk.level.value)
        else:
            scan.error = "all backends failed: " + "; ".join(
                f"{name}: {state.error}" for name, state in scan.sub_status.items()
            )
        scan.completed_at = now_utc()
        await self._persist(scan)
        logger.info("Scan %s finished: %s", scan.id, scan.overall_status.value)

    def _fail_on_store_error(self, scan: Scan, exc: StoreError) -> None:
        error = f"store failure: {_error_text(exc)}"
        logger.error("Scan %s: %s", scan.id, error)
        now = now_utc()
        for state in scan.sub_status.values():
            if not state.status.is_terminal:
                state.status = ScanStatus.FAILED
                state.error = error
                state.completed_at = now
        scan.error = error
        scan.risk = None
        scan.completed_at = now
        try:
            self.store.update(scan)
        except StoreError as final_exc:
            logger.error("Scan %s: could not record store failure: %s", scan.id, final_exc)

    async def _release(self, scan_id: str) -> None:
        try:
            await self.workspace_manager.release(scan_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Scan %s: workspace release failed: %s", scan_id, describe_exception(exc))

