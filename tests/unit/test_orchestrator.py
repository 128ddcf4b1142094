# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from legalguard.config import PollSettings, StoreSettings
from legalguard.errors import AcquisitionError, ScanNotFoundError, ScanStateError, StoreError, SubmissionError
from legalguard.models import BackendState, Finding, Scan, ScanStatus, Severity, now_utc
from legalguard.scan import INTERRUPTED_ERROR, SCORING_FAILED_ERROR, ScanOrchestrator
from legalguard.scanners import HealthState, HealthStatus, JobHandle, JobState, ScannerAdapter
from legalguard.store import MemoryScanStore
from legalguard.workspace import Workspace

URL = "https://git.example.com/acme/widget.git"
POLL = PollSettings(initial_delay=0, max_delay=0, max_attempts=3, timeout=60)
STORE_SETTINGS = StoreSettings(max_retries=3, retry_delay=0.25)


class FakeAdapter(ScannerAdapter):
    def __init__(self, name, findings=(), *, states=(JobState.DONE,), submit_error=None, gate=None, health_error=None):
        self.name = name
        self.findings = list(findings)
        self.states = list(states)
        self.submit_error = submit_error
        self.gate = gate
        self.health_error = health_error
        self.started = asyncio.Event()
        self.submitted = []
        self._polls = 0

    async def submit(self, workspace):
        self.submitted.append(workspace.scan_id)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.submit_error is not None:
            raise self.submit_error
        return JobHandle(backend=self.name, job_id=f"{self.name}-{len(self.submitted)}")

    async def poll(self, handle):  # noqa: ARG002
        state = self.states[min(self._polls, len(self.states) - 1)]
        self._polls += 1
        return state

    async def fetch(self, handle):  # noqa: ARG002
        return list(self.findings)

    async def health_check(self):
        if self.health_error is not None:
            raise self.health_error
        return HealthStatus(backend=self.name, state=HealthState.OK, detail="1.0")


class FakeWorkspaceManager:
    def __init__(self, root, error=None):
        self.root = Path(root)
        self.error = error
        self.acquired = []
        self.released = []
        self.credentials = []
        self.active = 0
        self.max_active = 0

    async def acquire(self, scan_id, source_location, credential=None):  # noqa: ARG002
        self.acquired.append(scan_id)
        self.credentials.append(credential)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        if self.error is not None:
            raise self.error
        return Workspace(scan_id=scan_id, path=self.root / scan_id)

    async def release(self, scan_id):
        self.released.append(scan_id)
        self.active -= 1


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)
        await asyncio.sleep(0)


def _gpl():
    return Finding.license("src/a.c", "GPL-2.0-only", spdx_id="GPL-2.0-only", confidence=0.9)


def _aes():
    return Finding.export_control(
        "src/crypto.c", "AES_encrypt(in, out, key);", severity=Severity.HIGH, line=12, check_id="crypto.aes", cryptography=True
    )


def _orchestrator(tmp_path, adapters, *, store=None, workspace=None, sleep=None):
    return ScanOrchestrator(
        store if store is not None else MemoryScanStore(),
        workspace if workspace is not None else FakeWorkspaceManager(tmp_path),
        adapters,
        poll_settings=POLL,
        store_settings=STORE_SETTINGS,
        sleep=sleep or SleepRecorder(),
    )


async def _scan_once(orchestrator, credential=None):
    scan_id = await orchestrator.start_scan(URL, credential)
    await orchestrator.join()
    await orchestrator.stop()
    return await orchestrator.get_scan(scan_id)


def test_adapters_must_be_unique_and_present(tmp_path):
    with pytest.raises(ValueError):
        _orchestrator(tmp_path, [])
    with pytest.raises(ValueError, match="duplicate"):
        _orchestrator(tmp_path, [FakeAdapter("fossology"), FakeAdapter("fossology")])


def test_successful_scan_scores_all_findings(tmp_path):
    async def _run():
        fossology = FakeAdapter("fossology", [_gpl()])
        semgrep = FakeAdapter("semgrep", [_aes()])
        orchestrator = _orchestrator(tmp_path, [fossology, semgrep])
        scan = await _scan_once(orchestrator)
        return orchestrator, scan, await orchestrator.get_findings(scan.id)

    orchestrator, scan, findings = asyncio.run(_run())
    assert scan.overall_status == ScanStatus.COMPLETED
    assert scan.error is None
    assert scan.started_at is not None and scan.completed_at is not None
    assert {name: state.status for name, state in scan.sub_status.items()} == {
        "fossology": ScanStatus.COMPLETED,
        "semgrep": ScanStatus.COMPLETED,
    }
    assert sorted(f.backend for f in findings) == ["fossology", "semgrep"]
    # 10 copyleft + 12 high export + 10 cryptography
    assert scan.risk.score == 32
    assert [factor.category for factor in scan.risk.factors] == ["copyleft_license", "export_control", "cryptography"]
    assert orchestrator.workspace_manager.released == [scan.id]


def test_acquisition_failure_fails_every_backend(tmp_path):
    async def _run():
        workspace = FakeWorkspaceManager(tmp_path, error=AcquisitionError("git authentication failed: bad token"))
        fossology = FakeAdapter("fossology", [_gpl()])
        semgrep = FakeAdapter("semgrep", [_aes()])
        orchestrator = _orchestrator(tmp_path, [fossology, semgrep], workspace=workspace)
        scan = await _scan_once(orchestrator)
        return orchestrator, scan, await orchestrator.get_findings(scan.id), fossology, semgrep

    orchestrator, scan, findings, fossology, semgrep = asyncio.run(_run())
    assert scan.overall_status == ScanStatus.FAILED
    assert scan.error == "git authentication failed: bad token"
    for state in scan.sub_status.values():
        assert state.status == ScanStatus.FAILED
        assert state.error == "git authentication failed: bad token"
    assert findings == []
    assert scan.risk is None
    assert fossology.submitted == [] and semgrep.submitted == []
    assert orchestrator.workspace_manager.released == [scan.id]


def test_unexpected_acquisition_error_is_described(tmp_path):
    async def _run():
        workspace = FakeWorkspaceManager(tmp_path, error=PermissionError("read-only file system"))
        orchestrator = _orchestrator(tmp_path, [FakeAdapter("fossology")], workspace=workspace)
        return await _scan_once(orchestrator)

    scan = asyncio.run(_run())
    assert scan.error.startswith("workspace acquisition failed:")


def test_one_backend_timing_out_still_completes(tmp_path):
    async def _run():
        fossology = FakeAdapter("fossology", [_gpl()])
        semgrep = FakeAdapter("semgrep", [_aes()], states=(JobState.RUNNING,))
        workspace = FakeWorkspaceManager(tmp_path)
        orchestrator = _orchestrator(tmp_path, [fossology, semgrep], workspace=workspace)
        scan = await _scan_once(orchestrator)
        return scan, await orchestrator.get_findings(scan.id), workspace

    scan, findings, workspace = asyncio.run(_run())
    assert scan.overall_status == ScanStatus.COMPLETED
    assert scan.sub_status["fossology"].status == ScanStatus.COMPLETED
    assert scan.sub_status["semgrep"].status == ScanStatus.FAILED
    assert "did not finish after 3 polls" in scan.sub_status["semgrep"].error
    assert [f.backend for f in findings] == ["fossology"]
    assert scan.risk.score == 10
    assert [factor.category for factor in scan.risk.factors] == ["copyleft_license"]
    assert workspace.released == [scan.id]


def test_all_backends_failing_fails_scan(tmp_path):
    async def _run():
        fossology = FakeAdapter("fossology", submit_error=SubmissionError("fossology unreachable"))
        semgrep = FakeAdapter("semgrep", submit_error=SubmissionError("repository is empty"))
        workspace = FakeWorkspaceManager(tmp_path)
        orchestrator = _orchestrator(tmp_path, [fossology, semgrep], workspace=workspace)
        return await _scan_once(orchestrator), workspace

    scan, workspace = asyncio.run(_run())
    assert scan.overall_status == ScanStatus.FAILED
    assert scan.error == "all backends failed: fossology: fossology unreachable; semgrep: repository is empty"
    assert scan.risk is None
    assert workspace.released == [scan.id]


def test_scoring_failure_is_recorded(tmp_path):
    async def _run():
        bad = Finding.license("src/a.c", "MIT", spdx_id="MIT", confidence=1.5)
        workspace = FakeWorkspaceManager(tmp_path)
        orchestrator = _orchestrator(tmp_path, [FakeAdapter("fossology", [bad])], workspace=workspace)
        return await _scan_once(orchestrator), workspace

    scan, workspace = asyncio.run(_run())
    assert scan.error == SCORING_FAILED_ERROR
    assert scan.overall_status == ScanStatus.FAILED
    assert scan.sub_status["fossology"].status == ScanStatus.COMPLETED
    assert scan.risk is None
    assert workspace.released == [scan.id]


class BrokenFindingsStore(MemoryScanStore):
    def append_findings(self, scan_id, findings):
        raise StoreError("disk full")


class FlakyUpdateStore(MemoryScanStore):
    def __init__(self, failures):
        super().__init__()
        self.failures = failures

    def update(self, scan):
        if self.failures:
            self.failures -= 1
            raise StoreError("database is locked", transient=True)
        super().update(scan)


class UnreadableOnceStore(MemoryScanStore):
    def __init__(self):
        super().__init__()
        self.failed_reads = 0

    def get(self, scan_id):
        if not self.failed_reads:
            self.failed_reads += 1
            raise StoreError("disk I/O error")
        return super().get(scan_id)


def test_unreadable_scan_record_is_marked_failed(tmp_path):
    async def _run():
        workspace = FakeWorkspaceManager(tmp_path)
        fossology = FakeAdapter("fossology", [_gpl()])
        orchestrator = _orchestrator(tmp_path, [fossology], store=UnreadableOnceStore(), workspace=workspace)
        return await _scan_once(orchestrator), workspace, fossology

    scan, workspace, fossology = asyncio.run(_run())
    assert scan.overall_status == ScanStatus.FAILED
    assert scan.error == "store failure: disk I/O error"
    assert scan.sub_status["fossology"].error == "store failure: disk I/O error"
    assert fossology.submitted == []
    assert workspace.acquired == []
    assert workspace.released == [scan.id]


def test_store_failure_fails_scan_and_releases_workspace(tmp_path):
    async def _run():
        workspace = FakeWorkspaceManager(tmp_path)
        orchestrator = _orchestrator(
            tmp_path,
            [FakeAdapter("fossology", [_gpl()]), FakeAdapter("semgrep", [_aes()])],
            store=BrokenFindingsStore(),
            workspace=workspace,
        )
        return await _scan_once(orchestrator), workspace

    scan, workspace = asyncio.run(_run())
    assert scan.overall_status == ScanStatus.FAILED
    assert scan.error == "store failure: disk full"
    assert all(state.status == ScanStatus.FAILED for state in scan.sub_status.values())
    assert scan.risk is None
    assert workspace.released == [scan.id]


def test_transient_store_errors_are_retried(tmp_path):
    async def _run():
        sleep = SleepRecorder()
        orchestrator = _orchestrator(
            tmp_path, [FakeAdapter("fossology", [_gpl()])], store=FlakyUpdateStore(failures=2), sleep=sleep
        )
        return await _scan_once(orchestrator), sleep

    scan, sleep = asyncio.run(_run())
    assert scan.overall_status == ScanStatus.COMPLETED
    assert sleep.delays.count(0.25) == 2


def test_recovery_fails_interrupted_scans(tmp_path):
    store = MemoryScanStore()
    interrupted = Scan(
        id="old-scan",
        source_location=URL,
        started_at=now_utc(),
        sub_status={
            "fossology": BackendState(status=ScanStatus.COMPLETED),
            "semgrep": BackendState(status=ScanStatus.IN_PROGRESS),
        },
    )
    store.create(interrupted)
    finished = Scan(id="done-scan", source_location=URL, sub_status={"fossology": BackendState(status=ScanStatus.COMPLETED)})
    store.create(finished)

    async def _run():
        fossology = FakeAdapter("fossology")
        semgrep = FakeAdapter("semgrep")
        orchestrator = _orchestrator(tmp_path, [fossology, semgrep], store=store)
        new_scan = await _scan_once(orchestrator)
        return new_scan, fossology

    new_scan, fossology = asyncio.run(_run())
    old = store.get("old-scan")
    assert old.overall_status == ScanStatus.FAILED
    assert old.error == INTERRUPTED_ERROR
    assert old.sub_status["fossology"].status == ScanStatus.COMPLETED
    assert old.sub_status["semgrep"].status == ScanStatus.FAILED
    assert old.sub_status["semgrep"].error == INTERRUPTED_ERROR
    assert store.get("done-scan").error is None
    assert fossology.submitted == [new_scan.id]


def test_scans_run_in_fifo_order_one_at_a_time(tmp_path):
    async def _run():
        workspace = FakeWorkspaceManager(tmp_path)
        orchestrator = _orchestrator(tmp_path, [FakeAdapter("fossology", [_gpl()])], workspace=workspace)
        ids = [await orchestrator.start_scan(f"{URL}?n={n}") for n in range(3)]
        await orchestrator.join()
        await orchestrator.stop()
        return ids, workspace

    ids, workspace = asyncio.run(_run())
    assert workspace.acquired == ids
    assert workspace.max_active == 1


def test_deleting_active_scan_is_rejected(tmp_path):
    async def _run():
        gate = asyncio.Event()
        adapter = FakeAdapter("fossology", gate=gate)
        orchestrator = _orchestrator(tmp_path, [adapter])
        active_id = await orchestrator.start_scan(URL)
        queued_id = await orchestrator.start_scan(URL)
        await adapter.started.wait()

        with pytest.raises(ScanStateError):
            await orchestrator.delete_scan(active_id)
        await orchestrator.delete_scan(queued_id)

        gate.set()
        await orchestrator.join()
        await orchestrator.stop()
        return orchestrator, adapter, active_id, queued_id

    orchestrator, adapter, active_id, queued_id = asyncio.run(_run())
    assert adapter.submitted == [active_id]
    with pytest.raises(ScanNotFoundError):
        asyncio.run(orchestrator.get_scan(queued_id))


def test_credential_reaches_workspace_and_is_dropped(tmp_path):
    async def _run():
        workspace = FakeWorkspaceManager(tmp_path)
        store = MemoryScanStore()
        orchestrator = _orchestrator(tmp_path, [FakeAdapter("fossology")], store=store, workspace=workspace)
        scan = await _scan_once(orchestrator, credential="s3cret")
        return orchestrator, workspace, store, scan

    orchestrator, workspace, store, scan = asyncio.run(_run())
    assert workspace.credentials == ["s3cret"]
    assert orchestrator._credentials == {}
    assert "s3cret" not in json.dumps(store.get(scan.id).to_dict())


def test_list_and_delete_scans(tmp_path):
    async def _run():
        orchestrator = _orchestrator(tmp_path, [FakeAdapter("fossology")])
        scan = await _scan_once(orchestrator)
        completed = await orchestrator.list_scans(ScanStatus.COMPLETED)
        failed = await orchestrator.list_scans(ScanStatus.FAILED)
        await orchestrator.delete_scan(scan.id)
        remaining = await orchestrator.list_scans()
        return scan, completed, failed, remaining

    scan, completed, failed, remaining = asyncio.run(_run())
    assert [s.id for s in completed] == [scan.id]
    assert failed == []
    assert remaining == []


def _stored_scan(store, scan_id, findings=(), *, status=ScanStatus.COMPLETED, minute=0):
    finished = datetime(2025, 3, 1, 12, minute, tzinfo=timezone.utc)
    scan = Scan(
        id=scan_id,
        source_location=URL,
        created_at=finished,
        started_at=finished,
        completed_at=finished,
        sub_status={"fossology": BackendState(status=status)},
    )
    store.create(scan)
    store.append_findings(scan_id, findings)
    return scan


def test_backfill_scores_completed_scans_without_risk(tmp_path):
    store = MemoryScanStore()
    _stored_scan(store, "older", [_gpl()], minute=0)
    _stored_scan(store, "newer", [_aes()], minute=5)
    _stored_scan(store, "failed", [_gpl()], status=ScanStatus.FAILED)

    async def _run():
        orchestrator = _orchestrator(tmp_path, [FakeAdapter("fossology", [_gpl()])], store=store)
        scored = await _scan_once(orchestrator)
        report = await orchestrator.backfill_risk()
        again = await orchestrator.backfill_risk()
        return scored, report, again

    scored, report, again = asyncio.run(_run())
    assert report.updated == ["newer", "older"]
    assert report.failed == {}
    assert scored.id not in report.updated
    assert again.to_dict() == {"updated": [], "failed": {}}

    older = store.get("older")
    assert older.risk is not None
    assert "copyleft_license" in {factor.category for factor in older.risk.factors}
    assert "cryptography" in {factor.category for factor in store.get("newer").risk.factors}
    assert store.get("failed").risk is None


def test_backfill_records_unscorable_scan_and_continues(tmp_path):
    store = MemoryScanStore()
    _stored_scan(store, "bad", [Finding.license("src/a.c", "MIT", spdx_id="MIT", confidence=1.5)], minute=5)
    _stored_scan(store, "good", [_gpl()], minute=0)

    async def _run():
        orchestrator = _orchestrator(tmp_path, [FakeAdapter("fossology")], store=store)
        return await orchestrator.backfill_risk()

    report = asyncio.run(_run())
    assert report.updated == ["good"]
    assert list(report.failed) == ["bad"]
    assert report.failed["bad"].startswith(SCORING_FAILED_ERROR)
    assert store.get("bad").risk is None
    assert store.get("good").risk is not None


def test_delete_all_scans_drops_queue_and_refuses_while_active(tmp_path):
    async def _run():
        gate = asyncio.Event()
        adapter = FakeAdapter("fossology", gate=gate)
        orchestrator = _orchestrator(tmp_path, [adapter])
        active_id = await orchestrator.start_scan(URL)
        await adapter.started.wait()
        with pytest.raises(ScanStateError):
            await orchestrator.delete_all_scans()

        gate.set()
        await orchestrator.join()
        queued_id = await orchestrator.start_scan(URL, "s3cret")
        deleted = await orchestrator.delete_all_scans()
        await orchestrator.join()
        await orchestrator.stop()
        return orchestrator, adapter, active_id, queued_id, deleted

    orchestrator, adapter, active_id, queued_id, deleted = asyncio.run(_run())
    assert deleted == 2
    assert adapter.submitted == [active_id]
    assert asyncio.run(orchestrator.list_scans()) == []
    with pytest.raises(ScanNotFoundError):
        asyncio.run(orchestrator.get_scan(queued_id))


def test_health_check_reports_raising_adapter_unreachable(tmp_path):
    async def _run():
        healthy = FakeAdapter("fossology")
        broken = FakeAdapter("semgrep", health_error=ConnectionError("connection refused"))
        orchestrator = _orchestrator(tmp_path, [healthy, broken])
        return await orchestrator.health_check()

    statuses = asyncio.run(_run())
    assert [(s.backend, s.state) for s in statuses] == [
        ("fossology", HealthState.OK),
        ("semgrep", HealthState.UNREACHABLE),
    ]
    assert statuses[1].detail
