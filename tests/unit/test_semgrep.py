# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

import asyncio
import json

import pytest

from legalguard.config import PollSettings, SemgrepSettings
from legalguard.errors import BackendJobFailed, ParseError, SubmissionError
from legalguard.models import Severity
from legalguard.scanners import HealthState, JobState, SemgrepAdapter, run_adapter
from legalguard.scanners.semgrep_output import is_cryptography, map_severity, parse_semgrep_output
from legalguard.workspace import Workspace

POLL = PollSettings(initial_delay=0, max_delay=0, max_attempts=20, timeout=60)

SEMGREP_OUTPUT = {
    "results": [
        {
            "check_id": "ecc.crypto.aes-usage",
            "path": "/scans/scans/scan-1/src/crypto.c",
            "start": {"line": 12, "col": 1},
            "extra": {
                "message": "AES block cipher in use",
                "severity": "ERROR",
                "lines": "  AES_encrypt(in, out, key);  ",
                "metadata": {"category": "export-control"},
            },
        },
        {
            "check_id": "export.network.raw-socket",
            "path": "/scans/scans/scan-1/src/net.c",
            "start": {"line": 3},
            "extra": {"message": "Raw socket", "severity": "SURPRISE", "metadata": {}},
        },
    ],
    "errors": [{"message": "timeout", "path": "big.c"}],
}


class FakeProcess:
    def __init__(self, returncode=0, stdout=b"", stderr=b"", delay=0.0):
        self.returncode = None
        self._returncode = returncode
        self._stdout = stdout
        self._stderr = stderr
        self._delay = delay
        self.killed = False

    async def communicate(self, input=None):  # noqa: A002, ARG002
        if self._delay:
            await asyncio.sleep(self._delay)
        self.returncode = self._returncode
        return self._stdout, self._stderr

    async def wait(self):
        if self.returncode is None:
            self.returncode = -9
        return self.returncode

    def kill(self):
        self.killed = True
        self.returncode = -9


class FakeFactory:
    def __init__(self, *processes):
        self.processes = list(processes)
        self.commands = []

    async def __call__(self, *cmd, **kwargs):  # noqa: ARG002
        self.commands.append(list(cmd))
        return self.processes.pop(0)


async def _tick(_delay):
    await asyncio.sleep(0)


def _workspace(tmp_path):
    root = tmp_path / "scan-1"
    (root / "src").mkdir(parents=True)
    (root / "src" / "crypto.c").write_text("AES_encrypt(in, out, key);\n")
    return Workspace(scan_id="scan-1", path=root)


def test_parse_semgrep_output():
    findings = parse_semgrep_output(json.dumps(SEMGREP_OUTPUT), root="/scans/scans/scan-1")
    assert [f.file_path for f in findings] == ["src/crypto.c", "src/net.c"]

    aes, sock = findings
    assert aes.severity == Severity.HIGH
    assert aes.line == 12
    assert aes.check_id == "ecc.crypto.aes-usage"
    assert aes.source == "semgrep"
    assert aes.cryptography is True
    assert aes.content == "AES block cipher in use\n\nMatched code: `AES_encrypt(in, out, key);`"
    assert sock.severity == Severity.LOW
    assert sock.cryptography is False
    assert sock.content == "Raw socket"


def test_parse_semgrep_output_rejects_malformed_json():
    with pytest.raises(ParseError):
        parse_semgrep_output("{not json")
    with pytest.raises(ParseError):
        parse_semgrep_output(json.dumps({"errors": []}))
    with pytest.raises(ParseError):
        parse_semgrep_output(json.dumps({"results": [{"path": "a.c"}]}))


def test_severity_and_cryptography_helpers():
    assert map_severity("warning") == Severity.MEDIUM
    assert map_severity("INFO") == Severity.LOW
    assert is_cryptography("rules.openssl-cipher", {})
    assert is_cryptography("rules.x", {"cwe": "Use of ECC curves"})
    assert not is_cryptography("rules.checksum", {"note": "deccelerate"})


def test_local_run_through_driver(tmp_path):
    factory = FakeFactory(FakeProcess(stdout=json.dumps(SEMGREP_OUTPUT).encode()))
    adapter = SemgrepAdapter(SemgrepSettings(container=None, rules="rules.yaml"), process_factory=factory)
    workspace = _workspace(tmp_path)

    findings = asyncio.run(run_adapter(adapter, workspace, POLL, sleep=_tick))

    assert len(findings) == 2
    assert {f.backend for f in findings} == {"semgrep"}
    cmd = factory.commands[0]
    assert cmd[0] == "semgrep"
    assert cmd[-1] == str(workspace.path)
    assert cmd[cmd.index("--config") + 1] == "rules.yaml"
    assert "--json" in cmd


def test_container_command_and_target(tmp_path):
    adapter = SemgrepAdapter(SemgrepSettings(container="scanner", scan_root="/scans/scans"))
    workspace = _workspace(tmp_path)
    assert adapter.target_for(workspace) == "/scans/scans/scan-1"
    assert adapter._command("--version") == ["docker", "exec", "scanner", "semgrep", "--version"]


def test_nonzero_exit_with_output_still_completes(tmp_path):
    factory = FakeFactory(FakeProcess(returncode=1, stdout=json.dumps({"results": []}).encode(), stderr=b"partial"))
    adapter = SemgrepAdapter(SemgrepSettings(container=None), process_factory=factory)

    async def run():
        handle = await adapter.submit(_workspace(tmp_path))
        await asyncio.sleep(0)
        return await adapter.poll(handle), await adapter.fetch(handle)

    state, findings = asyncio.run(run())
    assert state == JobState.DONE
    assert findings == []


def test_failed_process_reports_stderr(tmp_path):
    factory = FakeFactory(FakeProcess(returncode=2, stderr=b"loading rules\ninvalid rule file\n"))
    adapter = SemgrepAdapter(SemgrepSettings(container=None), process_factory=factory)
    with pytest.raises(BackendJobFailed, match="exit status 2: invalid rule file"):
        asyncio.run(run_adapter(adapter, _workspace(tmp_path), POLL, sleep=_tick))


def test_invalid_utf8_output_is_a_parse_error(tmp_path):
    factory = FakeFactory(FakeProcess(stdout=b"\xff\xfe{"))
    adapter = SemgrepAdapter(SemgrepSettings(container=None), process_factory=factory)
    with pytest.raises(ParseError, match="Invalid UTF-8"):
        asyncio.run(run_adapter(adapter, _workspace(tmp_path), POLL, sleep=_tick))


def test_missing_executable_is_a_submission_error(tmp_path):
    async def missing(*cmd, **kwargs):  # noqa: ARG001
        raise FileNotFoundError("semgrep")

    adapter = SemgrepAdapter(SemgrepSettings(container=None), process_factory=missing)
    with pytest.raises(SubmissionError, match="cannot start semgrep"):
        asyncio.run(adapter.submit(_workspace(tmp_path)))


def test_cancel_kills_running_process(tmp_path):
    proc = FakeProcess(delay=10)
    adapter = SemgrepAdapter(SemgrepSettings(container=None), process_factory=FakeFactory(proc))

    async def run():
        handle = await adapter.submit(_workspace(tmp_path))
        assert await adapter.poll(handle) == JobState.RUNNING
        await adapter.cancel(handle)
        return handle

    handle = asyncio.run(run())
    assert proc.killed is True
    with pytest.raises(SubmissionError):
        asyncio.run(adapter.poll(handle))


def test_health_check():
    ok = SemgrepAdapter(SemgrepSettings(container=None), process_factory=FakeFactory(FakeProcess(stdout=b"1.50.0\n")))
    status = asyncio.run(ok.health_check())
    assert status.state == HealthState.OK
    assert status.detail == "1.50.0"

    broken = SemgrepAdapter(
        SemgrepSettings(container=None),
        process_factory=FakeFactory(FakeProcess(returncode=125, stderr=b"No such container: scanner\n")),
    )
    status = asyncio.run(broken.health_check())
    assert status.state == HealthState.UNREACHABLE
    assert status.detail == "No such container: scanner"
