# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

import asyncio
import io
import json
import tarfile

import pytest

from legalguard.config import FossologySettings, PollSettings
from legalguard.errors import BackendJobFailed, ParseError, SubmissionError
from legalguard.http import HttpResponse, RetryConfig, StubHttpClient
from legalguard.models import FindingKind
from legalguard.scanners import FossologyAdapter, HealthState, JobHandle, JobState, run_adapter
from legalguard.scanners.fossology import build_archive
from legalguard.scanners.licenses import (
    map_to_spdx,
    parse_copyright_response,
    parse_license_response,
)
from legalguard.workspace import Workspace

BASE = "http://foss/repo/api/v1"
POLL = PollSettings(initial_delay=0, max_delay=0, max_attempts=5, timeout=60)


async def _no_sleep(_delay):
    return None


def _json(status, payload):
    return HttpResponse(ok=True, status_code=status, text=json.dumps(payload))


def _adapter(stub, **settings):
    return FossologyAdapter(
        FossologySettings(url="http://foss", **settings),
        stub,
        poll_settings=POLL,
        retry_config=RetryConfig(max_attempts=1),
        sleep=_no_sleep,
    )


def _workspace(tmp_path):
    root = tmp_path / "scan-1"
    root.mkdir()
    (root / "LICENSE").write_text("MIT License\n")
    return Workspace(scan_id="scan-1", path=root)


LICENSES = [
    {"filePath": "scan-1/LICENSE", "findings": {"scanner": ["MIT", "No_license_found"], "conclusion": ["MIT"]}},
    {"filePath": "scan-1/lib.c", "findings": {"scanner": [{"shortName": "GPL-2.0-or-later", "percentage": 80}]}},
]
COPYRIGHTS = [
    {"copyright": "Copyright (c) 2019-2021 Acme Corp.", "filePath": ["scan-1/LICENSE", "scan-1/lib.c"]},
    {"copyright": "bin\x00ary", "filePath": ["scan-1/blob"]},
]


def _happy_stub(job_status="Completed"):
    return StubHttpClient(
        {
            ("POST", f"{BASE}/uploads"): _json(201, {"code": 201, "message": 42, "type": "INFO"}),
            ("GET", f"{BASE}/uploads/42"): [
                HttpResponse(ok=True, status_code=503, text="unpacking"),
                _json(200, {"id": 42, "hash": {"sha1": "abc"}}),
            ],
            ("POST", f"{BASE}/jobs"): _json(201, {"code": 201, "message": 7, "type": "INFO"}),
            ("GET", f"{BASE}/jobs/7"): [_json(200, {"status": "Processing"}), _json(200, {"status": job_status})],
            ("GET", f"{BASE}/uploads/42/licenses"): _json(200, LICENSES),
            ("GET", f"{BASE}/uploads/42/copyrights"): _json(200, COPYRIGHTS),
        }
    )


def test_full_run_produces_tagged_findings(tmp_path):
    stub = _happy_stub()
    adapter = _adapter(stub, api_token="tok")
    findings = asyncio.run(run_adapter(adapter, _workspace(tmp_path), POLL, sleep=_no_sleep))

    licenses = [f for f in findings if f.kind == FindingKind.LICENSE]
    copyrights = [f for f in findings if f.kind == FindingKind.COPYRIGHT]
    assert [(f.file_path, f.name, f.spdx_id, f.confidence) for f in licenses] == [
        ("scan-1/LICENSE", "MIT", "MIT", 1.0),
        ("scan-1/lib.c", "GPL-2.0-or-later", "GPL-2.0-only", 0.8),
    ]
    assert [f.file_path for f in copyrights] == ["scan-1/LICENSE", "scan-1/lib.c"]
    assert copyrights[0].holders == ("Acme Corp",)
    assert copyrights[0].years == ("2019", "2021")
    assert {f.backend for f in findings} == {"fossology"}

    upload = stub.requests[0]
    assert upload.headers["Authorization"] == "Bearer tok"
    assert upload.auth is None
    assert upload.headers["folderId"] == "1"
    assert upload.files["fileInput"][0] == "repository.tar.gz"
    job = next(r for r in stub.requests if r.url == f"{BASE}/jobs")
    assert job.headers["uploadId"] == "42"
    assert job.json["analysis"]["nomos"] is True
    assert stub.calls("GET", f"{BASE}/uploads/42") == 2
    assert stub.requests[-2].params == {"agent": "nomos,monk,ojo", "containers": "true"}


def test_basic_auth_used_without_token(tmp_path):
    stub = _happy_stub()
    adapter = _adapter(stub, api_token="your_token_here", username="fossy", password="pw")
    asyncio.run(adapter.submit(_workspace(tmp_path)))
    assert stub.requests[0].auth == ("fossy", "pw")
    assert "Authorization" not in stub.requests[0].headers


def test_backend_reported_failure(tmp_path):
    adapter = _adapter(_happy_stub(job_status="Failed"))
    with pytest.raises(BackendJobFailed, match="backend reported status Failed"):
        asyncio.run(run_adapter(adapter, _workspace(tmp_path), POLL, sleep=_no_sleep))


def test_poll_maps_job_states():
    stub = StubHttpClient()
    adapter = _adapter(stub)

    async def state_for(status):
        stub.add("GET", f"{BASE}/jobs/1", _json(200, {"status": status}))
        return await adapter.poll(JobHandle(backend="fossology", job_id="1"))

    assert asyncio.run(state_for("Queued")) == JobState.PENDING
    assert asyncio.run(state_for("Processing")) == JobState.RUNNING
    assert asyncio.run(state_for("Completed")) == JobState.DONE
    assert asyncio.run(state_for("Killed")) == JobState.FAILED


def test_upload_rejected(tmp_path):
    stub = StubHttpClient({("POST", f"{BASE}/uploads"): HttpResponse(ok=True, status_code=500, text="boom")})
    with pytest.raises(SubmissionError, match="rejected upload"):
        asyncio.run(_adapter(stub).submit(_workspace(tmp_path)))


def test_backend_unreachable(tmp_path):
    with pytest.raises(SubmissionError, match="unreachable during upload"):
        asyncio.run(_adapter(StubHttpClient()).submit(_workspace(tmp_path)))


def test_empty_repository_is_rejected(tmp_path):
    root = tmp_path / "empty"
    (root / ".git").mkdir(parents=True)
    (root / ".git" / "HEAD").write_text("ref: refs/heads/main\n")
    with pytest.raises(SubmissionError, match="repository is empty"):
        asyncio.run(_adapter(StubHttpClient()).submit(Workspace(scan_id="empty", path=root)))


def test_health_check():
    ok = StubHttpClient({("GET", f"{BASE}/version"): _json(200, {"version": "4.4.0"})})
    status = asyncio.run(_adapter(ok).health_check())
    assert status.state == HealthState.OK
    assert status.detail == "4.4.0"

    down = asyncio.run(_adapter(StubHttpClient()).health_check())
    assert down.state == HealthState.UNREACHABLE
    assert down.ok is False


def test_build_archive_skips_vcs_metadata(tmp_path):
    root = tmp_path / "repo"
    (root / ".git").mkdir(parents=True)
    (root / ".git" / "config").write_text("[core]\n")
    (root / "src").mkdir()
    (root / "src" / "main.c").write_text("int main(void) { return 0; }\n")

    with tarfile.open(fileobj=io.BytesIO(build_archive(root)), mode="r:gz") as archive:
        names = archive.getnames()
    assert "repo/src/main.c" in names
    assert not any(".git" in name for name in names)


def test_map_to_spdx():
    assert map_to_spdx("Apache License 2.0") == "Apache-2.0"
    assert map_to_spdx("LGPL-3.0") == "LGPL-3.0-only"
    assert map_to_spdx("AGPL-3.0-or-later") == "AGPL-3.0-only"
    assert map_to_spdx("Frobnicate") is None


@pytest.mark.parametrize(
    "name,expected",
    [
        ("MIT License", "MIT"),
        ("Expat/MIT", "MIT"),
        ("ISC", "ISC"),
        ("Commercial-Limited", None),
        ("Disclaimer", None),
        ("Permitted-Use", None),
        ("LGPL-2.0", None),
    ],
)
def test_map_to_spdx_matches_whole_tokens(name, expected):
    assert map_to_spdx(name) == expected


def test_unmapped_license_keeps_missing_spdx_id():
    findings = parse_license_response([{"filePath": "src/a.c", "findings": {"scanner": ["Commercial-Limited"]}}])
    assert [(f.name, f.spdx_id) for f in findings] == [("Commercial-Limited", None)]


def test_license_parser_rejects_malformed_payloads():
    with pytest.raises(ParseError):
        parse_license_response({"filePath": "x"})
    with pytest.raises(ParseError):
        parse_license_response([{"findings": {}}])
    with pytest.raises(ParseError):
        parse_license_response([{"filePath": "x", "findings": {"scanner": [42]}}])


def test_copyright_parser_skips_binary_and_unidentifiable_statements():
    findings = parse_copyright_response(
        [
            {"copyright": "© 2020 Jane Doe", "filePath": "a.c"},
            {"copyright": "just words", "filePath": ["b.c"]},
            {"copyright": "Copyright 2021 \ufffd\ufffd", "filePath": ["c.bin"]},
        ]
    )
    assert len(findings) == 1
    assert findings[0].file_path == "a.c"
    assert findings[0].holders == ("Jane Doe",)
    assert findings[0].years == ("2020",)
    with pytest.raises(ParseError):
        parse_copyright_response("nope")
