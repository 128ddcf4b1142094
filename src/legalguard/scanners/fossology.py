# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""License/copyright backend adapter (FOSSology REST API)."""

from __future__ import annotations

import asyncio
import io
import logging
import tarfile
import time
from pathlib import Path
from typing import Any

from ..config import FossologySettings, PollSettings
from ..errors import ParseError, PollTimeoutError, SubmissionError
from ..http import AsyncHttpClient, HttpRequest, HttpResponse, RetryConfig, send_with_retries
from ..models.finding import Finding
from ..workspace import Workspace
from .base import Clock, HealthState, HealthStatus, JobHandle, JobState, ScannerAdapter, Sleep, backoff_delays
from .licenses import parse_copyright_response, parse_license_response

logger = logging.getLogger(__name__)

API_PREFIX = "/repo/api/v1"
PLACEHOLDER_TOKENS = {"", "your_token_here"}

ANALYSIS_AGENTS: dict[str, bool] = {
    "bucket": True,
    "copyright_email_author": True,
    "ecc": True,
    "keyword": False,
    "mime": True,
    "monk": True,
    "nomos": True,
    "ojo": True,
    "package": True,
}

_JOB_STATES = {
    "completed": JobState.DONE,
    "failed": JobState.FAILED,
    "killed": JobState.FAILED,
    "queued": JobState.PENDING,
}


def build_archive(path: Path) -> bytes:
    """tar.gz of `path` (rooted at its directory name), without VCS metadata."""

    def _exclude_vcs(info: tarfile.TarInfo) -> tarfile.TarInfo | None:
        if ".git" in Path(info.name).parts:
            return None
        return info

    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        archive.add(str(path), arcname=path.name, filter=_exclude_vcs)
    return buffer.getvalue()


class FossologyAdapter(ScannerAdapter):
    """
    Upload the workspace as an archive, schedule the analysis agents and read
    back per-file licenses and copyright statements.
    """

    name = "fossology"

    def __init__(
        self,
        settings: FossologySettings,
        http_client: AsyncHttpClient,
        *,
        poll_settings: PollSettings | None = None,
        retry_config: RetryConfig | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = time.monotonic,
    ):
        self.settings = settings
        self.http = http_client
        self.poll_settings = poll_settings or PollSettings.from_env()
        self.retry_config = retry_config
        self._sleep = sleep
        self._clock = clock

    def _url(self, path: str) -> str:
        return f"{self.settings.url.rstrip('/')}{API_PREFIX}{path}"

    def _request(self, method: str, path: str, **kwargs: Any) -> HttpRequest:
        headers = dict(kwargs.pop("headers", None) or {})
        auth = None
        if self.settings.api_token not in PLACEHOLDER_TOKENS:
            headers["Authorization"] = f"Bearer {self.settings.api_token}"
        else:
            auth = (self.settings.username, self.settings.password)
        return HttpRequest(url=self._url(path), method=method, headers=headers, auth=auth, **kwargs)

    async def _send(self, request: HttpRequest) -> HttpResponse:
        return await send_with_retries(self.http, request, retry_config=self.retry_config)

    @staticmethod
    def _json(response: HttpResponse, what: str) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise ParseError(f"malformed {what} response: {exc}") from exc

    def _require_success(self, response: HttpResponse, what: str) -> None:
        if not response.ok:
            raise SubmissionError(f"{self.name} unreachable during {what}: {response.describe()}")
        if not response.is_success:
            raise SubmissionError(f"{self.name} rejected {what}: {response.describe()}")

    def _message_id(self, response: HttpResponse, what: str) -> int:
        payload = self._json(response, what)
        message = payload.get("message") if isinstance(payload, dict) else None
        try:
            return int(message)
        except (TypeError, ValueError):
            raise SubmissionError(f"{self.name} {what} response carried no id: {response.describe()}") from None

    async def submit(self, workspace: Workspace) -> JobHandle:
        if await asyncio.to_thread(workspace.is_empty):
            raise SubmissionError("repository is empty")

        archive = await asyncio.to_thread(build_archive, workspace.path)
        upload = await self._send(
            self._request(
                "POST",
                "/uploads",
                headers={"folderId": str(self.settings.folder_id), "uploadType": "file"},
                data={"uploadDescription": f"Repository scan: {workspace.name}"},
                files={"fileInput": ("repository.tar.gz", archive, "application/gzip")},
            )
        )
        self._require_success(upload, "upload")
        upload_id = self._message_id(upload, "upload")
        logger.info("%s: upload successful, id %s", self.name, upload_id)

        await self._wait_for_upload(upload_id)

        job = await self._send(
            self._request(
                "POST",
                "/jobs",
                headers={"uploadId": str(upload_id), "folderId": str(self.settings.folder_id)},
                json={"analysis": ANALYSIS_AGENTS},
            )
        )
        self._require_success(job, "job creation")
        job_id = self._message_id(job, "job creation")
        return JobHandle(backend=self.name, job_id=str(job_id), meta={"upload_id": upload_id})

    async def _wait_for_upload(self, upload_id: int) -> None:
        """Wait until the upload has been unpacked and indexed (its hash is reported)."""
        policy = self.poll_settings
        started = self._clock()
        delays = backoff_delays(policy)
        attempts = 0
        while attempts < policy.max_attempts and self._clock() - started < policy.timeout:
            attempts += 1
            response = await self._send(self._request("GET", f"/uploads/{upload_id}"))
            if response.is_success:
                try:
                    details = response.json()
                except ValueError as exc:
                    logger.warning("%s: cannot parse upload details (attempt %d): %s", self.name, attempts, exc)
                else:
                    if isinstance(details, dict) and details.get("hash"):
                        logger.info("%s: upload %s ready after %d checks", self.name, upload_id, attempts)
                        return
            elif response.status_code == 503:
                logger.debug("%s: upload %s still processing (attempt %d)", self.name, upload_id, attempts)
            else:
                logger.warning("%s: upload %s status check failed: %s", self.name, upload_id, response.describe())
            remaining = policy.timeout - (self._clock() - started)
            await self._sleep(max(0.0, min(next(delays), remaining)))
        raise PollTimeoutError(f"{self.name} upload {upload_id} was not ready after {attempts} checks")

    async def poll(self, handle: JobHandle) -> JobState:
        response = await self._send(self._request("GET", f"/jobs/{handle.job_id}"))
        self._require_success(response, "job status")
        payload = self._json(response, "job status")
        status = str((payload.get("status") if isinstance(payload, dict) else None) or "")
        handle.meta["last_status"] = status
        return _JOB_STATES.get(status.strip().lower(), JobState.RUNNING)

    def failure_detail(self, handle: JobHandle) -> str | None:
        status = handle.meta.get("last_status")
        return f"backend reported status {status}" if status else None

    async def fetch(self, handle: JobHandle) -> list[Finding]:
        upload_id = handle.meta["upload_id"]
        licenses = await self._send(
            self._request(
                "GET",
                f"/uploads/{upload_id}/licenses",
                params={"agent": "nomos,monk,ojo", "containers": "true"},
            )
        )
        self._require_success(licenses, "license results")
        findings = parse_license_response(self._json(licenses, "license results"))

        copyrights = await self._send(self._request("GET", f"/uploads/{upload_id}/copyrights"))
        self._require_success(copyrights, "copyright results")
        findings.extend(parse_copyright_response(self._json(copyrights, "copyright results")))
        return findings

    async def health_check(self) -> HealthStatus:
        response = await self._send(self._request("GET", "/version"))
        if response.is_success:
            try:
                payload = response.json()
            except ValueError:
                payload = None
            version = str(payload.get("version") or "") if isinstance(payload, dict) else ""
            return HealthStatus(backend=self.name, state=HealthState.OK, detail=version)
        return HealthStatus(backend=self.name, state=HealthState.UNREACHABLE, detail=response.describe())


__all__ = ["ANALYSIS_AGENTS", "FossologyAdapter", "build_archive"]
