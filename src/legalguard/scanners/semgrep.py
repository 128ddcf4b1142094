# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Export-control backend adapter (semgrep CLI, optionally inside a container)."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass

from ..config import SemgrepSettings
from ..errors import ParseError, SubmissionError, describe_exception
from ..models.finding import Finding
from ..process import Process, ProcessFactory, spawn_process, terminate
from ..workspace import Workspace
from .base import HealthState, HealthStatus, JobHandle, JobState, ScannerAdapter
from .semgrep_output import parse_semgrep_output

logger = logging.getLogger(__name__)

HEALTH_TIMEOUT = 30.0


@dataclass
class _RunningJob:
    process: Process
    output: asyncio.Task
    target: str


def _stderr_summary(stderr: bytes) -> str:
    lines = [line.strip() for line in stderr.decode("utf-8", errors="replace").splitlines() if line.strip()]
    return lines[-1] if lines else ""


class SemgrepAdapter(ScannerAdapter):
    """
    Run semgrep with the export-control rule pack as a background process.

    `submit` starts the process, `poll` reports its state, `fetch` parses the
    collected JSON output.
    """

    name = "semgrep"

    def __init__(self, settings: SemgrepSettings, *, process_factory: ProcessFactory | None = None):
        self.settings = settings
        self._spawn = process_factory or spawn_process
        self._jobs: dict[str, _RunningJob] = {}

    def _command(self, *args: str) -> list[str]:
        if self.settings.container:
            return ["docker", "exec", self.settings.container, self.settings.executable, *args]
        return [self.settings.executable, *args]

    def target_for(self, workspace: Workspace) -> str:
        if self.settings.container:
            return f"{self.settings.scan_root}/{workspace.name}"
        return str(workspace.path)

    async def submit(self, workspace: Workspace) -> JobHandle:
        if await asyncio.to_thread(workspace.is_empty):
            raise SubmissionError("repository is empty")

        target = self.target_for(workspace)
        cmd = self._command(
            "--config",
            self.settings.rules,
            "--json",
            "--no-git-ignore",
            "--max-memory",
            str(self.settings.max_memory_mb),
            target,
        )
        logger.info("%s: executing scan on %s", self.name, target)
        try:
            proc = await self._spawn(*cmd)
        except OSError as exc:
            raise SubmissionError(f"cannot start semgrep: {describe_exception(exc)}") from exc

        job_id = uuid.uuid4().hex[:12]
        self._jobs[job_id] = _RunningJob(process=proc, output=asyncio.create_task(proc.communicate()), target=target)
        return JobHandle(backend=self.name, job_id=job_id)

    def _job(self, handle: JobHandle) -> _RunningJob:
        job = self._jobs.get(handle.job_id)
        if job is None:
            raise SubmissionError(f"unknown {self.name} job {handle.job_id}")
        return job

    async def poll(self, handle: JobHandle) -> JobState:
        job = self._job(handle)
        if not job.output.done():
            return JobState.RUNNING
        if job.output.cancelled() or job.output.exception() is not None:
            return JobState.FAILED
        stdout, stderr = job.output.result()
        if job.process.returncode == 0:
            return JobState.DONE
        if stdout.strip():
            logger.warning(
                "%s exited with status %s but produced output, continuing: %s",
                self.name,
                job.process.returncode,
                _stderr_summary(stderr),
            )
            return JobState.DONE
        return JobState.FAILED

    def failure_detail(self, handle: JobHandle) -> str | None:
        job = self._jobs.get(handle.job_id)
        if job is None or not job.output.done():
            return None
        if job.output.cancelled():
            return "scan was cancelled"
        exc = job.output.exception()
        if exc is not None:
            return describe_exception(exc)
        _stdout, stderr = job.output.result()
        summary = _stderr_summary(stderr)
        return f"exit status {job.process.returncode}" + (f": {summary}" if summary else "")

    async def fetch(self, handle: JobHandle) -> list[Finding]:
        job = self._jobs.pop(handle.job_id, None)
        if job is None or not job.output.done():
            raise SubmissionError(f"{self.name} job {handle.job_id} has no completed output")
        stdout, _stderr = job.output.result()
        try:
            text = stdout.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ParseError(f"Invalid UTF-8 in Semgrep output: {exc}") from exc
        return parse_semgrep_output(text, root=job.target)

    async def cancel(self, handle: JobHandle) -> None:
        job = self._jobs.pop(handle.job_id, None)
        if job is None:
            return
        await terminate(job.process)
        job.output.cancel()
        try:
            await job.output
        except asyncio.CancelledError:
            logger.debug("%s: job %s cancelled", self.name, handle.job_id)

    async def health_check(self) -> HealthStatus:
        try:
            proc = await self._spawn(*self._command("--version"))
        except OSError as exc:
            return HealthStatus(backend=self.name, state=HealthState.UNREACHABLE, detail=describe_exception(exc))
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=HEALTH_TIMEOUT)
        except asyncio.TimeoutError:
            await terminate(proc)
            return HealthStatus(backend=self.name, state=HealthState.UNREACHABLE, detail="semgrep --version timed out")
        if proc.returncode != 0:
            return HealthStatus(
                backend=self.name,
                state=HealthState.UNREACHABLE,
                detail=_stderr_summary(stderr) or f"exit status {proc.returncode}",
            )
        version = stdout.decode("utf-8", errors="replace").strip()
        logger.info("Semgrep is available, version: %s", version)
        return HealthStatus(backend=self.name, state=HealthState.OK, detail=version)


__all__ = ["SemgrepAdapter"]
