# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Scanner adapter contract and the shared submit/poll/fetch driver."""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..config import PollSettings
from ..errors import BackendJobFailed, PollTimeoutError, SubmissionError, describe_exception
from ..models.finding import Finding
from ..workspace import Workspace

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]
Clock = Callable[[], float]


class JobState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.DONE, JobState.FAILED)


class HealthState(str, Enum):
    OK = "ok"
    UNREACHABLE = "unreachable"


@dataclass
class HealthStatus:
    backend: str
    state: HealthState
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.state == HealthState.OK

    def to_dict(self) -> dict[str, Any]:
        return {"backend": self.backend, "state": self.state.value, "detail": self.detail}


@dataclass
class JobHandle:
    """Opaque reference to a submitted backend job. `meta` is adapter-private bookkeeping."""

    backend: str
    job_id: str
    meta: dict[str, Any] = field(default_factory=dict)


class ScannerAdapter(ABC):
    """
    One external analysis backend.

    `poll` must not change backend state; `fetch` is only valid once `poll`
    has reported DONE. Adapters raise `SubmissionError` and `ParseError`;
    anything else escaping an adapter is treated as a backend failure by the
    orchestrator.
    """

    name: str = "base"

    @abstractmethod
    async def submit(self, workspace: Workspace) -> JobHandle: ...

    @abstractmethod
    async def poll(self, handle: JobHandle) -> JobState: ...

    @abstractmethod
    async def fetch(self, handle: JobHandle) -> list[Finding]: ...

    @abstractmethod
    async def health_check(self) -> HealthStatus: ...

    async def cancel(self, handle: JobHandle) -> None:
        """Best-effort cleanup after polling gave up or the job failed. Default: nothing to do."""
        return None

    def failure_detail(self, handle: JobHandle) -> str | None:
        """Backend-provided reason for a FAILED job, when the adapter knows one."""
        return None

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"{self.__class__.__name__}(name={self.name!r})"


def backoff_delays(policy: PollSettings) -> Iterator[float]:
    """Yield `initial_delay`, growing by `backoff_factor`, capped at `max_delay`."""
    delay = max(0.0, policy.initial_delay)
    while True:
        yield min(delay, policy.max_delay)
        delay = min(delay * max(policy.backoff_factor, 1.0), policy.max_delay)


async def _cancel_quietly(adapter: ScannerAdapter, handle: JobHandle) -> None:
    try:
        await adapter.cancel(handle)
    except Exception as exc:  # noqa: BLE001
        logger.warning("%s: cancel of job %s failed: %s", adapter.name, handle.job_id, exc)


async def wait_for_terminal(
    adapter: ScannerAdapter,
    handle: JobHandle,
    policy: PollSettings,
    *,
    sleep: Sleep = asyncio.sleep,
    clock: Clock = time.monotonic,
) -> None:
    """
    Poll `handle` until DONE.

    Raises PollTimeoutError when `max_attempts` or `timeout` is exhausted,
    SubmissionError after `max_consecutive_errors` failed polls in a row and
    BackendJobFailed when the backend reports failure.
    """
    started = clock()
    delays = backoff_delays(policy)
    attempts = 0
    consecutive_errors = 0

    while True:
        elapsed = clock() - started
        if attempts >= policy.max_attempts or elapsed >= policy.timeout:
            await _cancel_quietly(adapter, handle)
            raise PollTimeoutError(
                f"{adapter.name} job {handle.job_id} did not finish after {attempts} polls ({elapsed:.0f}s)"
            )
        attempts += 1

        try:
            state = await adapter.poll(handle)
        except BackendJobFailed:
            raise
        except Exception as exc:  # noqa: BLE001
            consecutive_errors += 1
            logger.warning(
                "%s: status check for job %s failed (attempt %d, consecutive errors %d): %s",
                adapter.name,
                handle.job_id,
                attempts,
                consecutive_errors,
                exc,
            )
            if consecutive_errors >= policy.max_consecutive_errors:
                await _cancel_quietly(adapter, handle)
                raise SubmissionError(
                    f"{adapter.name} job {handle.job_id} status check failed after "
                    f"{consecutive_errors} consecutive errors: {describe_exception(exc)}"
                ) from exc
        else:
            consecutive_errors = 0
            logger.debug("%s: job %s state %s", adapter.name, handle.job_id, state.value)
            if state == JobState.DONE:
                return
            if state == JobState.FAILED:
                detail = adapter.failure_detail(handle)
                await _cancel_quietly(adapter, handle)
                message = f"{adapter.name} job {handle.job_id} failed"
                raise BackendJobFailed(f"{message}: {detail}" if detail else message)

        remaining = policy.timeout - (clock() - started)
        await sleep(max(0.0, min(next(delays), remaining)))


async def run_adapter(
    adapter: ScannerAdapter,
    workspace: Workspace,
    policy: PollSettings,
    *,
    sleep: Sleep = asyncio.sleep,
    clock: Clock = time.monotonic,
) -> list[Finding]:
    """Drive one adapter through submit -> poll -> fetch; findings come back tagged with the adapter name."""
    handle = await adapter.submit(workspace)
    logger.info("%s: submitted job %s", adapter.name, handle.job_id)
    await wait_for_terminal(adapter, handle, policy, sleep=sleep, clock=clock)
    findings = await adapter.fetch(handle)
    logger.info("%s: job %s produced %d findings", adapter.name, handle.job_id, len(findings))
    return [finding.with_backend(adapter.name) for finding in findings]


__all__ = [
    "HealthState",
    "HealthStatus",
    "JobHandle",
    "JobState",
    "ScannerAdapter",
    "backoff_delays",
    "run_adapter",
    "wait_for_terminal",
]
