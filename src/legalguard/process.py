# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Subprocess spawning seam shared by the git workspace and the semgrep adapter."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, Protocol


class Process(Protocol):
    """The subset of `asyncio.subprocess.Process` LegalGuard relies on."""

    returncode: int | None

    async def communicate(self, input: bytes | None = None) -> tuple[bytes, bytes]: ...

    async def wait(self) -> int: ...

    def kill(self) -> None: ...


ProcessFactory = Callable[..., Awaitable[Process]]


async def spawn_process(*cmd: str, **kwargs: Any) -> Process:
    """Default ProcessFactory: spawn `cmd` with captured stdout/stderr."""
    return await asyncio.create_subprocess_exec(
        *cmd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        **kwargs,
    )


async def terminate(proc: Process) -> None:
    """Kill `proc` if it is still running and reap it."""
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await proc.wait()
