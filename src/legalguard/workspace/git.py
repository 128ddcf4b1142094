# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""`git clone` wrapper used to check out a repository for scanning."""

from __future__ import annotations

import asyncio
import base64
import logging
import os
from pathlib import Path

from ..errors import AcquisitionError, describe_exception
from ..process import ProcessFactory, spawn_process, terminate

logger = logging.getLogger(__name__)

VALID_URL_PREFIXES = ("http://", "https://", "git://", "ssh://", "git@")

_AUTH_MARKERS = (
    "authentication failed",
    "could not read username",
    "could not read password",
    "permission denied",
    "access denied",
    "returned error: 401",
    "returned error: 403",
)


def validate_git_url(url: str) -> None:
    """Raise AcquisitionError unless `url` looks like a clonable git remote."""
    if not url or not url.strip():
        raise AcquisitionError("Git URL cannot be empty")
    if not url.startswith(VALID_URL_PREFIXES):
        raise AcquisitionError(f"Invalid Git URL format. Must start with one of: {', '.join(VALID_URL_PREFIXES)}")


def build_clone_env(url: str, token: str | None, base_env: dict[str, str] | None = None) -> dict[str, str]:
    """
    Environment for a non-interactive clone.

    The token travels as an ``http.extraHeader`` config entry in the child
    environment, never on the command line.
    """
    env = dict(os.environ if base_env is None else base_env)
    env["GIT_TERMINAL_PROMPT"] = "0"
    if token and url.startswith(("http://", "https://")):
        basic = base64.b64encode(f"{token}:".encode()).decode("ascii")
        env["GIT_CONFIG_COUNT"] = "1"
        env["GIT_CONFIG_KEY_0"] = "http.extraHeader"
        env["GIT_CONFIG_VALUE_0"] = f"Authorization: Basic {basic}"
    return env


def _summarize_stderr(stderr: bytes, token: str | None) -> str:
    text = stderr.decode("utf-8", errors="replace")
    if token:
        text = text.replace(token, "***")
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    return lines[-1] if lines else ""


async def clone_repository(
    url: str,
    destination: Path,
    *,
    token: str | None = None,
    git_executable: str = "git",
    timeout: float = 600.0,
    process_factory: ProcessFactory | None = None,
) -> None:
    """Clone `url` into `destination`. Raises AcquisitionError on any failure."""
    validate_git_url(url)
    factory = process_factory or spawn_process
    cmd = [git_executable, "clone", "--depth", "1", "--quiet", "--", url, str(destination)]

    logger.info("Cloning repository %s to %s", url, destination)
    if token:
        logger.debug("Using authentication token for git clone")

    try:
        proc = await factory(*cmd, env=build_clone_env(url, token))
    except OSError as exc:
        raise AcquisitionError(f"cannot run git: {describe_exception(exc)}") from exc

    try:
        _stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        await terminate(proc)
        raise AcquisitionError(f"git clone timed out after {timeout:g}s") from exc

    if proc.returncode != 0:
        summary = _summarize_stderr(stderr, token)
        lowered = summary.lower()
        if any(marker in lowered for marker in _AUTH_MARKERS):
            raise AcquisitionError(f"git authentication failed: {summary}")
        raise AcquisitionError(f"git clone failed (exit {proc.returncode})" + (f": {summary}" if summary else ""))

    logger.info("Repository cloned successfully")
