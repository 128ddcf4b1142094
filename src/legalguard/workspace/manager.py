# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Per-scan checkout directories."""

from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from ..config import WorkspaceSettings
from ..errors import AcquisitionError, describe_exception
from ..process import ProcessFactory
from .git import clone_repository, validate_git_url

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Workspace:
    """A checked-out repository owned by exactly one scan."""

    scan_id: str
    path: Path

    @property
    def name(self) -> str:
        return self.path.name

    def iter_files(self):
        """Regular files in the checkout, excluding VCS metadata."""
        for item in sorted(self.path.rglob("*")):
            if ".git" in item.relative_to(self.path).parts:
                continue
            if item.is_file():
                yield item

    def is_empty(self) -> bool:
        return next(self.iter_files(), None) is None


class WorkspaceManager:
    """
    Acquire and release `<base_dir>/<scan_id>` checkouts.

    `release` is idempotent; it is safe to call after a failed acquisition.
    """

    def __init__(self, settings: WorkspaceSettings | None = None, *, process_factory: ProcessFactory | None = None):
        self.settings = settings or WorkspaceSettings.from_env()
        self.base_dir = Path(self.settings.base_dir)
        self._process_factory = process_factory

    def path_for(self, scan_id: str) -> Path:
        return self.base_dir / scan_id

    async def acquire(self, scan_id: str, source_location: str, credential: str | None = None) -> Workspace:
        validate_git_url(source_location)
        destination = self.path_for(scan_id)
        try:
            await asyncio.to_thread(self._prepare, destination)
        except OSError as exc:
            raise AcquisitionError(f"cannot prepare workspace: {describe_exception(exc)}") from exc

        # A partial checkout left by a failed clone is removed by release().
        await clone_repository(
            source_location,
            destination,
            token=credential or self.settings.default_token,
            git_executable=self.settings.git_executable,
            timeout=self.settings.clone_timeout,
            process_factory=self._process_factory,
        )
        return Workspace(scan_id=scan_id, path=destination)

    def _prepare(self, destination: Path) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        if destination.exists():
            shutil.rmtree(destination)

    async def release(self, scan_id: str) -> None:
        destination = self.path_for(scan_id)
        if not destination.exists():
            return
        try:
            await asyncio.to_thread(shutil.rmtree, destination)
            logger.debug("Cleaned up workspace at %s", destination)
        except OSError as exc:
            logger.warning("Failed to clean up workspace %s: %s", destination, exc)
