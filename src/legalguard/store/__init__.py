# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Scan store implementations."""

from ..config import StoreSettings
from .base import ScanStore
from .memory import MemoryScanStore
from .sqlite import SqliteScanStore


def database_path_from_url(url: str | None) -> str | None:
    """Accept a plain path or a ``sqlite://<path>[?options]`` URL."""
    if not url:
        return None
    if url.startswith("sqlite://"):
        url = url[len("sqlite://"):].split("?", 1)[0]
    return url or None


def create_store(settings: StoreSettings | None = None) -> ScanStore:
    """SQLite when a database path is configured, otherwise in-memory."""
    settings = settings or StoreSettings.from_env()
    path = database_path_from_url(settings.database_path)
    if path:
        return SqliteScanStore(path)
    return MemoryScanStore()


__all__ = ["MemoryScanStore", "ScanStore", "SqliteScanStore", "create_store", "database_path_from_url"]
