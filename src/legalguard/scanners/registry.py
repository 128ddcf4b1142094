# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Default scanner adapter set."""

from __future__ import annotations

from ..config import Settings
from ..http import AsyncHttpClient, RetryConfig
from ..process import ProcessFactory
from .base import ScannerAdapter
from .fossology import FossologyAdapter
from .semgrep import SemgrepAdapter


def build_default_adapters(
    settings: Settings,
    http_client: AsyncHttpClient,
    *,
    process_factory: ProcessFactory | None = None,
) -> list[ScannerAdapter]:
    return [
        FossologyAdapter(
            settings.fossology,
            http_client,
            poll_settings=settings.poll,
            retry_config=RetryConfig.from_settings(settings.http),
        ),
        SemgrepAdapter(settings.semgrep, process_factory=process_factory),
    ]


__all__ = ["build_default_adapters"]
