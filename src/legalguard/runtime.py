# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""High-level LegalGuard facade for running and inspecting scans."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from .config import Settings, load_settings
from .export import build_spdx_document
from .http.client import AsyncHttpClient, create_default_http_client
from .models import Finding, RiskRuleSet, Scan, ScanStatus
from .process import ProcessFactory
from .risk import RiskPolicy
from .scan import BackfillReport, ScanOrchestrator
from .scanners import HealthStatus, ScannerAdapter, build_default_adapters
from .store import ScanStore, create_store
from .workspace import WorkspaceManager


class LegalGuard:
    """
    Convenience wrapper that wires settings, the shared HTTP client, the scanner
    adapters, workspace manager, store and orchestrator together.

    Every collaborator can be injected; anything omitted is built from
    `settings` (or the environment when no settings are given).
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        http_client: AsyncHttpClient | None = None,
        store: ScanStore | None = None,
        adapters: Sequence[ScannerAdapter] | None = None,
        workspace_manager: WorkspaceManager | None = None,
        policy: RiskPolicy | None = None,
        process_factory: ProcessFactory | None = None,
    ):
        self.settings = settings or load_settings()
        self.http_client = http_client or create_default_http_client(self.settings.http)
        self.store = store or create_store(self.settings.store)
        self.workspace_manager = workspace_manager or WorkspaceManager(
            self.settings.workspace, process_factory=process_factory
        )
        if adapters is None:
            adapters = build_default_adapters(self.settings, self.http_client, process_factory=process_factory)
        self.adapters = list(adapters)
        self.policy = policy or RiskPolicy.from_env()
        self.orchestrator = ScanOrchestrator(
            self.store,
            self.workspace_manager,
            self.adapters,
            poll_settings=self.settings.poll,
            policy=self.policy,
            store_settings=self.settings.store,
        )

    async def start_scan(self, source_location: str, credential: str | None = None) -> str:
        return await self.orchestrator.start_scan(source_location, credential)

    async def scan(self, source_location: str, credential: str | None = None) -> Scan:
        """Queue a scan and wait for the queue to drain. Returns the final record."""
        scan_id = await self.orchestrator.start_scan(source_location, credential)
        await self.orchestrator.join()
        return await self.orchestrator.get_scan(scan_id)

    async def get_scan(self, scan_id: str) -> Scan:
        return await self.orchestrator.get_scan(scan_id)

    async def get_findings(self, scan_id: str) -> list[Finding]:
        return await self.orchestrator.get_findings(scan_id)

    async def list_scans(self, status: ScanStatus | None = None) -> list[Scan]:
        return await self.orchestrator.list_scans(status)

    async def delete_scan(self, scan_id: str) -> None:
        await self.orchestrator.delete_scan(scan_id)

    async def delete_all_scans(self) -> int:
        return await self.orchestrator.delete_all_scans()

    async def backfill_risk(self) -> BackfillReport:
        """Score completed scans that were stored without a risk assessment."""
        return await self.orchestrator.backfill_risk()

    async def export_spdx(self, scan_id: str) -> dict[str, Any]:
        scan = await self.orchestrator.get_scan(scan_id)
        findings = await self.orchestrator.get_findings(scan_id)
        return build_spdx_document(scan, findings)

    def rules(self) -> RiskRuleSet:
        return self.store.list_rules()

    async def health_check(self) -> list[HealthStatus]:
        return await self.orchestrator.health_check()

    async def close(self) -> None:
        await self.orchestrator.stop()
        try:
            await self.http_client.close()
        finally:
            self.store.close()

    async def __aenter__(self) -> LegalGuard:
        return self

    async def __aexit__(self, _exc_type, _exc, _tb) -> None:  # noqa: ANN001
        await self.close()


__all__ = ["LegalGuard"]
