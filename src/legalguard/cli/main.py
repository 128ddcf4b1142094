# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""LegalGuard CLI."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from typing import Any

from ..config import Settings, load_settings
from ..errors import LegalGuardError
from ..log import setup_logging
from ..models import Finding, FindingKind, RiskRuleSet, Scan, ScanStatus
from ..runtime import LegalGuard
from ..scanners import HealthStatus

CLI_TEXT_TRUNCATION_BYTES = 4096


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--json",
        action="store_true",
        help="Output JSON instead of human-friendly summary",
    )
    common.add_argument(
        "--db",
        metavar="PATH",
        help="SQLite database path (default: $DATABASE_URL, else an in-memory store)",
    )
    common.add_argument(
        "--ignore-ssl-errors",
        action="store_true",
        help="Skip TLS verification when talking to the license backend",
    )
    common.add_argument("--log-level", help="Logging level (default: $LEGALGUARD_LOG_LEVEL or WARNING)")

    parser = argparse.ArgumentParser(description="LegalGuard license, copyright and export-control scanner")
    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", parents=[common], help="Clone a repository and scan it")
    scan.add_argument("url", help="Git repository URL (https://, http:// or git@)")
    scan.add_argument(
        "--token-env",
        metavar="VAR",
        help="Read the git access token from this environment variable",
    )

    for name, help_text in (
        ("show", "Show a stored scan"),
        ("findings", "List the findings of a stored scan"),
        ("sbom", "Export a completed scan as an SPDX 2.3 JSON document"),
    ):
        cmd = sub.add_parser(name, parents=[common], help=help_text)
        cmd.add_argument("scan_id", help="Scan id")

    listing = sub.add_parser("list", parents=[common], help="List stored scans")
    listing.add_argument("--status", choices=[s.value for s in ScanStatus], help="Only scans with this status")

    delete = sub.add_parser("delete", parents=[common], help="Delete a stored scan, or every scan with --all")
    delete.add_argument("scan_id", nargs="?", help="Scan id")
    delete.add_argument("--all", action="store_true", help="Delete every stored scan")

    sub.add_parser("backfill", parents=[common], help="Score completed scans that have no risk assessment")
    sub.add_parser("rules", parents=[common], help="Show the license risk rules")
    sub.add_parser("health", parents=[common], help="Check that every scanner backend is reachable")
    return parser


def _truncate_text_bytes(text: str, max_bytes: int) -> str:
    raw = text.encode("utf-8")
    if len(raw) <= max_bytes:
        return text
    suffix = "...[truncated]"
    suffix_bytes = suffix.encode("utf-8")
    keep = max_bytes - len(suffix_bytes)
    if keep <= 0:
        return suffix_bytes[:max_bytes].decode("utf-8", errors="ignore")
    prefix = raw[:keep].decode("utf-8", errors="ignore")
    return prefix + suffix


def _truncate_for_cli(value: Any, *, max_bytes: int) -> Any:
    """Truncate large strings (matched code, copyright blocks) in JSON output."""
    if isinstance(value, str):
        return _truncate_text_bytes(value, max_bytes)
    if isinstance(value, dict):
        return {k: _truncate_for_cli(v, max_bytes=max_bytes) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_truncate_for_cli(v, max_bytes=max_bytes) for v in value]
    return value


def _jsonable(data: Any) -> Any:
    if hasattr(data, "to_dict"):
        return data.to_dict()
    if isinstance(data, list):
        return [_jsonable(item) for item in data]
    return data


def _print_json(data: Any, *, truncate: bool = True) -> None:
    payload = _jsonable(data)
    if truncate:
        payload = _truncate_for_cli(payload, max_bytes=CLI_TEXT_TRUNCATION_BYTES)
    json.dump(payload, sys.stdout, indent=2, sort_keys=True)
    sys.stdout.write("\n")


def _print_scan(scan: Scan) -> None:
    print(f"[LegalGuard] Scan {scan.id}: {scan.overall_status.value}")
    print(f"Source: {scan.source_location}")
    for name, state in scan.sub_status.items():
        suffix = f" ({state.error})" if state.error else ""
        print(f"  {name}: {state.status.value}{suffix}")
    if scan.error:
        print(f"Error: {scan.error}")
    if scan.risk is None:
        return
    print(f"Risk: {scan.risk.score}/100 ({scan.risk.level.value})")
    for factor in scan.risk.factors:
        print(f"- {factor.category} [{factor.severity.value}] {factor.description}")
        if factor.details:
            print(f"    {', '.join(factor.details)}")


def _describe_finding(finding: Finding) -> str:
    if finding.kind == FindingKind.LICENSE:
        spdx = f" [{finding.spdx_id}]" if finding.spdx_id else ""
        return f"license {finding.name}{spdx}"
    if finding.kind == FindingKind.COPYRIGHT:
        return f"copyright {finding.statement}"
    severity = finding.severity.value if finding.severity else "unspecified"
    location = f":{finding.line}" if finding.line else ""
    crypto = " crypto" if finding.cryptography else ""
    return f"export_control{location} {finding.check_id or '-'} ({severity}{crypto})"


def _print_findings(findings: list[Finding]) -> None:
    if not findings:
        print("No findings.")
        return
    for finding in sorted(findings, key=lambda f: (f.file_path, f.kind.value)):
        print(f"{finding.file_path}: {_describe_finding(finding)}")


def _print_rules(rules: RiskRuleSet) -> None:
    for rule in sorted(rules, key=lambda r: (-r.weight, r.pattern)):
        print(f"{rule.weight:>3}  {rule.category.value:<12} {rule.pattern:<20} {rule.description}")


def _print_health(statuses: list[HealthStatus]) -> None:
    for status in statuses:
        print(f"{status.backend}: {status.state.value}" + (f" ({status.detail})" if status.detail else ""))


def _settings_for(args: argparse.Namespace) -> Settings:
    settings = load_settings()
    if args.db:
        settings.store.database_path = args.db
    if args.ignore_ssl_errors:
        settings.http.verify_ssl = False
    return settings


def _credential_for(args: argparse.Namespace) -> str | None:
    var = getattr(args, "token_env", None)
    if not var:
        return None
    token = os.getenv(var)
    if not token:
        raise LegalGuardError(f"environment variable {var} is not set")
    return token


async def _run(args: argparse.Namespace) -> int:
    async with LegalGuard(_settings_for(args)) as guard:
        if args.command == "scan":
            scan = await guard.scan(args.url, _credential_for(args))
            if args.json:
                _print_json(scan)
            else:
                _print_scan(scan)
            return 0 if scan.overall_status == ScanStatus.COMPLETED else 1
        if args.command == "show":
            scan = await guard.get_scan(args.scan_id)
            if args.json:
                _print_json(scan)
            else:
                _print_scan(scan)
            return 0
        if args.command == "findings":
            findings = await guard.get_findings(args.scan_id)
            if args.json:
                _print_json(findings)
            else:
                _print_findings(findings)
            return 0
        if args.command == "sbom":
            _print_json(await guard.export_spdx(args.scan_id), truncate=False)
            return 0
        if args.command == "list":
            scans = await guard.list_scans(ScanStatus(args.status) if args.status else None)
            if args.json:
                _print_json(scans)
            else:
                for scan in scans:
                    print(f"{scan.id}  {scan.overall_status.value:<11} {scan.source_location}")
            return 0
        if args.command == "delete":
            if args.all:
                print(f"Deleted {await guard.delete_all_scans()} scan(s)")
            else:
                await guard.delete_scan(args.scan_id)
                print(f"Deleted scan {args.scan_id}")
            return 0
        if args.command == "backfill":
            report = await guard.backfill_risk()
            if args.json:
                _print_json(report)
            else:
                print(f"Backfilled {len(report.updated)} scan(s)")
                for scan_id, error in sorted(report.failed.items()):
                    print(f"  {scan_id}: {error}")
            return 0 if not report.failed else 1
        if args.command == "rules":
            rules = guard.rules()
            if args.json:
                _print_json([rule.to_dict() for rule in rules])
            else:
                _print_rules(rules)
            return 0
        if args.command == "health":
            statuses = await guard.health_check()
            if args.json:
                _print_json(statuses)
            else:
                _print_health(statuses)
            return 0 if all(status.ok for status in statuses) else 1
    raise AssertionError(f"unhandled command {args.command!r}")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "delete" and args.all == bool(args.scan_id):
        parser.error("delete takes either a scan id or --all")
    setup_logging(args.log_level)

    try:
        return asyncio.run(_run(args))
    except LegalGuardError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
