# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Semgrep JSON output parsing."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from ..errors import ParseError
from ..models.finding import Finding, Severity

logger = logging.getLogger(__name__)

SEVERITY_MAP: dict[str, Severity] = {
    "ERROR": Severity.HIGH,
    "WARNING": Severity.MEDIUM,
    "INFO": Severity.LOW,
}

_CRYPTO_PATTERN = re.compile(r"crypt|cipher|(?<![a-z])ecc(?![a-z])")


def map_severity(value: Any) -> Severity:
    severity = SEVERITY_MAP.get(str(value or "").upper())
    if severity is None:
        logger.warning("Unknown Semgrep severity: %s, defaulting to 'low'", value)
        return Severity.LOW
    return severity


def is_cryptography(check_id: str, metadata: dict[str, Any]) -> bool:
    haystack = check_id.lower() + " " + json.dumps(metadata, sort_keys=True, default=str).lower()
    return bool(_CRYPTO_PATTERN.search(haystack))


def _relative(path: str, root: str | None) -> str:
    if root:
        prefix = root.rstrip("/") + "/"
        if path.startswith(prefix):
            return path[len(prefix):]
    return path


def parse_semgrep_output(text: str, *, root: str | None = None) -> list[Finding]:
    """
    Convert ``semgrep --json`` output into ExportControl findings.

    Paths under `root` are reported relative to it. Errors listed by semgrep
    itself are logged, not raised.
    """
    try:
        payload = json.loads(text)
    except ValueError as exc:
        raise ParseError(f"Failed to parse Semgrep JSON: {exc}") from exc
    if not isinstance(payload, dict) or not isinstance(payload.get("results"), list):
        raise ParseError("Semgrep output has no results list")

    for error in payload.get("errors") or []:
        if isinstance(error, dict):
            logger.warning("Semgrep scan error: %s (path: %s)", error.get("message"), error.get("path"))

    findings: list[Finding] = []
    for result in payload["results"]:
        if not isinstance(result, dict):
            raise ParseError(f"Semgrep result must be an object, got {type(result).__name__}")
        extra = result.get("extra")
        path = result.get("path")
        check_id = result.get("check_id")
        if not isinstance(extra, dict) or not isinstance(path, str) or not isinstance(check_id, str):
            raise ParseError(f"Semgrep result missing path/check_id/extra: {result!r}")

        message = str(extra.get("message") or "").strip()
        matched = result.get("lines") or extra.get("lines")
        content = f"{message}\n\nMatched code: `{matched.strip()}`" if isinstance(matched, str) and matched.strip() else message

        start = result.get("start")
        line = start.get("line") if isinstance(start, dict) else None
        metadata = extra.get("metadata") if isinstance(extra.get("metadata"), dict) else {}

        findings.append(
            Finding.export_control(
                _relative(path, root),
                content,
                severity=map_severity(extra.get("severity")),
                line=int(line) if isinstance(line, int) else None,
                check_id=check_id,
                source="semgrep",
                cryptography=is_cryptography(check_id, metadata),
            )
        )
    logger.info("Parsed %d Semgrep findings", len(findings))
    return findings


__all__ = ["SEVERITY_MAP", "is_cryptography", "map_severity", "parse_semgrep_output"]
