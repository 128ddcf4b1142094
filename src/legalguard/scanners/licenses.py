# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Normalization of license/copyright backend results into findings."""

from __future__ import annotations

import logging
import re
from typing import Any

from ..errors import ParseError
from ..models.finding import Finding

logger = logging.getLogger(__name__)

NO_LICENSE_PLACEHOLDER = "No_license_found"

# Whole-token matches against the lower-cased, dash-joined name, checked in order.
SPDX_NAME_MAP: tuple[tuple[str, str], ...] = (
    ("agpl-3.0", "AGPL-3.0-only"),
    ("lgpl-2.1", "LGPL-2.1-only"),
    ("lgpl-3.0", "LGPL-3.0-only"),
    ("gpl-2.0", "GPL-2.0-only"),
    ("gpl-3.0", "GPL-3.0-only"),
    ("apache-2.0", "Apache-2.0"),
    ("apache-license-2.0", "Apache-2.0"),
    ("bsd-2-clause", "BSD-2-Clause"),
    ("bsd-3-clause", "BSD-3-Clause"),
    ("mpl-2.0", "MPL-2.0"),
    ("cc0-1.0", "CC0-1.0"),
    ("artistic-2.0", "Artistic-2.0"),
    ("unlicense", "Unlicense"),
    ("zlib", "Zlib"),
    ("isc", "ISC"),
    ("mit", "MIT"),
)

_SPDX_PATTERNS = tuple(
    (re.compile(rf"(?<![a-z0-9]){re.escape(needle)}(?![a-z0-9])"), spdx) for needle, spdx in SPDX_NAME_MAP
)

_HOLDER_PATTERNS = (
    re.compile(r"copyright\s*(?:\(c\))?\s*(?:\d{4}[-,\s]*)*\s*(?:by\s+)?(.+?)(?:\.|$)", re.IGNORECASE),
    re.compile(r"©\s*(?:\d{4}[-,\s]*)*\s*(?:by\s+)?(.+?)(?:\.|$)", re.IGNORECASE),
    re.compile(r"copr\.\s*(?:\d{4}[-,\s]*)*\s*(?:by\s+)?(.+?)(?:\.|$)", re.IGNORECASE),
)
_YEAR_PATTERN = re.compile(r"\b(19\d{2}|20\d{2})\b")


def map_to_spdx(license_name: str) -> str | None:
    """
    Best-effort SPDX identifier for a backend license name.

    >>> map_to_spdx("Apache License 2.0")
    'Apache-2.0'
    """
    normalized = license_name.lower().replace(" ", "-")
    for pattern, spdx in _SPDX_PATTERNS:
        if pattern.search(normalized):
            return spdx
    return None


def is_printable_text(text: str) -> bool:
    """False when the text carries control characters or decoding debris."""
    for char in text:
        if char in "\t\n\r":
            continue
        if char == "\ufffd" or not char.isprintable():
            return False
    return True


def extract_copyright_holders(statement: str) -> list[str]:
    holders: list[str] = []
    for pattern in _HOLDER_PATTERNS:
        match = pattern.search(statement)
        if not match:
            continue
        holder = match.group(1).strip()
        if holder and not holder[0].isdigit():
            holders.append(holder)
            break
    return sorted(set(holders))


def extract_copyright_years(statement: str) -> list[str]:
    return sorted(set(_YEAR_PATTERN.findall(statement)))


def parse_copyright_statement(statement: str) -> tuple[str, list[str], list[str]] | None:
    """Return ``(statement, holders, years)`` or None when nothing identifiable is present."""
    statement = statement.strip()
    if not statement:
        return None
    holders = extract_copyright_holders(statement)
    years = extract_copyright_years(statement)
    if not holders and not years:
        return None
    return statement, holders, years


def _license_entry(raw: Any) -> tuple[str, str | None, float]:
    if isinstance(raw, str):
        return raw, None, 1.0
    if isinstance(raw, dict):
        name = raw.get("shortName") or raw.get("license")
        if not isinstance(name, str):
            raise ParseError(f"license entry without a name: {raw!r}")
        spdx = raw.get("spdxId") or raw.get("spdx_id")
        percentage = raw.get("percentage")
        try:
            confidence = float(percentage) / 100.0 if percentage is not None else 1.0
        except (TypeError, ValueError) as exc:
            raise ParseError(f"invalid match percentage for {name}: {percentage!r}") from exc
        return name, spdx if isinstance(spdx, str) and spdx else None, max(0.0, min(confidence, 1.0))
    raise ParseError(f"unexpected license entry: {raw!r}")


def parse_license_response(payload: Any) -> list[Finding]:
    """
    Convert a per-file license listing into License findings.

    Placeholder "no license" entries are dropped and a name reported by
    several agents for the same file is kept once.
    """
    if not isinstance(payload, list):
        raise ParseError(f"license response must be a list, got {type(payload).__name__}")

    findings: list[Finding] = []
    seen: set[tuple[str, str]] = set()
    for item in payload:
        if not isinstance(item, dict):
            raise ParseError(f"license response item must be an object, got {type(item).__name__}")
        file_path = item.get("filePath")
        if not isinstance(file_path, str):
            raise ParseError("license response item without filePath")
        groups = item.get("findings") or {}
        if not isinstance(groups, dict):
            raise ParseError(f"findings for {file_path} must be an object")
        for key in ("scanner", "conclusion"):
            for raw in groups.get(key) or []:
                name, spdx, confidence = _license_entry(raw)
                if not name or name == NO_LICENSE_PLACEHOLDER:
                    continue
                if (file_path, name) in seen:
                    continue
                seen.add((file_path, name))
                findings.append(
                    Finding.license(
                        file_path,
                        name,
                        spdx_id=spdx or map_to_spdx(name),
                        confidence=confidence,
                    )
                )
    logger.debug("Parsed %d license findings", len(findings))
    return findings


def parse_copyright_response(payload: Any) -> list[Finding]:
    """Convert ``[{"copyright": str, "filePath": [paths]}]`` into one Copyright finding per path."""
    if not isinstance(payload, list):
        raise ParseError(f"copyright response must be a list, got {type(payload).__name__}")

    findings: list[Finding] = []
    for item in payload:
        if not isinstance(item, dict):
            raise ParseError(f"copyright response item must be an object, got {type(item).__name__}")
        text = item.get("copyright") or ""
        paths = item.get("filePath") or []
        if isinstance(paths, str):
            paths = [paths]
        if not isinstance(text, str) or not isinstance(paths, list):
            raise ParseError(f"malformed copyright entry: {item!r}")
        if not text or not is_printable_text(text):
            logger.debug("Skipping copyright with binary data from %s", paths)
            continue
        parsed = parse_copyright_statement(text)
        if parsed is None:
            continue
        statement, holders, years = parsed
        for path in paths:
            findings.append(Finding.copyright(str(path), statement, holders=holders, years=years))
    logger.debug("Parsed %d copyright findings", len(findings))
    return findings


__all__ = [
    "NO_LICENSE_PLACEHOLDER",
    "SPDX_NAME_MAP",
    "extract_copyright_holders",
    "extract_copyright_years",
    "is_printable_text",
    "map_to_spdx",
    "parse_copyright_response",
    "parse_copyright_statement",
    "parse_license_response",
]
