# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""SPDX 2.3 JSON export for completed scans."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from typing import Any

from ..errors import ScanStateError
from ..models.finding import Finding, FindingKind
from ..models.scan import Scan, ScanStatus
from ..version import __version__

SPDX_VERSION = "SPDX-2.3"
DATA_LICENSE = "CC0-1.0"
LICENSE_LIST_VERSION = "3.22"
DOCUMENT_ID = "SPDXRef-DOCUMENT"
PACKAGE_ID = "SPDXRef-Package"
NOASSERTION = "NOASSERTION"
DEFAULT_NAMESPACE_PREFIX = "https://spdx.org/spdxdocs/legalguard"


def repository_name(source_location: str) -> str:
    name = source_location.rstrip("/")
    if name.endswith(".git"):
        name = name[: -len(".git")]
    name = name.rsplit("/", 1)[-1].rsplit(":", 1)[-1]
    return name or "unknown-repo"


def _license_id(finding: Finding) -> str | None:
    return finding.spdx_id or finding.name


def _license_expression(ids: list[str]) -> str:
    if not ids:
        return NOASSERTION
    if len(ids) == 1:
        return ids[0]
    return "(" + " AND ".join(ids) + ")"


def _unique(values: Iterable[str | None]) -> list[str]:
    return sorted({value for value in values if value})


def _copyright_text(findings: Iterable[Finding]) -> str:
    statements = _unique(f.statement for f in findings if f.kind == FindingKind.COPYRIGHT)
    return "\n".join(statements) if statements else NOASSERTION


def _export_comment(findings: list[Finding]) -> str | None:
    entries = sorted(
        f"Export control: {f.check_id or f.source or 'unknown'} "
        f"(severity: {f.severity.value if f.severity else 'unspecified'}, line: {f.line or 0})"
        for f in findings
        if f.kind == FindingKind.EXPORT_CONTROL
    )
    return "; ".join(entries) if entries else None


def _file_name(path: str) -> str:
    return path if path.startswith("./") else f"./{path.lstrip('/')}"


def _build_file(index: int, path: str, findings: list[Finding]) -> dict[str, Any]:
    licenses = _unique(_license_id(f) for f in findings if f.kind == FindingKind.LICENSE)
    entry: dict[str, Any] = {
        "SPDXID": f"SPDXRef-File-{index}",
        "fileName": _file_name(path),
        "licenseConcluded": _license_expression(licenses),
        "licenseInfoInFiles": licenses or [NOASSERTION],
        "copyrightText": _copyright_text(findings),
    }
    comment = _export_comment(findings)
    if comment:
        entry["comment"] = comment
    return entry


def build_spdx_document(
    scan: Scan,
    findings: Iterable[Finding],
    *,
    namespace_prefix: str = DEFAULT_NAMESPACE_PREFIX,
) -> dict[str, Any]:
    """
    Describe a completed scan as an SPDX 2.3 JSON document.

    The repository becomes a single package; every file with at least one
    finding becomes a file element related to it by CONTAINS. Export-control
    findings have no SPDX field of their own and are summarised in the file
    comment.
    """
    if scan.overall_status != ScanStatus.COMPLETED:
        raise ScanStateError(f"scan {scan.id} is {scan.overall_status.value}; only completed scans can be exported")

    items = list(findings)
    by_path: dict[str, list[Finding]] = defaultdict(list)
    for finding in items:
        by_path[finding.file_path].append(finding)

    files = [_build_file(index, path, by_path[path]) for index, path in enumerate(sorted(by_path), start=1)]
    name = repository_name(scan.source_location)
    concluded = _license_expression(_unique(_license_id(f) for f in items if f.kind == FindingKind.LICENSE))
    counts = {kind: sum(1 for f in items if f.kind == kind) for kind in FindingKind}
    created = scan.completed_at or scan.created_at

    return {
        "spdxVersion": SPDX_VERSION,
        "dataLicense": DATA_LICENSE,
        "SPDXID": DOCUMENT_ID,
        "name": f"LegalGuard report - {name}",
        "documentNamespace": f"{namespace_prefix.rstrip('/')}/{scan.id}",
        "creationInfo": {
            "created": created.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "creators": [f"Tool: LegalGuard-{__version__}"],
            "licenseListVersion": LICENSE_LIST_VERSION,
        },
        "packages": [
            {
                "SPDXID": PACKAGE_ID,
                "name": name,
                "downloadLocation": scan.source_location,
                "filesAnalyzed": True,
                "licenseConcluded": concluded,
                "licenseDeclared": concluded,
                "copyrightText": _copyright_text(items),
                "summary": (
                    f"Repository scanned for license compliance. Found {counts[FindingKind.LICENSE]} license "
                    f"findings, {counts[FindingKind.COPYRIGHT]} copyright statements and "
                    f"{counts[FindingKind.EXPORT_CONTROL]} export-control findings."
                ),
            }
        ],
        "files": files,
        "relationships": [
            {"spdxElementId": DOCUMENT_ID, "relationshipType": "DESCRIBES", "relatedSpdxElement": PACKAGE_ID},
            *(
                {"spdxElementId": PACKAGE_ID, "relationshipType": "CONTAINS", "relatedSpdxElement": entry["SPDXID"]}
                for entry in files
            ),
        ],
    }


__all__ = ["build_spdx_document", "repository_name"]
