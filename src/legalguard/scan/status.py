# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Overall scan status resolution."""

from collections.abc import Iterable

from ..models.scan import ScanStatus


def resolve_overall_status(sub_statuses: Iterable[ScanStatus]) -> ScanStatus:
    """
    Combine per-backend statuses into the scan's overall status.

    All failed -> failed; all terminal -> completed (a single completed backend
    is enough); any backend past pending -> in progress; otherwise pending.
    """
    statuses = list(sub_statuses)
    if not statuses:
        return ScanStatus.PENDING
    if all(status == ScanStatus.FAILED for status in statuses):
        return ScanStatus.FAILED
    if all(status.is_terminal for status in statuses):
        return ScanStatus.COMPLETED
    if any(status != ScanStatus.PENDING for status in statuses):
        return ScanStatus.IN_PROGRESS
    return ScanStatus.PENDING


__all__ = ["resolve_overall_status"]
