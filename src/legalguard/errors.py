# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Error taxonomy and exception helpers."""

from __future__ import annotations

import asyncio
import socket
import ssl as ssl_module
import subprocess
from enum import Enum

import httpx


class LegalGuardError(Exception):
    """Base class for every error raised by LegalGuard."""


class AcquisitionError(LegalGuardError):
    """The workspace for a scan could not be obtained. Fatal to the whole scan."""


class ScannerError(LegalGuardError):
    """An error scoped to one scanner backend. Fatal to that backend only."""


class SubmissionError(ScannerError):
    """The backend was unreachable, rejected the input, or stopped answering."""


class PollTimeoutError(SubmissionError, TimeoutError):
    """A backend job did not reach a terminal state within the polling budget."""


class BackendJobFailed(ScannerError):
    """The backend reported that the job itself failed."""


class ParseError(ScannerError):
    """Backend output could not be normalized into findings."""


class ScoringError(LegalGuardError):
    """Risk scoring was handed input it cannot score."""


class StoreError(LegalGuardError):
    """Persistence failure. `transient` errors may be retried."""

    def __init__(self, message: str, *, transient: bool = False):
        super().__init__(message)
        self.transient = transient


class ScanNotFoundError(LegalGuardError, KeyError):
    """No scan exists with the requested id."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "scan not found"


class ScanStateError(LegalGuardError):
    """The operation is not valid for the scan's current state."""


class ErrorCategory(str, Enum):
    TIMEOUT = "TIMEOUT"
    AUTH_ERROR = "AUTH_ERROR"
    SSL_ERROR = "SSL_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    DNS_ERROR = "DNS_ERROR"
    PROCESS_ERROR = "PROCESS_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    NONE = "NONE"


def categorize_exception(exc: BaseException) -> ErrorCategory:
    """
    Map Python/httpx/subprocess exceptions to ErrorCategory.
    """
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError, subprocess.TimeoutExpired, TimeoutError)):
        return ErrorCategory.TIMEOUT

    if isinstance(exc, httpx.HTTPStatusError):
        if exc.response.status_code in (401, 403):
            return ErrorCategory.AUTH_ERROR
        return ErrorCategory.CONNECTION_ERROR

    if isinstance(exc, (httpx.ConnectError, httpx.RemoteProtocolError, httpx.NetworkError, httpx.ProxyError)):
        return ErrorCategory.CONNECTION_ERROR

    if isinstance(exc, (ssl_module.SSLError, ssl_module.CertificateError)):
        return ErrorCategory.SSL_ERROR

    if isinstance(exc, (socket.gaierror, socket.herror)):
        return ErrorCategory.DNS_ERROR

    if isinstance(exc, (ConnectionError, ConnectionRefusedError, ConnectionResetError)):
        return ErrorCategory.CONNECTION_ERROR

    if isinstance(exc, (FileNotFoundError, PermissionError, subprocess.SubprocessError)):
        return ErrorCategory.PROCESS_ERROR

    return ErrorCategory.UNKNOWN_ERROR


def error_category_to_reason(category: ErrorCategory | None) -> str:
    """User-facing reason string."""
    mapping = {
        ErrorCategory.TIMEOUT: "Timed out waiting for the backend",
        ErrorCategory.AUTH_ERROR: "Authentication failed",
        ErrorCategory.SSL_ERROR: "TLS/certificate issue",
        ErrorCategory.CONNECTION_ERROR: "Backend unreachable",
        ErrorCategory.DNS_ERROR: "DNS resolution failure",
        ErrorCategory.PROCESS_ERROR: "Could not run the scanner process",
        ErrorCategory.UNKNOWN_ERROR: "Unexpected backend error",
        ErrorCategory.NONE: "",
        None: "",
    }
    return mapping.get(category, "Unexpected backend error")


def describe_exception(exc: BaseException) -> str:
    """Build a non-empty, human-readable message for an exception."""
    reason = error_category_to_reason(categorize_exception(exc))
    detail = str(exc).strip() or exc.__class__.__name__
    return f"{reason}: {detail}" if reason else detail
