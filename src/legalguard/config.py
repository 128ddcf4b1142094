# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Configuration helpers for LegalGuard."""

import os
from dataclasses import dataclass, field

from .version import __version__

DEFAULT_USER_AGENT = f"LegalGuard/{__version__} (license and export-control scanner)"


def _float_env(name: str, default: float) -> float:
    try:
        value = os.getenv(name)
        return float(value) if value is not None else default
    except ValueError:
        return default


def _int_env(name: str, default: int) -> int:
    try:
        value = os.getenv(name)
        return int(value) if value is not None else default
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _optional_str_env(name: str, default: str | None) -> str | None:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    return value or None


@dataclass
class HttpSettings:
    """HTTP client defaults shared by REST-backed scanner adapters."""

    timeout: float = 300.0
    max_retries: int = 2
    backoff_factor: float = 2.0
    initial_delay: float = 1.0
    retry_budget_cap: float = 600.0
    user_agent: str = DEFAULT_USER_AGENT
    verify_ssl: bool = True
    max_body_bytes: int = 64 * 1024 * 1024

    @classmethod
    def from_env(cls) -> "HttpSettings":
        """Create settings from environment variables (evaluated at call time)."""
        max_body_bytes = _int_env("LEGALGUARD_HTTP_MAX_BODY_BYTES", cls.max_body_bytes)
        if max_body_bytes <= 0:
            max_body_bytes = cls.max_body_bytes
        return cls(
            timeout=_float_env("LEGALGUARD_HTTP_TIMEOUT", cls.timeout),
            max_retries=_int_env("LEGALGUARD_HTTP_RETRIES", cls.max_retries),
            backoff_factor=_float_env("LEGALGUARD_HTTP_BACKOFF", cls.backoff_factor),
            initial_delay=_float_env("LEGALGUARD_HTTP_INITIAL_DELAY", cls.initial_delay),
            retry_budget_cap=_float_env("LEGALGUARD_HTTP_RETRY_BUDGET_CAP", cls.retry_budget_cap),
            user_agent=os.getenv("LEGALGUARD_USER_AGENT", cls.user_agent),
            verify_ssl=_bool_env("LEGALGUARD_HTTP_VERIFY_SSL", cls.verify_ssl),
            max_body_bytes=max_body_bytes,
        )


@dataclass
class PollSettings:
    """
    Backoff policy for polling a backend job until it reaches a terminal state.

    Delays grow by `backoff_factor` from `initial_delay` up to `max_delay`.
    Polling stops after `max_attempts` observations or `timeout` seconds,
    whichever comes first.
    """

    initial_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    max_attempts: int = 120
    timeout: float = 1800.0
    max_consecutive_errors: int = 3

    @classmethod
    def from_env(cls) -> "PollSettings":
        return cls(
            initial_delay=_float_env("LEGALGUARD_POLL_INITIAL_DELAY", cls.initial_delay),
            max_delay=_float_env("LEGALGUARD_POLL_MAX_DELAY", cls.max_delay),
            backoff_factor=_float_env("LEGALGUARD_POLL_BACKOFF", cls.backoff_factor),
            max_attempts=max(1, _int_env("LEGALGUARD_POLL_MAX_ATTEMPTS", cls.max_attempts)),
            timeout=_float_env("LEGALGUARD_POLL_TIMEOUT", cls.timeout),
            max_consecutive_errors=max(1, _int_env("LEGALGUARD_POLL_MAX_ERRORS", cls.max_consecutive_errors)),
        )


@dataclass
class FossologySettings:
    """Connection settings for the license/copyright backend."""

    url: str = "http://localhost:8081"
    api_token: str = ""
    username: str = "fossy"
    password: str = "fossy"
    folder_id: int = 1

    @classmethod
    def from_env(cls) -> "FossologySettings":
        return cls(
            url=os.getenv("FOSSOLOGY_URL", cls.url).rstrip("/"),
            api_token=os.getenv("FOSSOLOGY_API_TOKEN", cls.api_token),
            username=os.getenv("LEGALGUARD_FOSSOLOGY_USERNAME", cls.username),
            password=os.getenv("LEGALGUARD_FOSSOLOGY_PASSWORD", cls.password),
            folder_id=_int_env("LEGALGUARD_FOSSOLOGY_FOLDER_ID", cls.folder_id),
        )


@dataclass
class SemgrepSettings:
    """
    Settings for the export-control backend.

    When `container` is set the scan runs through `docker exec` and the
    workspace is addressed as `<scan_root>/<workspace dir name>` inside it.
    """

    container: str | None = "legalguard-semgrep"
    executable: str = "semgrep"
    rules: str = "/semgrep-rules/ecc-crypto-detection.yaml"
    scan_root: str = "/scans/scans"
    max_memory_mb: int = 2000

    @classmethod
    def from_env(cls) -> "SemgrepSettings":
        return cls(
            container=_optional_str_env("LEGALGUARD_SEMGREP_CONTAINER", cls.container),
            executable=os.getenv("LEGALGUARD_SEMGREP_EXECUTABLE", cls.executable),
            rules=os.getenv("LEGALGUARD_SEMGREP_RULES", cls.rules),
            scan_root=os.getenv("LEGALGUARD_SEMGREP_SCAN_ROOT", cls.scan_root).rstrip("/"),
            max_memory_mb=_int_env("LEGALGUARD_SEMGREP_MAX_MEMORY_MB", cls.max_memory_mb),
        )


@dataclass
class WorkspaceSettings:
    """Where and how repositories are checked out for a scan."""

    base_dir: str = "/tmp/legalguard"
    git_executable: str = "git"
    clone_timeout: float = 600.0
    default_token: str | None = None

    @classmethod
    def from_env(cls) -> "WorkspaceSettings":
        return cls(
            base_dir=os.getenv("TEMP_WORKSPACE_DIR", cls.base_dir),
            git_executable=os.getenv("LEGALGUARD_GIT_EXECUTABLE", cls.git_executable),
            clone_timeout=_float_env("LEGALGUARD_CLONE_TIMEOUT", cls.clone_timeout),
            default_token=_optional_str_env("GIT_TOKEN", cls.default_token),
        )


@dataclass
class StoreSettings:
    """Persistence settings. An empty `database_path` selects the in-memory store."""

    database_path: str | None = None
    max_retries: int = 3
    retry_delay: float = 0.1

    @classmethod
    def from_env(cls) -> "StoreSettings":
        return cls(
            database_path=_optional_str_env("DATABASE_URL", cls.database_path),
            max_retries=max(0, _int_env("LEGALGUARD_STORE_RETRIES", cls.max_retries)),
            retry_delay=_float_env("LEGALGUARD_STORE_RETRY_DELAY", cls.retry_delay),
        )


@dataclass
class Settings:
    """Aggregate of every settings group."""

    http: HttpSettings = field(default_factory=HttpSettings)
    poll: PollSettings = field(default_factory=PollSettings)
    fossology: FossologySettings = field(default_factory=FossologySettings)
    semgrep: SemgrepSettings = field(default_factory=SemgrepSettings)
    workspace: WorkspaceSettings = field(default_factory=WorkspaceSettings)
    store: StoreSettings = field(default_factory=StoreSettings)


def load_http_settings() -> HttpSettings:
    """Load HTTP settings from environment with sensible defaults."""
    return HttpSettings.from_env()


def load_settings() -> Settings:
    """Load every settings group from the environment."""
    return Settings(
        http=HttpSettings.from_env(),
        poll=PollSettings.from_env(),
        fossology=FossologySettings.from_env(),
        semgrep=SemgrepSettings.from_env(),
        workspace=WorkspaceSettings.from_env(),
        store=StoreSettings.from_env(),
    )
