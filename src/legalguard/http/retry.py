# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Retry helper for AsyncHttpClient implementations."""

from __future__ import annotations

import asyncio
import logging
import time

from ..config import load_http_settings
from .client import AsyncHttpClient
from .models import HttpRequest, HttpResponse, RetryConfig

logger = logging.getLogger(__name__)


def build_default_retry_config() -> RetryConfig:
    """Create a RetryConfig from environment-backed HttpSettings."""
    settings = load_http_settings()
    return RetryConfig.from_settings(settings)


async def send_with_retries(
    client: AsyncHttpClient,
    request: HttpRequest,
    *,
    retry_config: RetryConfig | None = None,
    budget: float | None = None,
) -> HttpResponse:
    """Execute a request with basic retry/backoff semantics."""
    cfg = retry_config or build_default_retry_config()
    if budget is None:
        budget = load_http_settings().retry_budget_cap
    deadline = time.monotonic() + budget if budget and budget > 0 else None

    attempt = 0
    delay = cfg.initial_delay
    last_response: HttpResponse | None = None

    while attempt < cfg.max_attempts:
        if deadline is not None and time.monotonic() >= deadline:
            break
        try:
            response = await client.request(request)
        except Exception as exc:  # noqa: BLE001
            response = HttpResponse(
                ok=False,
                error_message=str(exc) or exc.__class__.__name__,
                error_type=exc.__class__.__name__,
            )
        last_response = response

        if response.ok:
            if attempt:
                response.meta["retry_count"] = attempt
            return response

        # Only transport-level failures (no status code) are retried; an HTTP
        # error status is a real answer from the backend.
        if response.status_code is not None:
            if attempt:
                response.meta.setdefault("retry_count", attempt)
            return response

        attempt += 1
        if attempt >= cfg.max_attempts:
            break
        logger.debug("Retrying %s %s after transport error: %s", request.method, request.url, response.error_message)
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            delay_to_sleep = min(delay, remaining)
        else:
            delay_to_sleep = delay
        await asyncio.sleep(delay_to_sleep)
        delay *= cfg.backoff_factor

    if last_response is not None:
        last_response.meta.setdefault("retry_count", attempt)
        last_response.meta.setdefault("retry_exhausted", True)
        return last_response

    return HttpResponse(
        ok=False,
        error_message="Retry budget exhausted",
        meta={"retry_count": attempt, "retry_exhausted": True},
    )
