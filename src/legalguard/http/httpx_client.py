# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""httpx-backed AsyncHttpClient implementation."""

from __future__ import annotations

import httpx

from ..config import HttpSettings, load_http_settings
from .client import AsyncHttpClient
from .models import HttpRequest, HttpResponse


class HttpxAsyncClient(AsyncHttpClient):
    """Asynchronous httpx client wrapper."""

    def __init__(self, settings: HttpSettings | None = None, client: httpx.AsyncClient | None = None):
        self.settings = settings or load_http_settings()
        self._client = client or httpx.AsyncClient(
            timeout=self.settings.timeout,
            verify=self.settings.verify_ssl,
        )

    async def request(self, request: HttpRequest) -> HttpResponse:
        headers = dict(request.headers or {})
        headers.setdefault("User-Agent", self.settings.user_agent)
        max_body_bytes = self.settings.max_body_bytes if self.settings.max_body_bytes > 0 else 64 * 1024 * 1024
        timeout = request.timeout if request.timeout is not None else self.settings.timeout

        try:
            built = self._client.build_request(
                request.method,
                request.url,
                headers=headers,
                params=request.params,
                json=request.json,
                data=request.data,
                files=request.files,
                timeout=timeout,
            )
            auth = httpx.BasicAuth(*request.auth) if request.auth else None
            resp = await self._client.send(built, auth=auth, stream=True)
            try:
                content = bytearray()
                truncated = False
                async for chunk in resp.aiter_bytes():
                    if not chunk:
                        continue
                    remaining = max_body_bytes - len(content)
                    if remaining <= 0:
                        truncated = True
                        break
                    if len(chunk) > remaining:
                        content.extend(chunk[:remaining])
                        truncated = True
                        break
                    content.extend(chunk)
            finally:
                await resp.aclose()

            encoding = resp.encoding or "utf-8"
            try:
                text = bytes(content).decode(encoding, errors="replace")
            except LookupError:
                text = bytes(content).decode("utf-8", errors="replace")

            return HttpResponse(
                ok=True,
                status_code=resp.status_code,
                headers={k.lower(): v for k, v in resp.headers.items()},
                text=text,
                content=bytes(content),
                url=str(resp.url),
                meta={
                    "body_truncated": truncated,
                    "body_bytes_read": len(content),
                },
            )
        except httpx.HTTPError as exc:
            return HttpResponse(
                ok=False,
                error_message=str(exc) or exc.__class__.__name__,
                error_type=type(exc).__name__,
            )

    async def close(self) -> None:
        await self._client.aclose()
