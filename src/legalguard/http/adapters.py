# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Programmable AsyncHttpClient used by tests and offline runs."""

from __future__ import annotations

from collections.abc import Callable

from .client import AsyncHttpClient
from .models import HttpRequest, HttpResponse

Responder = HttpResponse | list[HttpResponse] | Callable[[HttpRequest], HttpResponse]


class StubHttpClient(AsyncHttpClient):
    """
    Deterministic, programmable AsyncHttpClient for tests.

    Responses are keyed by ``(METHOD, url)``. A list is consumed in order, the
    last entry repeating once exhausted; a callable receives the request.
    """

    def __init__(self, responses: dict[tuple[str, str], Responder] | None = None):
        self._responses: dict[tuple[str, str], Responder] = dict(responses or {})
        self._cursor: dict[tuple[str, str], int] = {}
        self.requests: list[HttpRequest] = []
        self.closed = False

    def add(self, method: str, url: str, response: Responder) -> None:
        self._responses[(method.upper(), url)] = response

    def calls(self, method: str, url: str) -> int:
        return sum(1 for r in self.requests if r.method.upper() == method.upper() and r.url == url)

    async def request(self, request: HttpRequest) -> HttpResponse:
        self.requests.append(request)
        key = (request.method.upper(), request.url)
        responder = self._responses.get(key)
        if responder is None:
            return HttpResponse(ok=False, status_code=None, error_message="No stubbed response configured")
        if callable(responder):
            return responder(request)
        if isinstance(responder, list):
            index = self._cursor.get(key, 0)
            self._cursor[key] = index + 1
            return responder[min(index, len(responder) - 1)]
        return responder

    async def close(self) -> None:
        self.closed = True
