"""A requests.Session that answers from canned responses."""

import json
from typing import Any
from urllib.parse import urlparse

import requests


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None, content: bytes = b"", headers=None, url: str = ""):
        self.status_code = status_code
        self._body = body
        self.content = content if body is None else json.dumps(body).encode()
        self.headers = headers or {}
        self.url = url

    def json(self) -> Any:
        return self._body

    def iter_content(self, chunk_size: int = 1):
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i : i + chunk_size]


class FakeSession(requests.Session):
    """
    Routes requests by URL path.

    A route may be a FakeResponse, an exception instance to raise, or a list
    of either, consumed one per call (the last entry repeats).
    """

    def __init__(self, routes: dict[str, Any] | None = None):
        super().__init__()
        self.routes = dict(routes or {})
        self.calls: list[tuple[str, str, dict]] = []

    def request(self, method, url, **kwargs):
        path = urlparse(url).path
        self.calls.append((method, path, kwargs.get("params") or {}))
        route = self.routes.get(path)
        if route is None:
            return FakeResponse(404, url=url)
        if isinstance(route, list):
            entry = route.pop(0) if len(route) > 1 else route[0]
        else:
            entry = route
        if isinstance(entry, Exception):
            raise entry
        entry.url = url
        return entry
