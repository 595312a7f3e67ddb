"""Fake WinCC REST backend and config builders for tests."""

import json

import httpx

from mcpWinCC.config.schema import Config

WINCC_URL = "https://scada.example/WinCCRestService"


class FakeWinCC(httpx.AsyncBaseTransport):
    """Transport that records requests and returns canned responses.

    ``routes`` maps a path fragment to ``(status, body)``; a ``bytes`` body is
    sent raw, anything else as JSON. Unmatched paths return 404.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.requests = []

    def body_of(self, index=-1):
        content = self.requests[index].content
        return json.loads(content) if content else None

    @property
    def last(self):
        return self.requests[-1]

    @property
    def last_path(self):
        return self.last.url.raw_path.decode("ascii")

    async def handle_async_request(self, request):
        await request.aread()
        self.requests.append(request)
        path = request.url.raw_path.decode("ascii")
        for pattern, (status, body) in self.routes.items():
            if pattern in path:
                if isinstance(body, bytes):
                    return httpx.Response(status, content=body, request=request)
                return httpx.Response(status, json=body, request=request)
        return httpx.Response(404, json={"error": "not found"}, request=request)


def make_config(**wincc) -> Config:
    settings = {"url": WINCC_URL, "username": "svc", "password": "svc-pass"}
    settings.update(wincc)
    return Config(wincc=settings)
