"""Authenticated HTTP access to the WinCC REST service.

Every tool call ends up in :meth:`WinCCClient.dispatch`: one request, one
attempt, JSON passed through untouched. Anything that goes wrong on the way
is raised as :class:`RequestError` with a coarse classification so the
caller can report it.
"""

from __future__ import annotations

import json
import logging
import ssl
from typing import Any, Mapping, Optional

import httpx

from mcpWinCC.config.schema import WinCCConfig
from mcpWinCC.wincc.session import SessionCredentials


logger = logging.getLogger(__name__)

BODY_METHODS = ("POST", "PUT")
SUPPORTED_METHODS = ("GET", "POST", "PUT")


class RequestError(Exception):
    """A WinCC request that did not produce a JSON result.

    ``kind`` is one of ``http_status``, ``certificate``, ``connection``,
    ``timeout``, ``invalid_json`` or ``transport``.
    """

    def __init__(
        self,
        message: str,
        kind: str,
        status_code: Optional[int] = None,
        reason: Optional[str] = None,
        method: Optional[str] = None,
        url: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.status_code = status_code
        self.reason = reason
        self.method = method
        self.url = url


def _is_certificate_problem(exc: BaseException) -> bool:
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, ssl.SSLCertVerificationError):
            return True
        text = str(current).lower()
        if "certificate_verify_failed" in text or "certificate verify failed" in text:
            return True
        current = current.__cause__ or current.__context__
    return False


def classify_transport_error(exc: httpx.HTTPError) -> str:
    """Map an httpx failure onto a RequestError kind."""
    if _is_certificate_problem(exc):
        return "certificate"
    if isinstance(exc, httpx.TimeoutException):
        return "timeout"
    if isinstance(exc, (httpx.ConnectError, httpx.NetworkError, httpx.RemoteProtocolError)):
        return "connection"
    return "transport"


def _clean_headers(extra_headers: Optional[Mapping[str, Any]]) -> dict:
    if not extra_headers:
        return {}
    return {
        name: value
        for name, value in extra_headers.items()
        if isinstance(value, str) and value.strip()
    }


class WinCCClient:
    """Sends authenticated JSON requests to ``<base url><endpoint>``."""

    def __init__(
        self,
        config: WinCCConfig,
        session: SessionCredentials,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = config.url
        self.session = session
        self.verify_tls = not (config.skip_certificate_validation and self.base_url.startswith("https://"))
        if not self.verify_tls:
            logger.warning("TLS certificate validation disabled for %s", self.base_url)
        self._http = httpx.AsyncClient(
            verify=self.verify_tls,
            follow_redirects=True,
            timeout=httpx.Timeout(config.request_timeout),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "WinCCClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    def build_headers(self, extra_headers: Optional[Mapping[str, Any]] = None) -> dict:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        authorization = self.session.authorization_header()
        if authorization:
            headers["Authorization"] = authorization
        headers.update(_clean_headers(extra_headers))
        return headers

    async def dispatch(
        self,
        endpoint: str,
        method: str = "GET",
        body: Any = None,
        extra_headers: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        """Perform one request and return the decoded JSON response.

        Args:
            endpoint: Already percent-encoded path (and query) starting with ``/``.
            method: GET, POST or PUT.
            body: JSON-serializable payload, sent only for POST and PUT.
            extra_headers: Optional headers; empty or non-string values are dropped.

        Raises:
            RequestError: On non-2xx status, transport failure or invalid JSON.
        """
        method = method.upper()
        if method not in SUPPORTED_METHODS:
            raise ValueError(f"Unsupported HTTP method '{method}'")

        url = f"{self.base_url}{endpoint}"
        headers = self.build_headers(extra_headers)
        content = None
        if body is not None and method in BODY_METHODS:
            content = json.dumps(body).encode("utf-8")

        logger.debug("WinCC request %s %s body=%s", method, url, content.decode("utf-8") if content else "")

        try:
            response = await self._http.request(method, url, headers=headers, content=content)
        except httpx.HTTPError as exc:
            kind = classify_transport_error(exc)
            logger.warning("WinCC request failed (%s): %s %s: %s", kind, method, url, exc)
            raise RequestError(str(exc) or exc.__class__.__name__, kind, method=method, url=url) from exc

        if not response.is_success:
            logger.warning(
                "WinCC request failed (http_status): %s %s -> %s %s",
                method,
                url,
                response.status_code,
                response.reason_phrase,
            )
            raise RequestError(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                "http_status",
                status_code=response.status_code,
                reason=response.reason_phrase,
                method=method,
                url=url,
            )

        try:
            return response.json()
        except ValueError as exc:
            logger.warning("WinCC request failed (invalid_json): %s %s: %s", method, url, exc)
            raise RequestError(
                f"Invalid JSON in response: {exc}",
                "invalid_json",
                status_code=response.status_code,
                method=method,
                url=url,
            ) from exc
