"""FastAPI/uvicorn transport for the streamable HTTP MCP endpoint."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from mcp.server.fastmcp import FastMCP
from starlette.middleware.base import BaseHTTPMiddleware

from mcpWinCC.app.context import WinCCAppContext, build_app_context, get_shared_context, set_shared_context
from mcpWinCC.config.api_keys import verify_api_key
from mcpWinCC.config.schema import Config, HTTPServerConfig


logger = logging.getLogger(__name__)

API_KEY_QUERY_PARAM = "api_key"
STATUS_PATH = "/status"
MCP_PATH = "/mcp"

METHOD_NOT_ALLOWED_BODY: Dict[str, Any] = {
    "jsonrpc": "2.0",
    "error": {"code": -32000, "message": "Method not allowed."},
    "id": None,
}


class APIKeyMiddleware(BaseHTTPMiddleware):
    """Reject MCP requests that do not present the configured API key."""

    def __init__(self, app, http_config: HTTPServerConfig):
        super().__init__(app)
        self._http_config = http_config

    async def dispatch(self, request: Request, call_next):
        if request.url.path == STATUS_PATH or request.method == "OPTIONS":
            return await call_next(request)

        token = None
        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.split(" ", 1)[1].strip()
        if not token:
            token = request.headers.get("x-api-key")
        if not token:
            token = request.query_params.get(API_KEY_QUERY_PARAM)

        if not verify_api_key(token, self._http_config):
            logger.warning("Rejected %s %s: invalid or missing API key", request.method, request.url.path)
            return JSONResponse({"detail": "Invalid or missing API key"}, status_code=401)
        return await call_next(request)


def build_http_app(
    server: FastMCP,
    config: Config,
    app_ctx: Optional[WinCCAppContext] = None,
) -> FastAPI:
    """Create the FastAPI application that wraps the MCP Starlette app."""
    mcp_http_app = server.streamable_http_app()

    @asynccontextmanager
    async def fastapi_lifespan(app):
        shared = app_ctx or build_app_context(config)
        set_shared_context(shared)
        logger.info("Using WinCC REST service at %s", config.wincc.url)
        try:
            async with AsyncExitStack() as stack:
                await stack.enter_async_context(mcp_http_app.router.lifespan_context(mcp_http_app))
                yield
        finally:
            set_shared_context(None)
            await shared.client.aclose()

    fastapi_app = FastAPI(title="mcpWinCC", version="1.0", lifespan=fastapi_lifespan)

    if config.http.requires_api_key:
        fastapi_app.add_middleware(APIKeyMiddleware, http_config=config.http)

    # added last so it also wraps API key rejections
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=[config.http.allow_origin],
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["Mcp-Session-Id"],
    )

    @fastapi_app.get(STATUS_PATH)
    async def status():
        """Unprotected health endpoint."""
        shared = get_shared_context()
        return JSONResponse(
            {
                "running": True,
                "wincc_url": config.wincc.url,
                "auth_mode": shared.session.mode if shared else None,
            }
        )

    @fastapi_app.api_route(MCP_PATH, methods=["GET", "DELETE"])
    async def mcp_method_not_allowed(request: Request):
        logger.info("Received %s MCP request", request.method)
        return JSONResponse(METHOD_NOT_ALLOWED_BODY, status_code=405)

    fastapi_app.mount("/", mcp_http_app)
    return fastapi_app


def run_http_transport(server: FastMCP, config: Config) -> None:
    app = build_http_app(server, config)
    logger.info("Starting MCP server over HTTP at %s:%s%s", config.http.host, config.http.port, MCP_PATH)
    uvicorn.run(app, host=config.http.host, port=config.http.port, lifespan="on", log_config=None)
