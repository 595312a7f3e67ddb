"""FastMCP server exposing the WinCC V8 REST API."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import Annotated, AsyncIterator, Optional, Sequence

from mcp.server.fastmcp import Context, FastMCP
from pydantic import Field

from mcpWinCC.app.context import (
    WinCCAppContext,
    build_app_context,
    ctx_info,
    get_app_context,
    get_shared_context,
    set_shared_context,
)
from mcpWinCC.app.http_app import run_http_transport
from mcpWinCC.app.tools import ROUTES, describe_routes, format_json, register_routes, report_failure
from mcpWinCC.config.config_manager import (
    ConfigurationError,
    describe_config,
    generate_and_store_api_key,
    get_config,
    parse_arguments,
)
from mcpWinCC.wincc.client import RequestError


logger = logging.getLogger(__name__)

LOGIN_PROBE_ENDPOINT = "/tagManagement/Connections"


@asynccontextmanager
async def wincc_lifespan(server: FastMCP) -> AsyncIterator[WinCCAppContext]:
    """Provide the WinCC client to FastMCP handlers.

    In HTTP mode the lifespan runs once per request, so the context built at
    startup is reused. Otherwise (stdio) it is built here and torn down with
    the server.
    """
    shared = get_shared_context()
    if shared is not None:
        yield shared
        return

    config = get_config()
    app_ctx = build_app_context(config)
    set_shared_context(app_ctx)
    logger.info("Using WinCC REST service at %s", config.wincc.url)
    try:
        yield app_ctx
    finally:
        logger.info("Closing WinCC client")
        set_shared_context(None)
        await app_ctx.client.aclose()


# host only disables the SDK's localhost-only host check; uvicorn owns the bind address
mcp = FastMCP(
    "mcpwincc",
    lifespan=wincc_lifespan,
    host="0.0.0.0",
    stateless_http=True,
    json_response=True,
)


@mcp.tool(
    name="login-user",
    annotations={
        "title": "Log in to WinCC with username and password.",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
async def login_user(
    username: Annotated[str, Field(min_length=1, description="WinCC user name")],
    password: Annotated[str, Field(min_length=1, description="WinCC password")],
    ctx: Context = None,
) -> str:
    """Logs a user in to WinCC using username and password.

    Stores the session credentials for subsequent requests. Optional when the
    server was started with a service account.
    """
    app_ctx: Optional[WinCCAppContext] = None
    try:
        app_ctx = get_app_context(ctx)
        app_ctx.session.set_basic_credentials(username, password)
        await ctx_info(ctx, f"Checking WinCC login for '{username}'")
        await app_ctx.client.dispatch(LOGIN_PROBE_ENDPOINT)
        return (
            f"Successfully logged in to WinCC as user '{username}'. "
            "Authentication credentials stored for session."
        )
    except (RequestError, ValueError) as exc:
        return report_failure(app_ctx, f"Login failed for user '{username}': {exc}")
    except Exception as exc:  # pragma: no cover - operational guard
        logger.exception("login-user failed")
        return report_failure(app_ctx, f"Login failed for user '{username}': {exc}")


TOOL_HANDLERS = register_routes(mcp, ROUTES)


@mcp.resource("mcpwincc://server/config")
def server_config_resource() -> str:
    """Expose a redacted version of the live configuration."""
    app_ctx = get_shared_context()
    if app_ctx is None:
        return format_json({"error": "Configuration not available"})
    document = describe_config(app_ctx.config)
    document["session"] = {"auth_mode": app_ctx.session.mode, "username": app_ctx.session.username}
    return format_json(document)


@mcp.resource("mcpwincc://server/tools")
def server_tools_resource() -> str:
    """Expose the WinCC endpoint behind every tool."""
    tools = [{"name": "login-user", "method": "GET", "path": LOGIN_PROBE_ENDPOINT}]
    tools.extend(describe_routes(ROUTES))
    return format_json(tools)


def run_mcp_server(argv: Optional[Sequence[str]] = None) -> None:
    """Entry point shared by console scripts."""
    args = parse_arguments(argv)

    try:
        if getattr(args, "genkey", False):
            print(generate_and_store_api_key(args.config))
            return
        config = get_config(args)
    except ConfigurationError as exc:
        logger.error("%s", exc)
        sys.exit(1)

    logger.info("Effective configuration:\n%s", format_json(describe_config(config)))

    try:
        if args.transport == "stdio":
            mcp.run()
        else:
            run_http_transport(mcp, config)
    except KeyboardInterrupt:
        logger.info("MCP server shutting down...")


if __name__ == "__main__":
    run_mcp_server()
