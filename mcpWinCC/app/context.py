"""Process-wide state handed to FastMCP handlers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx
from mcp.server.fastmcp import Context

from mcpWinCC.config.schema import Config
from mcpWinCC.wincc.client import WinCCClient
from mcpWinCC.wincc.session import SessionCredentials


@dataclass
class WinCCAppContext:
    """Application state shared with FastMCP handlers."""

    client: WinCCClient
    session: SessionCredentials
    config: Config


def build_app_context(config: Config, transport: Optional[httpx.AsyncBaseTransport] = None) -> WinCCAppContext:
    """Create the credential session and HTTP client from the startup configuration."""
    session = SessionCredentials(
        username=config.wincc.username,
        password=config.wincc.password,
        bearer_token=config.wincc.bearer_token,
    )
    client = WinCCClient(config.wincc, session, transport=transport)
    return WinCCAppContext(client=client, session=session, config=config)


def get_app_context(ctx: Optional[Context]) -> WinCCAppContext:
    if ctx is None or ctx.request_context is None:
        raise RuntimeError("FastMCP context was not provided")
    return ctx.request_context.lifespan_context


async def ctx_info(ctx: Optional[Context], message: str) -> None:
    if ctx is not None:
        await ctx.info(message)


_shared_app_ctx: Optional[WinCCAppContext] = None


def set_shared_context(app_ctx: Optional[WinCCAppContext]) -> None:
    """Install (or clear) the context reused by every MCP request of this process."""
    global _shared_app_ctx
    _shared_app_ctx = app_ctx


def get_shared_context() -> Optional[WinCCAppContext]:
    return _shared_app_ctx
