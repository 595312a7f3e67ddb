"""Console entrypoints for mcpWinCC."""

from __future__ import annotations

from mcpWinCC.app.mcp_server import run_mcp_server
from mcpWinCC.config.config_manager import generate_and_store_api_key, parse_arguments


def main():
    """Entry point for the mcpwincc executable."""
    run_mcp_server()


def generate_api_key():
    """Entry point for mcpwincc-genkey (prints token to stdout)."""
    args = parse_arguments()
    new_key = generate_and_store_api_key(args.config)
    print(new_key)
