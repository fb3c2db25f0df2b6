"""MCP Server for comment thread sync using stdio transport.

This module implements the Model Context Protocol server that lets AI agents
read collaboration file comment threads and answer them through a durable
outbox.

Transport: stdio (for MCP desktop/CLI clients)
Protocol: JSON-RPC 2.0 over MCP
"""

import argparse
import asyncio
import logging
import sys

import mcp.server.stdio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from .. import __version__
from ..core.async_utils import run_sync
from ..logger import DEFAULT_MCP_LOG_FILE, setup_logging
from .lifespan import AppContext, server_lifespan
from .tools import ALL_SPECS, ToolRegistry, build_error_response
from .tools.registry import ToolSpec

logger = logging.getLogger(__name__)

# Initialize server instance
server = Server("threadsync-mcp-server")

# Global application context (initialized in main)
_app_context: AppContext | None = None

# Global registry instance (initialized in main)
_registry: ToolRegistry | None = None


# ---------------------------------------------------------------------------
# Ping tool
# ---------------------------------------------------------------------------


async def _handle_ping(ctx: AppContext, args: dict) -> types.CallToolResult:
    """Handle ping tool -- test API connectivity."""
    try:
        handle = await run_sync(ctx.client.validate_connection)
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text=f"Threadsync MCP server connected successfully. Authenticated as: {handle}",
                )
            ]
        )
    except Exception as e:
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text=f"Comments API connection failed: {e}. Check THREADSYNC_API_URL, THREADSYNC_ACCESS_TOKEN.",
                )
            ],
            isError=True,
        )


PING_SPEC = ToolSpec(
    tool=types.Tool(
        name="ping",
        description="Test comments API connectivity and return the authenticated user",
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
    handler=_handle_ping,
)


# ---------------------------------------------------------------------------
# Global accessors
# ---------------------------------------------------------------------------


def get_context() -> AppContext:
    """Get the global AppContext instance.

    Raises:
        RuntimeError: If context is not initialized
    """
    if _app_context is None:
        raise RuntimeError(
            "AppContext not initialized. Server lifespan not started."
        )
    return _app_context


def set_context(ctx: AppContext | None) -> None:
    """Set the global AppContext instance, or None to clear."""
    global _app_context
    _app_context = ctx


def get_registry() -> ToolRegistry:
    """Get the global ToolRegistry instance.

    Raises:
        RuntimeError: If registry is not initialized
    """
    if _registry is None:
        raise RuntimeError("ToolRegistry not initialized.")
    return _registry


def set_registry(registry: ToolRegistry | None) -> None:
    """Set the global ToolRegistry instance, or None to clear."""
    global _registry
    _registry = registry


# ---------------------------------------------------------------------------
# MCP protocol handlers
# ---------------------------------------------------------------------------


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    """List available comment sync tools."""
    return get_registry().list_tools()


@server.call_tool()
async def handle_call_tool(
    name: str, arguments: dict | None
) -> types.CallToolResult:
    """Handle tool execution via ToolRegistry dispatch.

    Args:
        name: The name of the tool to execute.
        arguments: Tool arguments (optional).

    Returns:
        CallToolResult with tool output content and optional isError flag.
    """
    ctx = get_context()
    try:
        return await get_registry().call_tool(name, arguments, ctx)
    except ValueError as e:
        # Unknown tool name
        return build_error_response(
            "unknown_tool",
            str(e),
            "Use list_tools to see available tools.",
        )


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------


async def main(config_overrides: dict | None = None):
    """Run the MCP server with stdio transport.

    Sets up logging for MCP mode (file only, never stdout), opens the store
    and validates the API token via the lifespan manager, then serves
    JSON-RPC over stdio.

    Args:
        config_overrides: Optional dict with config values to override
            (api_url, access_token, db_path, insecure, log_file)
    """
    log_file = (
        config_overrides.get("log_file") if config_overrides else None
    )

    # CRITICAL: must run BEFORE stdio_server so nothing reaches stdout
    # during protocol negotiation
    setup_logging(mode="mcp", log_file=log_file)

    all_specs = [PING_SPEC] + ALL_SPECS
    registry = ToolRegistry(all_specs)
    logger.info("Registered %d tools", registry.tool_count())
    set_registry(registry)

    # set_context() is called here rather than in the lifespan so that
    # running this file as __main__ does not install the context on a
    # second copy of the module.
    async with server_lifespan(config_overrides=config_overrides) as ctx:
        set_context(ctx)
        try:
            async with mcp.server.stdio.stdio_server() as (
                read_stream,
                write_stream,
            ):
                init_options = InitializationOptions(
                    server_name="threadsync-mcp-server",
                    server_version=__version__,
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                )
                await server.run(read_stream, write_stream, init_options)
        finally:
            set_context(None)
            set_registry(None)


def run() -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    parser = argparse.ArgumentParser(
        description="Threadsync MCP Server - comment thread sync for AI agents",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with default config (from .env or .threadsync/config.yml)
  threadsync-mcp-server

  # Use a specific database file
  threadsync-mcp-server --db-path ~/.local/share/threadsync/comments.db

  # Point at a different API endpoint (development only)
  threadsync-mcp-server --api-url http://localhost:8080 --insecure

  # Custom log file location
  threadsync-mcp-server --log-file /var/log/threadsync-mcp-server.log

Note: This server uses stdio transport for JSON-RPC communication with MCP clients.
All user-facing messages are written to stderr. Do not pipe stdin/stdout manually.
        """,
    )

    parser.add_argument(
        "--api-url",
        help="Override API base URL (takes precedence over THREADSYNC_API_URL and config files)",
    )
    parser.add_argument(
        "--access-token",
        help="Override access token (takes precedence over THREADSYNC_ACCESS_TOKEN and config files)"
        " (visible in process list -- prefer THREADSYNC_ACCESS_TOKEN env var)",
    )
    parser.add_argument(
        "--db-path",
        help="SQLite database path (takes precedence over THREADSYNC_DB_PATH and config files)",
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Skip SSL certificate verification (use only for development)",
    )
    parser.add_argument(
        "--log-file",
        default=DEFAULT_MCP_LOG_FILE,
        help=f"Log file path (default: {DEFAULT_MCP_LOG_FILE})",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"threadsync-mcp-server version {__version__}",
    )

    args = parser.parse_args()

    config_overrides = {}
    if args.api_url:
        config_overrides["api_url"] = args.api_url
    if args.access_token:
        config_overrides["access_token"] = args.access_token
    if args.db_path:
        config_overrides["db_path"] = args.db_path
    if args.insecure:
        config_overrides["insecure"] = True
    if args.log_file:
        config_overrides["log_file"] = args.log_file

    if config_overrides:
        override_keys = [k for k in config_overrides if k != "access_token"]
        print(
            f"Config overrides from CLI: {', '.join(override_keys)}",
            file=sys.stderr,
        )

    try:
        asyncio.run(main(config_overrides=config_overrides or None))
    except RuntimeError:
        # Error already printed to stderr by lifespan manager
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
