"""Comment thread tool handlers for MCP server.

This module implements the read side of the comment sync:

- ``comments_sync`` -- pull every thread of a file, reconcile statuses and
  deliver queued writes.
- ``comments_get_thread`` -- one stored thread with its replies.
- ``comments_list_pending`` -- stored OPEN/PENDING threads, attention first.

Only ``comments_sync`` reaches the remote API; the other two read the local
store.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import mcp.types as types

from ...sync.reporter import format_sync_result, format_thread, format_thread_list
from ...validators import validate_comment_id, validate_file_key
from .errors import build_error_response
from .registry import ToolSpec

if TYPE_CHECKING:
    from ..lifespan import AppContext

DEFAULT_LIST_LIMIT = 20
MAX_LIST_LIMIT = 100

_FILE_KEY_PROPERTY = {
    "type": "string",
    "description": "Key of the collaboration file whose comments to use",
}

# Tool definitions for list_tools()
COMMENTS_TOOLS = [
    types.Tool(
        name="comments_sync",
        description=(
            "Fetch all comment threads of a file, reconcile their status with "
            "remote markers, and deliver queued agent writes. Returns OPEN and "
            "PENDING threads, those needing a response first."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "file_key": _FILE_KEY_PROPERTY,
                "force_full_sync": {
                    "type": "boolean",
                    "default": False,
                    "description": (
                        "Ignore local status history (a missing marker means OPEN) "
                        "and return closed threads too"
                    ),
                },
            },
            "required": ["file_key"],
        },
    ),
    types.Tool(
        name="comments_get_thread",
        description=(
            "Get one stored comment thread with all replies. Works for DONE and "
            "WONTFIX threads too. Run comments_sync first to refresh."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "file_key": _FILE_KEY_PROPERTY,
                "thread_id": {
                    "type": "string",
                    "description": "Id of the thread's root comment",
                },
            },
            "required": ["file_key", "thread_id"],
        },
    ),
    types.Tool(
        name="comments_list_pending",
        description=(
            "List stored OPEN and PENDING threads without contacting the API. "
            "Threads whose last message is not the agent's come first."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "file_key": _FILE_KEY_PROPERTY,
                "limit": {
                    "type": "integer",
                    "description": "Maximum threads to return (default: 20, max: 100)",
                    "default": DEFAULT_LIST_LIMIT,
                    "minimum": 1,
                    "maximum": MAX_LIST_LIMIT,
                },
            },
            "required": ["file_key"],
        },
    ),
]


def _require(check: tuple[bool, str]) -> None:
    ok, reason = check
    if not ok:
        raise ValueError(reason)


async def handle_comments_tool(
    name: str, arguments: dict | None, ctx: AppContext
) -> types.CallToolResult:
    """Handle comment tool execution.

    Raises:
        ValueError: If tool name is unknown or an argument is invalid
    """
    args = arguments or {}

    match name:
        case "comments_sync":
            return await _handle_sync(ctx, args)
        case "comments_get_thread":
            return await _handle_get_thread(ctx, args)
        case "comments_list_pending":
            return await _handle_list_pending(ctx, args)
        case _:
            raise ValueError(f"Unknown comments tool: {name}")


async def _handle_sync(ctx: AppContext, args: dict[str, Any]) -> types.CallToolResult:
    file_key = args.get("file_key")
    _require(validate_file_key(file_key))
    force = bool(args.get("force_full_sync", False))

    result = await ctx.engine.full_sync(file_key, force_full_sync=force)
    confirmed = await ctx.outbox.drain(file_key)

    return types.CallToolResult(
        content=[
            types.TextContent(
                type="text", text=format_sync_result(result, file_key, confirmed)
            )
        ],
        structuredContent={
            "file_key": file_key,
            "stats": result.stats.model_dump(mode="json"),
            "threads": [t.model_dump(mode="json") for t in result.threads],
            "operations_confirmed": confirmed,
        },
    )


async def _handle_get_thread(
    ctx: AppContext, args: dict[str, Any]
) -> types.CallToolResult:
    file_key = args.get("file_key")
    thread_id = args.get("thread_id")
    _require(validate_file_key(file_key))
    _require(validate_comment_id(thread_id))

    thread = await ctx.engine.get_thread(file_key, thread_id)
    if thread is None:
        return build_error_response(
            "not_found",
            f"Thread {thread_id} not found in {file_key}",
            "Run comments_sync for this file, or use comments_list_pending to see known threads.",
        )

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=format_thread(thread))],
        structuredContent=thread.model_dump(mode="json"),
    )


async def _handle_list_pending(
    ctx: AppContext, args: dict[str, Any]
) -> types.CallToolResult:
    file_key = args.get("file_key")
    _require(validate_file_key(file_key))
    limit = args.get("limit", DEFAULT_LIST_LIMIT)
    if not isinstance(limit, int) or isinstance(limit, bool) or not (
        1 <= limit <= MAX_LIST_LIMIT
    ):
        raise ValueError(f"limit must be an integer between 1 and {MAX_LIST_LIMIT}")

    threads = await ctx.engine.list_open_threads(file_key, limit=limit)
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=format_thread_list(threads))],
        structuredContent={
            "threads": [t.model_dump(mode="json") for t in threads],
            "total": len(threads),
        },
    )


COMMENTS_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=tool,
        handler=lambda ctx, args, _name=tool.name: handle_comments_tool(
            _name, args, ctx
        ),
    )
    for tool in COMMENTS_TOOLS
]
