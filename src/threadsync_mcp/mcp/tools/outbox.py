"""Write tool handlers for MCP server.

Every write goes through the outbox: the handler enqueues, drains once and
reports the operation's real state. Writes that could not be delivered yet
are retried by the next ``comments_sync``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import mcp.types as types

from ...sync import actions
from ...sync.models import ActionResult, LocalStatus, OpState
from ...sync.reporter import format_operations
from ...validators import validate_comment_id, validate_file_key, validate_message
from .registry import ToolSpec

if TYPE_CHECKING:
    from ..lifespan import AppContext

_FILE_KEY_PROPERTY = {
    "type": "string",
    "description": "Key of the collaboration file",
}

# Tool definitions for list_tools()
OUTBOX_TOOLS = [
    types.Tool(
        name="comments_post_reply",
        description=(
            "Reply to a comment thread as the agent. The reply is marked with "
            "the agent prefix and deduplicated: resubmitting the same text to "
            "the same thread posts it only once."
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
                "thread_id": {
                    "type": "string",
                    "description": "Id of the thread's root comment",
                },
                "message": {
                    "type": "string",
                    "description": "Reply text (max 5000 characters)",
                },
            },
            "required": ["file_key", "thread_id", "message"],
        },
    ),
    types.Tool(
        name="comments_set_status",
        description=(
            "Set a thread's status (OPEN, PENDING, DONE, WONTFIX). The status "
            "is stored locally at once and mirrored remotely as a reaction marker."
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
                "thread_id": {
                    "type": "string",
                    "description": "Id of the thread's root comment",
                },
                "status": {
                    "type": "string",
                    "enum": [s.value for s in LocalStatus],
                    "description": "New thread status",
                },
            },
            "required": ["file_key", "thread_id", "status"],
        },
    ),
    types.Tool(
        name="comments_delete_reply",
        description="Delete a comment previously posted by the agent.",
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "file_key": _FILE_KEY_PROPERTY,
                "comment_id": {
                    "type": "string",
                    "description": "Id of the agent's comment",
                },
            },
            "required": ["file_key", "comment_id"],
        },
    ),
    types.Tool(
        name="outbox_status",
        description=(
            "Show queued, delivered and failed agent writes for a file, "
            "with retry counts and last errors."
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
                "state": {
                    "type": "string",
                    "enum": [s.value for s in OpState],
                    "description": "Only show operations in this state",
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


def _action_response(result: ActionResult) -> types.CallToolResult:
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=result.message)],
        structuredContent=result.model_dump(mode="json"),
        isError=not result.success,
    )


async def handle_outbox_tool(
    name: str, arguments: dict | None, ctx: AppContext
) -> types.CallToolResult:
    """Handle write tool execution.

    Raises:
        ValueError: If tool name is unknown or an argument is invalid
    """
    args = arguments or {}

    match name:
        case "comments_post_reply":
            return await _handle_post_reply(ctx, args)
        case "comments_set_status":
            return await _handle_set_status(ctx, args)
        case "comments_delete_reply":
            return await _handle_delete_reply(ctx, args)
        case "outbox_status":
            return await _handle_outbox_status(ctx, args)
        case _:
            raise ValueError(f"Unknown outbox tool: {name}")


async def _handle_post_reply(
    ctx: AppContext, args: dict[str, Any]
) -> types.CallToolResult:
    file_key = args.get("file_key")
    thread_id = args.get("thread_id")
    message = args.get("message")
    _require(validate_file_key(file_key))
    _require(validate_comment_id(thread_id))
    _require(validate_message(message))

    result = await actions.post_reply(ctx.outbox, file_key, thread_id, message)
    return _action_response(result)


async def _handle_set_status(
    ctx: AppContext, args: dict[str, Any]
) -> types.CallToolResult:
    file_key = args.get("file_key")
    thread_id = args.get("thread_id")
    _require(validate_file_key(file_key))
    _require(validate_comment_id(thread_id))
    raw_status = str(args.get("status", "")).upper()
    try:
        status = LocalStatus(raw_status)
    except ValueError:
        raise ValueError(
            f"status must be one of {', '.join(s.value for s in LocalStatus)}"
        ) from None

    result = await actions.set_status(ctx.store, ctx.outbox, file_key, thread_id, status)
    return _action_response(result)


async def _handle_delete_reply(
    ctx: AppContext, args: dict[str, Any]
) -> types.CallToolResult:
    file_key = args.get("file_key")
    comment_id = args.get("comment_id")
    _require(validate_file_key(file_key))
    _require(validate_comment_id(comment_id))

    result = await actions.delete_own_reply(ctx.store, ctx.outbox, file_key, comment_id)
    return _action_response(result)


async def _handle_outbox_status(
    ctx: AppContext, args: dict[str, Any]
) -> types.CallToolResult:
    file_key = args.get("file_key")
    _require(validate_file_key(file_key))
    states = None
    if args.get("state"):
        try:
            states = [OpState(str(args["state"]).upper())]
        except ValueError:
            raise ValueError(
                f"state must be one of {', '.join(s.value for s in OpState)}"
            ) from None

    operations = await ctx.outbox.list_operations(file_key, states)
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=format_operations(operations))],
        structuredContent={
            "operations": [op.model_dump(mode="json") for op in operations],
            "total": len(operations),
        },
    )


OUTBOX_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=tool,
        handler=lambda ctx, args, _name=tool.name: handle_outbox_tool(
            _name, args, ctx
        ),
    )
    for tool in OUTBOX_TOOLS
]
