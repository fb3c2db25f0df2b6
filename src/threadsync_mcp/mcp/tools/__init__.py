"""MCP tool handlers for comment sync operations.

This package contains MCP tool implementations that wrap the sync engine and
outbox with async handlers and structured error responses.
"""

from .comments import COMMENTS_SPECS, COMMENTS_TOOLS, handle_comments_tool
from .errors import build_error_response, translate_remote_error
from .outbox import OUTBOX_SPECS, OUTBOX_TOOLS, handle_outbox_tool
from .registry import ToolRegistry, ToolSpec

ALL_SPECS: list[ToolSpec] = COMMENTS_SPECS + OUTBOX_SPECS

__all__ = [
    "build_error_response",
    "translate_remote_error",
    # Registry
    "ToolSpec",
    "ToolRegistry",
    # Spec lists
    "ALL_SPECS",
    "COMMENTS_SPECS",
    "OUTBOX_SPECS",
    # Tool lists
    "COMMENTS_TOOLS",
    "OUTBOX_TOOLS",
    "handle_comments_tool",
    "handle_outbox_tool",
]
