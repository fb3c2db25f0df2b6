"""Error response builders for MCP tool handlers.

Structured error responses carry a corrective action so an agent can
recover from a failed call without human intervention.
"""

import mcp.types as types

from ...core.client import RemoteAPIError


def build_error_response(
    error_type: str, message: str, corrective_action: str
) -> types.CallToolResult:
    """Build a structured error response with corrective action.

    Args:
        error_type: Error category (not_found, permission_denied, rate_limited,
            validation_error, server_error)
        message: Human-readable error description
        corrective_action: Specific action the agent can take to resolve the error

    Returns:
        CallToolResult with isError=True

    Examples:
        >>> build_error_response("not_found", "Thread 12 not found", "Run comments_sync first.")
        CallToolResult(content=[TextContent(...)], isError=True)
    """
    error_text = f"Error ({error_type}): {message}\n\nAction: {corrective_action}"

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=error_text)],
        isError=True,
    )


def translate_remote_error(error: RemoteAPIError) -> types.CallToolResult:
    """Translate a comments API failure into a structured error response.

    Status codes pick the corrective action; network failures (no status)
    are reported as server errors.
    """
    message = str(error)
    match error.status_code:
        case 401:
            return build_error_response(
                "unauthorized",
                message,
                "Check THREADSYNC_ACCESS_TOKEN; the token is missing, expired or revoked.",
            )
        case 403:
            return build_error_response(
                "permission_denied",
                message,
                "The token lacks access to this file. Ask the file owner for comment access.",
            )
        case 404:
            return build_error_response(
                "not_found",
                message,
                "Verify the file_key, then run comments_sync to refresh local threads.",
            )
        case 429:
            return build_error_response(
                "rate_limited",
                message,
                "Wait a minute before retrying. Queued writes stay in the outbox.",
            )
        case int() as code if code >= 500:
            return build_error_response(
                "server_error",
                message,
                "The comments API is unavailable. Retry later; queued writes are kept.",
            )
        case _:
            return build_error_response(
                "server_error",
                message,
                "Check network connectivity and THREADSYNC_API_URL, then retry.",
            )
