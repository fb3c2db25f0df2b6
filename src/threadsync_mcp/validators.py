"""
Input validation for threadsync MCP tool arguments.

Each validator returns ``(is_valid, reason)`` so callers decide whether to
raise or to report; tool handlers turn failures into ``ValueError``.
"""

import re

MAX_MESSAGE_LENGTH = 5000

# File keys and comment ids are opaque tokens; reject anything that could
# smuggle a path segment into the REST URL.
_TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_\-:.]+$")


def format_validation_error(field_name: str, reason: str) -> str:
    """Generate consistent error message for validation failures."""
    return f"{field_name} {reason}"


def _validate_token(value: str | None, field_name: str) -> tuple[bool, str]:
    if not value or not str(value).strip():
        return False, format_validation_error(field_name, "cannot be empty")
    value = str(value)
    if ".." in value or not _TOKEN_PATTERN.match(value):
        return False, format_validation_error(
            field_name, "may only contain letters, digits, '_', '-', ':' and '.'"
        )
    return True, ""


def validate_file_key(file_key: str | None) -> tuple[bool, str]:
    """Validate a collaboration file key."""
    return _validate_token(file_key, "File key")


def validate_comment_id(comment_id: str | None) -> tuple[bool, str]:
    """Validate a remote comment id."""
    return _validate_token(comment_id, "Comment id")


def validate_message(
    message: str | None, max_length: int = MAX_MESSAGE_LENGTH
) -> tuple[bool, str]:
    """
    Validate reply text.

    Validation rules:
        - Cannot be empty or whitespace-only
        - Cannot exceed max_length characters
    """
    if not message or not message.strip():
        return False, format_validation_error("Message", "cannot be empty")
    if len(message) > max_length:
        return False, format_validation_error(
            "Message", f"exceeds maximum length of {max_length} characters"
        )
    return True, ""
