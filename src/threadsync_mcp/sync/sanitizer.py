"""Content sanitizing for comment text handed to language models.

Comment text is untrusted. Before it leaves the server it is wrapped in
``<user_content>`` tags with ``<`` and ``>`` escaped, so a comment cannot
close the wrapper or smuggle its own markup into the agent's context.
"""

from __future__ import annotations

OPEN_TAG = "<user_content>"
CLOSE_TAG = "</user_content>"


def escape_angle_brackets(text: str) -> str:
    return text.replace("<", "&lt;").replace(">", "&gt;")


def is_sanitized(text: str) -> bool:
    """Return True if *text* is already a single wrapped, escaped block."""
    if not (text.startswith(OPEN_TAG) and text.endswith(CLOSE_TAG)):
        return False
    inner = text[len(OPEN_TAG) : len(text) - len(CLOSE_TAG)]
    return "<" not in inner and ">" not in inner


def sanitize_for_llm(text: str | None) -> str:
    """Escape angle brackets and wrap *text* in ``<user_content>`` tags.

    Escaping is single-pass: ``&`` is left alone, so ``&lt;`` typed by a
    user stays ``&lt;``. Text that is already a sanitized block is returned
    unchanged rather than wrapped twice.
    """
    text = text or ""
    if is_sanitized(text):
        return text
    return f"{OPEN_TAG}{escape_angle_brackets(text)}{CLOSE_TAG}"


def is_agent_message(message: str | None, prefix: str) -> bool:
    """Check whether *message* starts with the agent reply marker."""
    return bool(message) and message.lstrip().startswith(prefix)


def format_agent_reply(message: str, prefix: str) -> str:
    """Prepend the agent marker unless the message already carries it."""
    message = message.strip()
    if is_agent_message(message, prefix):
        return message
    return f"{prefix} {message}"
