"""Pydantic models for the comment sync engine and outbox.

Defines the data contracts used across the sync modules:

- ``LocalStatus``, ``OpType``, ``OpState``: closed enums.
- ``RemoteUser``, ``RemoteReaction``, ``RemoteComment``: payloads parsed
  from the comments API.
- ``Thread`` and its parts: the read projection handed to agents.
- ``SyncStats``, ``SyncResult``: outcome of one full sync.
- ``Operation``, ``EnqueueResult``, ``ActionResult``: outbox rows and
  caller-facing results.

All models are frozen (immutable) for safety.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field


class LocalStatus(str, Enum):
    """Lifecycle status of a thread as tracked locally."""

    OPEN = "OPEN"
    PENDING = "PENDING"
    DONE = "DONE"
    WONTFIX = "WONTFIX"

    @property
    def is_actionable(self) -> bool:
        """OPEN and PENDING threads still want a response."""
        return self in (LocalStatus.OPEN, LocalStatus.PENDING)


class OpType(str, Enum):
    """Remote write kinds the outbox knows how to execute."""

    REPLY = "REPLY"
    ADD_REACTION = "ADD_REACTION"
    REMOVE_REACTION = "REMOVE_REACTION"
    DELETE_COMMENT = "DELETE_COMMENT"


class OpState(str, Enum):
    """Outbox row states."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


# ---------------------------------------------------------------------------
# Remote payloads
# ---------------------------------------------------------------------------


class RemoteUser(BaseModel):
    id: str
    handle: str = ""

    model_config = {"frozen": True}


class RemoteReaction(BaseModel):
    user: RemoteUser
    emoji: str
    created_at: str | None = None

    model_config = {"frozen": True}


class RemoteComment(BaseModel):
    """One comment as returned by the comments API.

    Attributes:
        parent_id: Empty string (or missing) for root comments.
        resolved_at: Last resolution/update timestamp reported remotely.
    """

    id: str
    file_key: str | None = None
    parent_id: str | None = ""
    user: RemoteUser
    created_at: str
    resolved_at: str | None = None
    message: str = ""
    reactions: list[RemoteReaction] = []

    model_config = {"frozen": True}

    @property
    def is_root(self) -> bool:
        return not self.parent_id


# ---------------------------------------------------------------------------
# Thread projection
# ---------------------------------------------------------------------------


class Author(BaseModel):
    id: str
    handle: str

    model_config = {"frozen": True}


class AggregatedReaction(BaseModel):
    """Reactions collapsed by emoji."""

    emoji: str
    count: int
    me_reacted: bool

    model_config = {"frozen": True}


class RootComment(BaseModel):
    id: str
    text: str
    author: Author
    created_at: str
    reactions: list[AggregatedReaction] = []
    is_agent: bool = False

    model_config = {"frozen": True}


class Reply(BaseModel):
    id: str
    text: str
    author: Author
    created_at: str
    is_agent: bool = False

    model_config = {"frozen": True}


class Thread(BaseModel):
    """A root comment plus its replies in ascending creation order.

    ``text`` fields are always passed through the content sanitizer.
    """

    id: str
    file_key: str
    status: LocalStatus
    needs_attention: bool
    root_comment: RootComment
    replies: list[Reply] = []

    model_config = {"frozen": True}


class SyncStats(BaseModel):
    total_threads: int = 0
    new_threads: int = 0
    updated_threads: int = 0
    total_comments_fetched: int = 0

    model_config = {"frozen": True}


class SyncResult(BaseModel):
    threads: list[Thread] = []
    stats: SyncStats = Field(default_factory=SyncStats)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Outbox
# ---------------------------------------------------------------------------


class Operation(BaseModel):
    """One outbox row.

    Attributes:
        payload: Op-specific data, read back exactly as enqueued.
        remote_result_id: Id returned by the API (e.g. the created reply).
    """

    op_id: str
    idempotency_key: str
    file_key: str
    op_type: str
    payload: dict[str, Any]
    state: OpState
    retry_count: int = 0
    error_message: str | None = None
    remote_result_id: str | None = None
    created_at: str
    updated_at: str

    model_config = {"frozen": True}


class EnqueueResult(BaseModel):
    op_id: str
    status: Literal["created", "duplicate"]
    existing_operation: Operation | None = None

    model_config = {"frozen": True}


class ActionResult(BaseModel):
    """Structured outcome returned to callers instead of raising.

    Attributes:
        status: ``confirmed``, ``queued``, ``failed``, ``duplicate``,
            ``not_found`` or ``rejected``.
    """

    success: bool
    status: str
    message: str
    op_ids: list[str] = []

    model_config = {"frozen": True}
