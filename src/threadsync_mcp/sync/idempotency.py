"""Deterministic fingerprints for outbox deduplication."""

from __future__ import annotations

import hashlib
import uuid

from .models import OpType


def normalize_content(content: str) -> str:
    """Trim and lowercase so re-wrapped or re-cased retries still collide."""
    return content.strip().lower()


def generate_idempotency_key(
    file_key: str,
    target_id: str,
    op_type: OpType | str,
    content: str,
    agent_identity: str = "default",
) -> str:
    """Return ``sha256(file_key|target_id|op_type|normalized|agent_identity)``.

    The same logical write always yields the same key, so a caller retrying
    after a timeout cannot produce a second remote comment.
    """
    op_name = op_type.value if isinstance(op_type, OpType) else str(op_type)
    material = "|".join(
        (file_key, target_id, op_name, normalize_content(content), agent_identity)
    )
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def generate_op_id() -> str:
    return str(uuid.uuid4())
