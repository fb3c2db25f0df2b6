"""Local SQLite store for comments, outbox operations and sync state."""

from .sqlite import CommentRecord, SQLiteStore, operation_from_row, utcnow_iso

__all__ = ["CommentRecord", "SQLiteStore", "operation_from_row", "utcnow_iso"]
