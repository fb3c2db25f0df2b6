"""Remote API client and async bridging helpers."""

from .async_utils import run_sync, run_sync_limited
from .client import (
    CommentsClient,
    PermanentRemoteError,
    RemoteAPIError,
    TransientRemoteError,
)

__all__ = [
    "CommentsClient",
    "PermanentRemoteError",
    "RemoteAPIError",
    "TransientRemoteError",
    "run_sync",
    "run_sync_limited",
]
