"""Comment thread sync and outbox.

Pulls remote comment threads into the local store, reconciles their status
with the markers humans leave remotely, and pushes the agent's own writes
through a durable, idempotent outbox.

Modules:

- ``engine``      -- ``SyncEngine``: full sync, thread reads.
- ``outbox``      -- ``Outbox``: enqueue, drain, cleanup of remote writes.
- ``actions``     -- reply / set status / delete built on the outbox.
- ``reconciler``  -- status marker policy (pure functions).
- ``sanitizer``   -- wrapping untrusted comment text.
- ``idempotency`` -- outbox fingerprints.
- ``locks``       -- per-file lock registry.
- ``models``      -- data contracts.
- ``reporter``    -- text formatting for tool output.

Only the data contracts are re-exported here; ``storage`` depends on them,
while ``engine`` and ``outbox`` depend on ``storage``. Import those from
their modules.
"""

from .models import (
    ActionResult,
    EnqueueResult,
    LocalStatus,
    Operation,
    OpState,
    OpType,
    SyncResult,
    SyncStats,
    Thread,
)

__all__ = [
    "ActionResult",
    "EnqueueResult",
    "LocalStatus",
    "Operation",
    "OpState",
    "OpType",
    "SyncResult",
    "SyncStats",
    "Thread",
]
