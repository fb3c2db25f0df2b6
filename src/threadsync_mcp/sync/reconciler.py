"""Status reconciliation policy.

Pure functions that decide a thread's local status from the status markers
(reaction emoji) humans leave on the remote root comment.

Decision table:

=================  ===============  ========
Remote marker      Local status     Result
=================  ===============  ========
none               OPEN / PENDING   unchanged
done / wontfix     any              remote
pending            any              PENDING
none (removed)     DONE / WONTFIX   OPEN
done + wontfix     any              DONE
=================  ===============  ========

A marker on the remote side always wins; the absence of one only ever
demotes a closed thread back to OPEN.
"""

from __future__ import annotations

from collections.abc import Iterable

from .models import LocalStatus, RemoteReaction

# Shortcodes are what the API sends and accepts for writes.
STATUS_MARKERS: dict[LocalStatus, str] = {
    LocalStatus.PENDING: ":eyes:",
    LocalStatus.DONE: ":white_check_mark:",
    LocalStatus.WONTFIX: ":no_entry_sign:",
}

MARKER_TO_STATUS: dict[str, LocalStatus] = {
    ":eyes:": LocalStatus.PENDING,
    ":white_check_mark:": LocalStatus.DONE,
    ":no_entry_sign:": LocalStatus.WONTFIX,
    "\U0001f440": LocalStatus.PENDING,
    "✅": LocalStatus.DONE,
    "\U0001f6ab": LocalStatus.WONTFIX,
}

_PRIORITY = (LocalStatus.DONE, LocalStatus.WONTFIX, LocalStatus.PENDING)


def marker_to_status(marker: str) -> LocalStatus | None:
    """Return the status a marker stands for, or ``None`` for other emoji."""
    return MARKER_TO_STATUS.get(marker)


def status_to_marker(status: LocalStatus) -> str | None:
    """Return the marker shortcode for *status*; OPEN has none."""
    return STATUS_MARKERS.get(LocalStatus(status))


def resolve_remote_signal(
    reactions: Iterable[RemoteReaction],
) -> LocalStatus | None:
    """Scan *reactions* for status markers.

    DONE beats WONTFIX beats PENDING. Returns ``None`` when no marker is
    present, meaning the remote side expresses no opinion.
    """
    seen = {marker_to_status(r.emoji) for r in reactions}
    for status in _PRIORITY:
        if status in seen:
            return status
    return None


def remote_marker(reactions: Iterable[RemoteReaction]) -> str | None:
    """Return the emoji that produced the winning remote signal."""
    reactions = list(reactions)
    signal = resolve_remote_signal(reactions)
    if signal is None:
        return None
    for reaction in reactions:
        if marker_to_status(reaction.emoji) == signal:
            return reaction.emoji
    return None  # pragma: no cover


def reconcile(
    remote_signal: LocalStatus | None,
    current_local: LocalStatus,
) -> LocalStatus:
    """Merge the remote signal into the current local status."""
    if remote_signal is not None:
        return remote_signal
    if current_local in (LocalStatus.DONE, LocalStatus.WONTFIX):
        return LocalStatus.OPEN
    return current_local


def forced_status(remote_signal: LocalStatus | None) -> LocalStatus:
    """Status used by a forced full sync: local history is ignored."""
    return remote_signal if remote_signal is not None else LocalStatus.OPEN
