"""
Status transition rules for queue entries.

The lifecycle of an entry is::

    queued --start--> playing --complete--> played
    queued --veto---> vetoed  --restore---> queued

Any other edge is rejected with RejectedTransition. Starting an entry forces every
other playing entry of the same party back to queued, so at most one entry of a
party is ever playing.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace
from datetime import UTC, datetime

from aiojukebox.errors import RejectedTransition, UnknownEntry
from aiojukebox.models.core import QueueEntry
from aiojukebox.models.types import MediaStatus, StatusAction

_TRANSITIONS: dict[StatusAction, tuple[MediaStatus, MediaStatus]] = {
    StatusAction.START: (MediaStatus.QUEUED, MediaStatus.PLAYING),
    StatusAction.COMPLETE: (MediaStatus.PLAYING, MediaStatus.PLAYED),
    StatusAction.VETO: (MediaStatus.QUEUED, MediaStatus.VETOED),
    StatusAction.RESTORE: (MediaStatus.VETOED, MediaStatus.QUEUED),
}


def source_status(action: StatusAction) -> MediaStatus:
    """Return the only status the action may be applied from."""
    return _TRANSITIONS[action][0]


def target_status(action: StatusAction) -> MediaStatus:
    """Return the status an entry has after the action."""
    return _TRANSITIONS[action][1]


def is_legal(status: MediaStatus, action: StatusAction) -> bool:
    """Return True if the action may be applied to an entry with this status."""
    return source_status(action) is status


def transition(
    entry: QueueEntry,
    action: StatusAction,
    *,
    at: datetime | None = None,
    by: str | None = None,
) -> QueueEntry:
    """
    Apply a status action to a single entry.

    Args:
        entry: The entry to transition.
        action: The requested action.
        at: When the action happened, defaults to now. Stamped as played_at for
            START (and for COMPLETE if the entry has no start time) and as
            vetoed_at for VETO.
        by: For VETO, who vetoed the entry.

    Returns:
        A new entry with the target status.

    Raises:
        RejectedTransition: If the action is illegal from the entry's status.
    """
    if not is_legal(entry.status, action):
        if entry.status is MediaStatus.PLAYING and action in (
            StatusAction.VETO,
            StatusAction.RESTORE,
        ):
            raise RejectedTransition(
                entry.media_id,
                entry.status,
                action,
                f"Cannot {action.value} media {entry.media_id} while it is playing, "
                "complete it first",
            )
        raise RejectedTransition(entry.media_id, entry.status, action)

    at = at or datetime.now(UTC)
    status = target_status(action)
    if action is StatusAction.START:
        return replace(entry, status=status, played_at=at)
    if action is StatusAction.COMPLETE:
        return replace(entry, status=status, played_at=entry.played_at or at)
    if action is StatusAction.VETO:
        return replace(entry, status=status, vetoed_at=at, vetoed_by=by)
    return replace(entry, status=status, vetoed_at=None, vetoed_by=None)


def transition_queue(
    entries: Sequence[QueueEntry],
    media_id: str,
    action: StatusAction,
    *,
    at: datetime | None = None,
    by: str | None = None,
) -> tuple[QueueEntry, ...]:
    """
    Apply a status action to one entry of a party queue.

    Order is preserved. For START every other playing entry is forced back to
    queued.

    Raises:
        UnknownEntry: If no entry refers to media_id.
        RejectedTransition: If the action is illegal from the entry's status.
    """
    for index, entry in enumerate(entries):
        if entry.media_id == media_id:
            break
    else:
        raise UnknownEntry(media_id, action)

    updated = transition(entry, action, at=at, by=by)
    result = list(entries)
    result[index] = updated
    if action is StatusAction.START:
        for other_index, other in enumerate(result):
            if other_index != index and other.status is MediaStatus.PLAYING:
                result[other_index] = replace(other, status=MediaStatus.QUEUED)
    return tuple(result)


def playing_entry(entries: Sequence[QueueEntry]) -> QueueEntry | None:
    """Return the playing entry of a queue, if any."""
    return next((entry for entry in entries if entry.status is MediaStatus.PLAYING), None)
