"""
Reconciliation of authoritative snapshots and push events into the canonical queue.

Two kinds of input reach the canonical queue of a party:

- Snapshots: authoritative reads from the REST API. They replace the entries they
  contain. A full snapshot (the party details) replaces the whole queue and its
  order becomes the canonical order.
- Events: partial single-entry deltas from the push channel, applied through the
  status transition rules against the current canonical state. Events for an entry
  the canonical queue does not know yet are buffered (one slot per entry, last write
  wins) and replayed once a snapshot introduces that entry.

The party-ended event is terminal: afterwards every snapshot and event for the party
is discarded.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import datetime

from aiojukebox.errors import PartyEnded, RejectedTransition
from aiojukebox.models.core import DEFAULT_MINIMUM_BID, Party, QueueEntry
from aiojukebox.models.push import (
    MediaCompletedMessage,
    MediaStartedMessage,
    MediaVetoedMessage,
    PartyEndedMessage,
    UpdateQueueMessage,
)
from aiojukebox.models.types import EventKind, MediaStatus, PartyType, PushMessage, StatusAction

from .status import target_status, transition_queue

logger = logging.getLogger(__name__)

DEFAULT_MAX_PENDING_EVENTS = 256

_EVENT_ACTIONS: dict[EventKind, StatusAction] = {
    EventKind.STARTED: StatusAction.START,
    EventKind.COMPLETED: StatusAction.COMPLETE,
    EventKind.VETOED: StatusAction.VETO,
}


@dataclass(frozen=True, slots=True)
class CanonicalQueue:
    """The canonical state of a party queue as known by this client."""

    party_id: str
    entries: tuple[QueueEntry, ...] = ()
    """All entries of the party, in server ranking order."""
    host_ref: str | None = None
    party_type: PartyType | None = None
    minimum_bid: float = DEFAULT_MINIMUM_BID
    ended: bool = False
    loaded: bool = False
    """Whether at least one snapshot has been applied."""

    def get(self, media_id: str) -> QueueEntry | None:
        """Return the entry referring to media_id, if any."""
        return next((entry for entry in self.entries if entry.media_id == media_id), None)

    def with_status(self, status: MediaStatus) -> tuple[QueueEntry, ...]:
        """Return the entries with the given status, in canonical order."""
        return tuple(entry for entry in self.entries if entry.status is status)

    @property
    def queued(self) -> tuple[QueueEntry, ...]:
        """Return the queued entries in canonical order."""
        return self.with_status(MediaStatus.QUEUED)

    @property
    def playing(self) -> QueueEntry | None:
        """Return the playing entry, if any."""
        return next((entry for entry in self.entries if entry.status is MediaStatus.PLAYING), None)


@dataclass(frozen=True, slots=True)
class Snapshot:
    """An authoritative read of (part of) a party queue."""

    party_id: str
    entries: tuple[QueueEntry, ...]
    partial: bool = False
    """If True only the contained entries are replaced, the rest is kept."""
    host_ref: str | None = None
    party_type: PartyType | None = None
    minimum_bid: float | None = None
    ended: bool = False

    @classmethod
    def from_party(cls, party: Party) -> Snapshot:
        """Build a full snapshot from a party read."""
        return cls(
            party_id=party.id,
            entries=tuple(party.queue),
            host_ref=party.host_ref,
            party_type=party.type,
            minimum_bid=party.minimum_bid,
            ended=party.is_ended,
        )


@dataclass(frozen=True, slots=True)
class QueueEvent:
    """A partial, single-entry change of a party queue."""

    kind: EventKind
    party_id: str
    media_id: str | None = None
    at: datetime | None = None
    by: str | None = None

    @property
    def is_refresh_trigger(self) -> bool:
        """Return True if the event only signals that a snapshot refresh is due."""
        return self.kind is EventKind.QUEUE_UPDATED

    @classmethod
    def from_message(cls, message: PushMessage) -> QueueEvent | None:
        """Convert a push message, returns None for messages that carry no queue change."""
        match message:
            case UpdateQueueMessage(party_id=party_id):
                return cls(EventKind.QUEUE_UPDATED, party_id)
            case MediaStartedMessage(party_id=party_id, media_id=media_id, played_at=at):
                return cls(EventKind.STARTED, party_id, media_id, at)
            case MediaCompletedMessage(party_id=party_id, media_id=media_id, completed_at=at):
                return cls(EventKind.COMPLETED, party_id, media_id, at)
            case MediaVetoedMessage(
                party_id=party_id, media_id=media_id, vetoed_at=at, vetoed_by=by
            ):
                return cls(EventKind.VETOED, party_id, media_id, at, by)
            case PartyEndedMessage(party_id=party_id, ended_at=at):
                return cls(EventKind.PARTY_ENDED, party_id, at=at)
            case _:
                return None


@dataclass(frozen=True, slots=True)
class LocalChange:
    """An optimistic local change, kept to roll it back if the server rejects it."""

    previous: CanonicalQueue
    applied: CanonicalQueue


def _single_playing(entries: Sequence[QueueEntry], party_id: str) -> tuple[QueueEntry, ...]:
    """Keep the first playing entry and demote any later one to queued."""
    result: list[QueueEntry] = []
    seen_playing = False
    for entry in entries:
        if entry.status is MediaStatus.PLAYING:
            if seen_playing:
                logger.warning(
                    "Snapshot of party %s has more than one playing entry, "
                    "demoting %s to queued",
                    party_id,
                    entry.media_id,
                )
                entry = replace(entry, status=MediaStatus.QUEUED)
            seen_playing = True
        result.append(entry)
    return tuple(result)


def apply_snapshot(canonical: CanonicalQueue, snapshot: Snapshot) -> CanonicalQueue:
    """
    Merge a snapshot into the canonical queue.

    Snapshots of another party and snapshots arriving after the party ended are
    discarded and the canonical queue is returned unchanged.
    """
    if canonical.ended:
        logger.debug("Discarding snapshot for ended party %s", canonical.party_id)
        return canonical
    if snapshot.party_id != canonical.party_id:
        logger.warning(
            "Discarding stale snapshot for party %s, expected %s",
            snapshot.party_id,
            canonical.party_id,
        )
        return canonical

    incoming = _single_playing(snapshot.entries, snapshot.party_id)
    if snapshot.partial:
        by_id = {entry.media_id: entry for entry in incoming}
        entries = [by_id.pop(entry.media_id, entry) for entry in canonical.entries]
        entries.extend(entry for entry in incoming if entry.media_id in by_id)
        merged = _single_playing(entries, snapshot.party_id)
    else:
        merged = incoming

    return replace(
        canonical,
        entries=merged,
        host_ref=snapshot.host_ref or canonical.host_ref,
        party_type=snapshot.party_type or canonical.party_type,
        minimum_bid=(
            snapshot.minimum_bid if snapshot.minimum_bid is not None else canonical.minimum_bid
        ),
        ended=snapshot.ended,
        loaded=True,
    )


def apply_event(canonical: CanonicalQueue, event: QueueEvent) -> CanonicalQueue | None:
    """
    Apply a push event to the canonical queue.

    Returns:
        The new canonical queue, or None if the event references an entry the
        canonical queue does not contain (the caller decides whether to buffer it).
        Rejected transitions are logged and leave the queue unchanged.
    """
    if canonical.ended:
        logger.debug("Discarding %s event for ended party %s", event.kind.value, event.party_id)
        return canonical
    if event.party_id != canonical.party_id:
        logger.debug("Ignoring %s event for party %s", event.kind.value, event.party_id)
        return canonical
    if event.kind is EventKind.PARTY_ENDED:
        return replace(canonical, ended=True)
    if event.kind is EventKind.QUEUE_UPDATED:
        return canonical
    if event.media_id is None:
        logger.warning("Dropping %s event without media id", event.kind.value)
        return canonical

    entry = canonical.get(event.media_id)
    if entry is None:
        return None

    action = _EVENT_ACTIONS[event.kind]
    if entry.status is target_status(action):
        logger.debug("Media %s is already %s", event.media_id, entry.status.value)
        return canonical
    try:
        entries = transition_queue(
            canonical.entries, event.media_id, action, at=event.at, by=event.by
        )
    except RejectedTransition as err:
        logger.warning("Rejected %s event: %s", event.kind.value, err.reason)
        return canonical
    return replace(canonical, entries=entries)


class ReconciliationEngine:
    """Owns the canonical queue of one party and the buffer of early events."""

    _canonical: CanonicalQueue
    _pending: OrderedDict[str, QueueEvent]
    """Buffered events per media id, oldest first."""
    _max_pending_events: int

    def __init__(
        self, party_id: str, *, max_pending_events: int = DEFAULT_MAX_PENDING_EVENTS
    ) -> None:
        """
        Create the engine for one party.

        Args:
            party_id: The party whose queue this engine reconciles.
            max_pending_events: Upper bound of buffered events, the oldest buffered
                event is evicted when it is exceeded.
        """
        if max_pending_events < 1:
            raise ValueError("max_pending_events must be positive")
        self._canonical = CanonicalQueue(party_id)
        self._pending = OrderedDict()
        self._max_pending_events = max_pending_events
        self._logger = logger.getChild(party_id)

    @property
    def party_id(self) -> str:
        """Return the party id."""
        return self._canonical.party_id

    @property
    def canonical(self) -> CanonicalQueue:
        """Return the current canonical queue."""
        return self._canonical

    @property
    def pending(self) -> Mapping[str, QueueEvent]:
        """Return the buffered events per media id."""
        return dict(self._pending)

    @property
    def ended(self) -> bool:
        """Return True once the party has ended."""
        return self._canonical.ended

    def merge(self, incoming: Snapshot | QueueEvent) -> CanonicalQueue:
        """Merge a snapshot or an event and return the new canonical queue."""
        match incoming:
            case Snapshot():
                self._canonical = self._merge_snapshot(incoming)
            case QueueEvent():
                self._canonical = self._merge_event(incoming)
            case _:
                raise TypeError(f"Cannot merge {type(incoming).__name__}")
        return self._canonical

    def _merge_snapshot(self, snapshot: Snapshot) -> CanonicalQueue:
        previous = self._canonical
        canonical = apply_snapshot(previous, snapshot)
        if canonical is previous:
            return canonical
        if canonical.ended:
            self._end()
            return canonical

        known = {entry.media_id for entry in previous.entries}
        introduced = {entry.media_id for entry in snapshot.entries}
        for media_id in [media_id for media_id in self._pending if media_id in introduced]:
            event = self._pending.pop(media_id)
            if media_id in known:
                self._logger.debug("Snapshot supersedes buffered event for %s", media_id)
                continue
            self._logger.debug("Replaying buffered %s event for %s", event.kind.value, media_id)
            canonical = apply_event(canonical, event) or canonical
        return canonical

    def _merge_event(self, event: QueueEvent) -> CanonicalQueue:
        canonical = apply_event(self._canonical, event)
        if canonical is None:
            self._buffer(event)
            return self._canonical
        if canonical.ended and not self._canonical.ended:
            self._end()
        return canonical

    def _buffer(self, event: QueueEvent) -> None:
        assert event.media_id is not None
        self._pending.pop(event.media_id, None)
        self._pending[event.media_id] = event
        self._logger.debug(
            "Buffering %s event for unknown media %s", event.kind.value, event.media_id
        )
        while len(self._pending) > self._max_pending_events:
            media_id, dropped = self._pending.popitem(last=False)
            self._logger.warning(
                "Evicting buffered %s event for %s", dropped.kind.value, media_id
            )

    def _end(self) -> None:
        self._pending.clear()
        self._logger.info("Party ended")

    def apply_local(
        self,
        media_id: str,
        action: StatusAction,
        *,
        at: datetime | None = None,
        by: str | None = None,
    ) -> LocalChange:
        """
        Apply an optimistic local status change.

        Raises:
            PartyEnded: If the party has ended.
            RejectedTransition: If the action is illegal, nothing is changed.
        """
        if self._canonical.ended:
            raise PartyEnded(self.party_id)
        previous = self._canonical
        entries = transition_queue(previous.entries, media_id, action, at=at, by=by)
        self._canonical = replace(previous, entries=entries)
        return LocalChange(previous=previous, applied=self._canonical)

    def rollback(self, change: LocalChange) -> bool:
        """
        Roll back an optimistic change.

        While nothing else has been merged since the change was applied, the previous
        queue is restored. Otherwise only the entries the change touched are restored,
        provided every one of them is still exactly as the change left it and the
        result keeps a single playing entry; a later snapshot or event touching them
        already superseded the change.

        Returns:
            True if the canonical queue was rolled back.
        """
        current = self._canonical
        if current is change.applied:
            self._canonical = change.previous
            return True

        previous = {entry.media_id: entry for entry in change.previous.entries}
        touched = {
            entry.media_id: entry
            for entry in change.applied.entries
            if previous.get(entry.media_id) is not entry
        }
        if current.ended or any(
            current.get(media_id) is not entry for media_id, entry in touched.items()
        ):
            self._logger.debug("Local change already superseded, not rolling back")
            return False
        entries = tuple(
            previous[entry.media_id] if entry.media_id in touched else entry
            for entry in current.entries
        )
        if sum(entry.status is MediaStatus.PLAYING for entry in entries) > 1:
            self._logger.debug("Rolling back would leave two playing entries")
            return False
        self._canonical = replace(current, entries=entries)
        return True

    def reset(self) -> None:
        """Forget the canonical queue and every buffered event."""
        self._canonical = CanonicalQueue(self.party_id)
        self._pending.clear()
