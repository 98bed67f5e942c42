"""
Single owner of the global "now playing" pointer.

Every mounted party view shares one PlaybackCoordinator and funnels its changes
through set_current() and sync_from_queue(), so two views can never race to set
conflicting items. The pointer follows this state machine::

    EMPTY -> LOADED -> PLAYING <-> PAUSED
    LOADED / PLAYING / PAUSED -> EMPTY   (nothing left to play)
    any -> EMPTY                         (party ended)
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from contextlib import suppress
from typing import TYPE_CHECKING

from aiojukebox.events import PointerChangedEvent
from aiojukebox.models.core import PlaybackPointer, QueueEntry
from aiojukebox.models.types import MediaStatus, PointerState

if TYPE_CHECKING:
    from .client.api import PartyApiClient
    from .reconcile import CanonicalQueue

logger = logging.getLogger(__name__)

# Callback invoked when the pointer or its state changes.
PointerCallback = Callable[[PointerChangedEvent], None]

# Re-runs the full load pipeline of a party: snapshot, then sync_from_queue().
ReloadCallback = Callable[[], Awaitable[None]]


class PlaybackCoordinator:
    """Owns the playback pointer and its autoplay semantics, independent of any view."""

    _api: PartyApiClient
    _autoplay: bool
    """Whether a newly selected entry starts playing right away."""
    _state: PointerState = PointerState.EMPTY
    _pointer: PlaybackPointer | None = None
    _entry: QueueEntry | None = None
    _sync_key: tuple[str, bool, tuple[tuple[str, MediaStatus], ...]] | None = None
    """Canonical state seen by the last sync_from_queue(), to make repeated syncs no-ops."""
    _listeners: list[PointerCallback]

    def __init__(self, api: PartyApiClient, *, autoplay: bool = True) -> None:
        """
        Create the coordinator.

        Args:
            api: REST client used for skip requests.
            autoplay: Start playing a newly selected entry automatically (jukebox
                behaviour). Defaults to True.
        """
        self._api = api
        self._autoplay = autoplay
        self._listeners = []

    @property
    def state(self) -> PointerState:
        """Return the pointer state."""
        return self._state

    @property
    def pointer(self) -> PlaybackPointer | None:
        """Return the current pointer, None when empty."""
        return self._pointer

    @property
    def current_entry(self) -> QueueEntry | None:
        """Return the entry the pointer refers to, as of the last change."""
        return self._entry

    @property
    def party_id(self) -> str | None:
        """Return the party owning the pointer."""
        return self._pointer.party_id if self._pointer else None

    def add_listener(self, callback: PointerCallback) -> Callable[[], None]:
        """
        Register a callback for pointer changes.

        Returns a function to remove the listener.
        """
        self._listeners.append(callback)

        def _remove() -> None:
            with suppress(ValueError):
                self._listeners.remove(callback)

        return _remove

    def sync_from_queue(
        self, canonical: CanonicalQueue, display: Sequence[QueueEntry] | None = None
    ) -> None:
        """
        Point at the active entry of a party queue.

        The active entry comes from the canonical queue alone, so views with different
        filters agree on it: the playing entry if there is one, otherwise the entry
        the pointer already refers to while it is still queued, otherwise the first
        queued entry in canonical order. The display queue of the calling view only
        provides index_in_display_queue.

        Calling this again with an unchanged canonical queue has no effect. A queue of
        a party other than the one owning the pointer is ignored unless the pointer
        is empty.
        """
        owner = self.party_id
        if owner is not None and owner != canonical.party_id:
            logger.debug(
                "Ignoring sync from party %s, pointer is owned by party %s",
                canonical.party_id,
                owner,
            )
            return
        key = (
            canonical.party_id,
            canonical.ended,
            tuple((entry.media_id, entry.status) for entry in canonical.entries),
        )
        if key == self._sync_key:
            return

        active = None if canonical.ended else self._select_active(canonical)
        if active is None:
            self.clear()
        elif self._pointer is not None and self._pointer.media_id == active.media_id:
            # Same item, keep the play state and only track the new entry and position
            pointer = PlaybackPointer(
                canonical.party_id,
                active.media_id,
                _display_index(active, display),
                self._pointer.is_autoplay,
            )
            if pointer != self._pointer or active != self._entry:
                self._pointer = pointer
                self._entry = active
                self._signal_event()
        else:
            self.set_current(
                active,
                self._autoplay or active.status is MediaStatus.PLAYING,
                party_id=canonical.party_id,
                index=_display_index(active, display),
            )
        self._sync_key = key

    def _select_active(self, canonical: CanonicalQueue) -> QueueEntry | None:
        playing = canonical.playing
        if playing is not None:
            return playing
        if self._pointer is not None and self._pointer.party_id == canonical.party_id:
            current = canonical.get(self._pointer.media_id)
            if current is not None and current.status is MediaStatus.QUEUED:
                return current
        queued = canonical.queued
        return queued[0] if queued else None

    def set_current(
        self, entry: QueueEntry, autoplay: bool, *, party_id: str, index: int = 0
    ) -> None:
        """
        Point at an entry.

        Args:
            entry: The entry to point at.
            autoplay: Start playing right away (PLAYING) or only load it (LOADED).
            party_id: The party the entry belongs to; it takes ownership of the pointer.
            index: Position of the entry in the display queue, -1 if not displayed.
        """
        pointer = PlaybackPointer(party_id, entry.media_id, index, autoplay)
        state = PointerState.PLAYING if autoplay else PointerState.LOADED
        if pointer == self._pointer and entry == self._entry and state is self._state:
            return
        if self._pointer is not None and self._pointer.party_id != party_id:
            self._sync_key = None
        self._pointer = pointer
        self._entry = entry
        self._state = state
        logger.debug(
            "Pointer set to %s in party %s (%s)", entry.media_id, party_id, state.value
        )
        self._signal_event()

    def play(self) -> None:
        """Play the loaded or paused entry."""
        if self._state in (PointerState.LOADED, PointerState.PAUSED):
            self._set_state(PointerState.PLAYING)
        elif self._state is PointerState.EMPTY:
            logger.debug("Nothing to play")

    def pause(self) -> None:
        """Pause the playing entry."""
        if self._state is PointerState.PLAYING:
            self._set_state(PointerState.PAUSED)

    def toggle(self) -> None:
        """Toggle between playing and paused."""
        if self._state is PointerState.PLAYING:
            self.pause()
        else:
            self.play()

    def clear(self) -> None:
        """Empty the pointer."""
        self._sync_key = None
        if self._state is PointerState.EMPTY and self._pointer is None:
            return
        self._pointer = None
        self._entry = None
        self._state = PointerState.EMPTY
        logger.debug("Pointer cleared")
        self._signal_event()

    async def skip_next(self, reload: ReloadCallback, party_id: str | None = None) -> None:
        """
        Ask the server to skip to the next entry, then reload the party.

        The next entry depends on ranking rules only the server knows, so it is
        never guessed locally.
        """
        party_id = self._resolve_party(party_id)
        await self._api.skip_next(party_id)
        await reload()

    async def skip_previous(self, reload: ReloadCallback, party_id: str | None = None) -> None:
        """Ask the server to go back to the previous entry, then reload the party."""
        party_id = self._resolve_party(party_id)
        await self._api.skip_previous(party_id)
        await reload()

    def _resolve_party(self, party_id: str | None) -> str:
        party_id = party_id or self.party_id
        if party_id is None:
            raise RuntimeError("No party to skip in")
        return party_id

    def _set_state(self, state: PointerState) -> None:
        if state is self._state:
            return
        logger.debug("Pointer state %s -> %s", self._state.value, state.value)
        self._state = state
        self._signal_event()

    def _signal_event(self) -> None:
        event = PointerChangedEvent(state=self._state, pointer=self._pointer, entry=self._entry)
        for callback in list(self._listeners):
            try:
                callback(event)
            except Exception:
                logger.exception("Error in pointer listener %s", callback)


def _display_index(entry: QueueEntry, display: Sequence[QueueEntry] | None) -> int:
    return next(
        (i for i, shown in enumerate(display or ()) if shown.media_id == entry.media_id), -1
    )
