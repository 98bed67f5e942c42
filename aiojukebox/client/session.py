"""
PartySession - the event-driven shell of one mounted party view.

A session wires the pure parts of aiojukebox together for one party: it feeds
snapshots and push events into the ReconciliationEngine, projects the canonical
queue through the view state, keeps the shared PlaybackCoordinator in sync and runs
local mutations (bids, vetoes, start/complete, skips) with a snapshot refresh
awaited afterwards, so the caller reads its own write.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from contextlib import suppress

from aiojukebox.bids import BidConfirmation, BidLedger
from aiojukebox.config import ClientConfig
from aiojukebox.errors import HostOnlyAction, JukeboxError, PartyEnded
from aiojukebox.events import (
    BalanceChangedEvent,
    NotificationEvent,
    NotificationLevel,
    PartyEndedEvent,
    QueueChangedEvent,
    SessionEvent,
)
from aiojukebox.models.core import DEFAULT_MINIMUM_BID, QueueEntry, ViewState
from aiojukebox.models.types import (
    EventKind,
    MediaStatus,
    PushMessage,
    SortWindow,
    StatusAction,
)
from aiojukebox.playback import PlaybackCoordinator
from aiojukebox.projector import project
from aiojukebox.reconcile import (
    DEFAULT_MAX_PENDING_EVENTS,
    CanonicalQueue,
    QueueEvent,
    ReconciliationEngine,
    Snapshot,
)

from .api import PartyApiClient
from .channel import PushChannel

logger = logging.getLogger(__name__)

# Callback invoked with every session event.
SessionEventCallback = Callable[[SessionEvent], None]

# PartyApiClient method confirming each host status action
_HOST_REQUESTS: dict[StatusAction, str] = {
    StatusAction.START: "start_media",
    StatusAction.COMPLETE: "complete_media",
    StatusAction.VETO: "veto_media",
    StatusAction.RESTORE: "unveto_media",
}


class PartySession:
    """State and operations of one mounted party view."""

    _api: PartyApiClient
    _coordinator: PlaybackCoordinator
    _engine: ReconciliationEngine
    _ledger: BidLedger
    _view_state: ViewState
    _ranking: tuple[QueueEntry, ...] | None = None
    """Server ranking for the current non all-time sort window."""
    _ranking_window: SortWindow | None = None
    _user_id: str | None
    _channel: PushChannel | None = None
    _remove_channel_listener: Callable[[], None] | None = None
    _closed: bool = False
    _refresh_task: asyncio.Task[None] | None = None
    """Refresh triggered by a push message."""
    _refresh_again: bool = False
    """Whether another push-triggered refresh is due once the running one finishes."""
    _event_callbacks: list[SessionEventCallback]

    def __init__(
        self,
        api: PartyApiClient,
        party_id: str,
        coordinator: PlaybackCoordinator,
        *,
        config: ClientConfig | None = None,
        user_id: str | None = None,
        balance: float | None = None,
        view_state: ViewState | None = None,
    ) -> None:
        """
        Create the session of a party view.

        Args:
            api: REST client.
            party_id: The party this view shows.
            coordinator: The playback coordinator shared by all views.
            config: Client configuration, used for the event buffer bound and the
                default minimum bid.
            user_id: The current user, compared with the party host for host-only
                actions.
            balance: The current user's balance if known.
            view_state: Initial view state, defaults to all-time without search.
        """
        self._api = api
        self._coordinator = coordinator
        self._user_id = user_id
        self._view_state = view_state or ViewState()
        self._engine = ReconciliationEngine(
            party_id,
            max_pending_events=(
                config.max_pending_events if config else DEFAULT_MAX_PENDING_EVENTS
            ),
        )
        self._ledger = BidLedger(
            api,
            party_id,
            self.refresh,
            minimum_bid=config.default_minimum_bid if config else DEFAULT_MINIMUM_BID,
            balance=balance,
        )
        self._event_callbacks = []
        self._logger = logger.getChild(party_id)

    @property
    def party_id(self) -> str:
        """Return the party id."""
        return self._engine.party_id

    @property
    def canonical(self) -> CanonicalQueue:
        """Return the canonical queue."""
        return self._engine.canonical

    @property
    def view_state(self) -> ViewState:
        """Return the view state."""
        return self._view_state

    @property
    def display_queue(self) -> tuple[QueueEntry, ...]:
        """Return the queued entries as displayed by the main view."""
        return project(self.canonical, self._view_state, ranking=self._current_ranking())

    @property
    def vetoed_queue(self) -> tuple[QueueEntry, ...]:
        """Return the vetoed entries as displayed by the vetoed view."""
        return project(
            self.canonical,
            self._view_state,
            target=MediaStatus.VETOED,
            ranking=self._current_ranking(),
        )

    @property
    def balance(self) -> float | None:
        """Return the last known balance of the current user."""
        return self._ledger.balance

    @property
    def ledger(self) -> BidLedger:
        """Return the bid ledger of this party."""
        return self._ledger

    @property
    def is_host(self) -> bool:
        """Return True if the current user hosts the party."""
        host = self.canonical.host_ref
        return host is not None and self._user_id is not None and host == self._user_id

    @property
    def closed(self) -> bool:
        """Return True once the session is closed."""
        return self._closed

    def add_event_listener(self, callback: SessionEventCallback) -> Callable[[], None]:
        """
        Register a callback for session events.

        Returns a function to remove the listener.
        """
        self._event_callbacks.append(callback)

        def _remove() -> None:
            with suppress(ValueError):
                self._event_callbacks.remove(callback)

        return _remove

    # Loading

    async def load(self) -> None:
        """Run the load pipeline: snapshot, ranking if needed, pointer sync."""
        await self.refresh()

    async def refresh(self) -> None:
        """
        Re-read the party and update the queue, ranking and playback pointer.

        A response arriving after the session was closed is discarded.

        Raises:
            TransientNetworkError: If the snapshot could not be fetched; the
                canonical queue is left unchanged.
        """
        if self._closed or self._engine.ended:
            return
        try:
            party = await self._api.get_party_snapshot(self.party_id)
        except JukeboxError as err:
            self._notify_error("Failed to load party", err)
            raise
        if self._closed:
            self._logger.debug("Discarding snapshot received after close")
            return

        ended_before = self._engine.ended
        canonical = self._engine.merge(Snapshot.from_party(party))
        if canonical.loaded:
            self._ledger.set_minimum_bid(canonical.minimum_bid)
        if canonical.ended:
            if not ended_before:
                self._handle_party_ended()
            return

        if self._view_state.sort_window is not SortWindow.ALL_TIME:
            await self._load_ranking(self._view_state.sort_window)
        self._sync_and_signal()

    async def _load_ranking(self, window: SortWindow) -> None:
        try:
            ranking = await self._api.get_ranked_media(self.party_id, window)
        except JukeboxError as err:
            self._notify_error("Failed to load ranking", err)
            raise
        if self._closed or self._view_state.sort_window is not window:
            self._logger.debug("Discarding stale %s ranking", window.value)
            return
        self._ranking = ranking
        self._ranking_window = window

    def _current_ranking(self) -> tuple[QueueEntry, ...] | None:
        if self._ranking_window is self._view_state.sort_window:
            return self._ranking
        return None

    # View state

    async def set_sort_window(self, window: SortWindow) -> None:
        """Change the sort window, loading the server ranking for it."""
        self._view_state = self._view_state.with_sort_window(window)
        if window is not SortWindow.ALL_TIME and not self._closed:
            await self._load_ranking(window)
        self._signal_queue_changed()

    def add_search_term(self, term: str) -> None:
        """Add a search term to the view."""
        self.set_view_state(self._view_state.with_term(term))

    def remove_search_term(self, term: str) -> None:
        """Remove a search term from the view."""
        self.set_view_state(self._view_state.without_term(term))

    def set_search_terms(self, terms: Iterable[str]) -> None:
        """Replace the search terms of the view."""
        view_state = ViewState(sort_window=self._view_state.sort_window)
        for term in terms:
            view_state = view_state.with_term(term)
        self.set_view_state(view_state)

    def set_view_state(self, view_state: ViewState) -> None:
        """
        Replace the view state.

        Changing to a sort window whose ranking is not loaded yields an empty
        projection until set_sort_window() or refresh() loads it.
        """
        if view_state == self._view_state:
            return
        self._view_state = view_state
        self._signal_queue_changed()

    # Mutations

    async def place_bid(self, media_id: str, amount: float) -> BidConfirmation:
        """
        Place a bid on an entry.

        The queue is refreshed from the server before this returns; the aggregate
        of the entry is never changed locally.
        """
        if self._engine.ended:
            raise PartyEnded(self.party_id)
        try:
            confirmation = await self._ledger.place_bid(media_id, amount)
        except JukeboxError as err:
            self._notify_error("Bid failed", err)
            raise
        self._signal_event(BalanceChangedEvent(confirmation.updated_balance))
        self._signal_event(
            NotificationEvent(NotificationLevel.SUCCESS, f"Bid of £{amount:.2f} placed")
        )
        return confirmation

    async def veto(self, media_id: str) -> None:
        """Veto an entry (host only)."""
        await self._mutate_status(media_id, StatusAction.VETO)

    async def unveto(self, media_id: str) -> None:
        """Restore a vetoed entry (host only)."""
        await self._mutate_status(media_id, StatusAction.RESTORE)

    async def start_media(self, media_id: str) -> None:
        """Mark an entry as playing (host only)."""
        await self._mutate_status(media_id, StatusAction.START)

    async def complete_media(self, media_id: str) -> None:
        """Mark the playing entry as played (host only)."""
        await self._mutate_status(media_id, StatusAction.COMPLETE)

    async def _mutate_status(self, media_id: str, action: StatusAction) -> None:
        """Apply a status change optimistically, confirm it remotely, then refresh."""
        try:
            self._require_host(action.value)
            change = self._engine.apply_local(media_id, action, by=self._user_id)
        except JukeboxError as err:
            self._notify_error(f"Cannot {action.value} media", err)
            raise
        self._sync_and_signal()

        try:
            request = getattr(self._api, _HOST_REQUESTS[action])
            await request(self.party_id, media_id)
        except JukeboxError as err:
            if self._engine.rollback(change):
                self._sync_and_signal()
            else:
                # Other changes were merged on top, only the server knows the state now
                await self._refresh_after(f"failed {action.value} of {media_id}")
            self._notify_error(f"Failed to {action.value} media", err)
            raise
        await self._refresh_after(f"{action.value} of {media_id}")

    async def _refresh_after(self, description: str) -> None:
        try:
            await self.refresh()
        except JukeboxError as err:
            # The next successful refresh will catch up
            self._logger.warning("Refresh after %s failed: %s", description, err)

    async def skip_next(self) -> None:
        """Skip to the next entry (host only), then reload the party."""
        await self._skip(self._coordinator.skip_next, "skip")

    async def skip_previous(self) -> None:
        """Go back to the previous entry (host only), then reload the party."""
        await self._skip(self._coordinator.skip_previous, "go back")

    async def _skip(
        self,
        skip: Callable[[Callable[[], Awaitable[None]], str | None], Awaitable[None]],
        description: str,
    ) -> None:
        try:
            if self._engine.ended:
                raise PartyEnded(self.party_id)
            self._require_host(description)
            await skip(self.refresh, self.party_id)
        except JukeboxError as err:
            self._notify_error(f"Failed to {description}", err)
            raise

    async def end_party(self) -> None:
        """End the party (host only)."""
        try:
            if self._engine.ended:
                raise PartyEnded(self.party_id)
            self._require_host("end the party")
            await self._api.end_party(self.party_id)
        except JukeboxError as err:
            self._notify_error("Failed to end party", err)
            raise
        if self._engine.ended:
            # The PARTY_ENDED push arrived while the request was in flight
            return
        self._engine.merge(QueueEvent(EventKind.PARTY_ENDED, self.party_id))
        self._handle_party_ended()

    def _require_host(self, description: str) -> None:
        if not self.is_host:
            raise HostOnlyAction(f"Only the host can {description}")

    # Push channel

    def attach_channel(self, channel: PushChannel) -> None:
        """Receive the push messages of a channel subscribed to this party."""
        if channel.party_id != self.party_id:
            raise ValueError(
                f"Channel is subscribed to party {channel.party_id}, not {self.party_id}"
            )
        self._detach_channel()
        self._channel = channel
        self._remove_channel_listener = channel.add_message_listener(self.handle_push_message)

    def _detach_channel(self) -> None:
        if self._remove_channel_listener is not None:
            self._remove_channel_listener()
            self._remove_channel_listener = None
        self._channel = None

    def handle_push_message(self, message: PushMessage) -> None:
        """Apply a push message to the canonical queue."""
        if self._closed:
            return
        event = QueueEvent.from_message(message)
        if event is None:
            return
        if event.party_id != self.party_id:
            self._logger.debug("Ignoring %s event for party %s", event.kind.value, event.party_id)
            return
        ended_before = self._engine.ended
        canonical = self._engine.merge(event)
        if canonical.ended:
            if not ended_before:
                self._handle_party_ended()
            return
        if event.is_refresh_trigger:
            self._schedule_refresh()
            return
        self._sync_and_signal()

    def _schedule_refresh(self) -> None:
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_again = True
            return
        self._refresh_task = asyncio.create_task(self._run_refresh())

    async def _run_refresh(self) -> None:
        while True:
            self._refresh_again = False
            try:
                await self.refresh()
            except JukeboxError as err:
                self._logger.debug("Push triggered refresh failed: %s", err)
            if not self._refresh_again or self._closed:
                return

    # Lifecycle

    async def close(self) -> None:
        """
        Close the session.

        Late responses of requests still in flight are discarded. The playback
        pointer is left alone: it is shared with other views and outlives this one.
        """
        self._closed = True
        self._detach_channel()
        if self._refresh_task is not None:
            self._refresh_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._refresh_task
            self._refresh_task = None

    def _handle_party_ended(self) -> None:
        self._logger.info("Party %s ended", self.party_id)
        if self._coordinator.party_id in (None, self.party_id):
            self._coordinator.sync_from_queue(self.canonical)
        self._signal_event(PartyEndedEvent(self.party_id))
        self._signal_event(NotificationEvent(NotificationLevel.INFO, "The party has ended"))

    def _sync_and_signal(self) -> None:
        display = self.display_queue
        self._coordinator.sync_from_queue(self.canonical, display)
        self._signal_event(QueueChangedEvent(display))

    def _signal_queue_changed(self) -> None:
        self._signal_event(QueueChangedEvent(self.display_queue))

    def _notify_error(self, message: str, err: JukeboxError) -> None:
        self._logger.warning("%s: %s", message, err)
        self._signal_event(NotificationEvent(NotificationLevel.ERROR, f"{message}: {err}", err))

    def _signal_event(self, event: SessionEvent) -> None:
        for callback in list(self._event_callbacks):
            try:
                callback(event)
            except Exception:
                self._logger.exception("Error in session event listener %s", callback)
