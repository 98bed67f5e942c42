from __future__ import annotations

import asyncio
from typing import Any

import pytest

from aiojukebox.client import PartySession
from aiojukebox.errors import PartyEnded, TransientNetworkError
from aiojukebox.events import NotificationEvent, PartyEndedEvent, QueueChangedEvent, SessionEvent
from aiojukebox.models.core import MediaItem, Party, QueueEntry, ViewState
from aiojukebox.models.push import (
    MediaCompletedMessage,
    MediaStartedMessage,
    MediaVetoedMessage,
    PartyEndedMessage,
    UpdateQueueMessage,
)
from aiojukebox.models.types import MediaStatus, PartyStatus, PointerState
from aiojukebox.playback import PlaybackCoordinator

PARTY = "party-1"


def _entry(media_id: str, status: MediaStatus = MediaStatus.QUEUED, **media: Any) -> QueueEntry:
    media.setdefault("title", media_id)
    return QueueEntry(media=MediaItem(id=media_id, **media), status=status)


class _FakeApi:
    """Serves a mutable party; requests block while their gate is cleared."""

    def __init__(self, *entries: QueueEntry) -> None:
        self.party = Party(id=PARTY, host_ref="host-1", queue=entries)
        self.gate = asyncio.Event()
        self.gate.set()
        self.snapshot_calls = 0
        self.error: Exception | None = None
        self.host_gate = asyncio.Event()
        self.host_gate.set()
        self.host_error: Exception | None = None
        self.vetoes: list[str] = []

    async def get_party_snapshot(self, party_id: str) -> Party:
        self.snapshot_calls += 1
        await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.party

    async def veto_media(self, party_id: str, media_id: str) -> None:
        await self.host_gate.wait()
        if self.host_error is not None:
            raise self.host_error
        self.vetoes.append(media_id)


def _session(
    api: _FakeApi, **kwargs: Any
) -> tuple[PartySession, PlaybackCoordinator, list[SessionEvent]]:
    coordinator = PlaybackCoordinator(api)
    session = PartySession(api, PARTY, coordinator, **kwargs)
    events: list[SessionEvent] = []
    session.add_event_listener(events.append)
    return session, coordinator, events


@pytest.mark.asyncio
async def test_load_emits_display_queue() -> None:
    api = _FakeApi(_entry("a"), _entry("b"))
    session, coordinator, events = _session(api)

    await session.load()

    assert isinstance(events[-1], QueueChangedEvent)
    assert [entry.media_id for entry in events[-1].display_queue] == ["a", "b"]
    assert coordinator.pointer.media_id == "a"
    assert coordinator.state is PointerState.PLAYING


@pytest.mark.asyncio
async def test_snapshot_after_close_is_discarded() -> None:
    api = _FakeApi(_entry("a"))
    session, _, events = _session(api)
    api.gate.clear()

    task = asyncio.create_task(session.refresh())
    await asyncio.sleep(0)
    await session.close()
    api.gate.set()
    await task

    assert not session.canonical.loaded
    assert events == []


@pytest.mark.asyncio
async def test_failed_load_keeps_canonical_and_notifies() -> None:
    api = _FakeApi(_entry("a"))
    session, _, events = _session(api)
    await session.load()
    before = session.canonical

    api.error = TransientNetworkError("offline")
    with pytest.raises(TransientNetworkError):
        await session.refresh()

    assert session.canonical is before
    assert isinstance(events[-1], NotificationEvent)
    assert events[-1].error is api.error


@pytest.mark.asyncio
async def test_update_queue_refreshes_are_coalesced() -> None:
    api = _FakeApi(_entry("a"))
    session, _, _ = _session(api)
    await session.load()
    assert api.snapshot_calls == 1

    api.gate.clear()
    session.handle_push_message(UpdateQueueMessage(party_id=PARTY))
    await asyncio.sleep(0)
    assert api.snapshot_calls == 2
    for _ in range(4):
        session.handle_push_message(UpdateQueueMessage(party_id=PARTY))
    api.party = Party(id=PARTY, host_ref="host-1", queue=(_entry("a"), _entry("b")))
    api.gate.set()
    for _ in range(20):
        await asyncio.sleep(0)

    # The running refresh plus a single follow-up for the messages received meanwhile
    assert api.snapshot_calls == 3
    assert [entry.media_id for entry in session.display_queue] == ["a", "b"]
    await session.close()


@pytest.mark.asyncio
async def test_push_events_update_queue_and_pointer() -> None:
    api = _FakeApi(_entry("a"), _entry("b"))
    session, coordinator, events = _session(api)
    await session.load()

    session.handle_push_message(MediaStartedMessage(party_id=PARTY, media_id="b"))
    assert session.canonical.playing.media_id == "b"
    assert coordinator.pointer.media_id == "b"
    assert [entry.media_id for entry in session.display_queue] == ["a"]

    session.handle_push_message(MediaCompletedMessage(party_id=PARTY, media_id="b"))
    assert session.canonical.get("b").status is MediaStatus.PLAYED
    assert coordinator.pointer.media_id == "a"

    session.handle_push_message(MediaStartedMessage(party_id="party-2", media_id="a"))
    assert session.canonical.playing is None
    assert sum(isinstance(event, QueueChangedEvent) for event in events) == 3


@pytest.mark.asyncio
async def test_party_ended_message() -> None:
    api = _FakeApi(_entry("a"))
    session, coordinator, events = _session(api, user_id="host-1")
    await session.load()

    session.handle_push_message(PartyEndedMessage(party_id=PARTY))

    assert session.canonical.ended
    assert coordinator.state is PointerState.EMPTY
    assert any(isinstance(event, PartyEndedEvent) for event in events)
    with pytest.raises(PartyEnded):
        await session.veto("a")
    with pytest.raises(PartyEnded):
        await session.place_bid("a", 1.0)

    calls = api.snapshot_calls
    await session.refresh()
    assert api.snapshot_calls == calls


@pytest.mark.asyncio
async def test_ended_snapshot_ends_session() -> None:
    api = _FakeApi(_entry("a"))
    api.party = Party(id=PARTY, host_ref="host-1", queue=(), status=PartyStatus.ENDED)
    session, _, events = _session(api)
    await session.load()
    assert session.canonical.ended
    assert [type(event) for event in events] == [PartyEndedEvent, NotificationEvent]


@pytest.mark.asyncio
async def test_search_terms() -> None:
    api = _FakeApi(
        _entry("a", title="Rock Anthem", tags=("Chill-Vibes",)),
        _entry("b", title="Rock Ballad", tags=("chilling",)),
    )
    session, _, events = _session(api, view_state=ViewState(search_terms=("rock",)))
    await session.load()
    assert len(session.display_queue) == 2

    session.add_search_term("#chill")
    assert [entry.media_id for entry in session.display_queue] == ["a"]
    assert [entry.media_id for entry in events[-1].display_queue] == ["a"]

    session.set_search_terms([])
    assert session.view_state.search_terms == ()
    assert len(session.display_queue) == 2


@pytest.mark.asyncio
async def test_failed_veto_restores_entry_after_other_push() -> None:
    api = _FakeApi(_entry("a"), _entry("b"))
    session, _, events = _session(api, user_id="host-1")
    await session.load()
    api.host_gate.clear()
    api.host_error = TransientNetworkError("server returned 503")

    task = asyncio.create_task(session.veto("a"))
    await asyncio.sleep(0)
    assert session.canonical.get("a").status is MediaStatus.VETOED
    session.handle_push_message(MediaVetoedMessage(party_id=PARTY, media_id="b"))
    api.host_gate.set()
    with pytest.raises(TransientNetworkError):
        await task

    assert session.canonical.get("a").status is MediaStatus.QUEUED
    assert session.canonical.get("b").status is MediaStatus.VETOED
    assert [entry.media_id for entry in session.display_queue] == ["a"]
    assert isinstance(events[-1], NotificationEvent)


@pytest.mark.asyncio
async def test_confirmed_veto_survives_failed_refresh() -> None:
    api = _FakeApi(_entry("a"), _entry("b"))
    session, _, events = _session(api, user_id="host-1")
    await session.load()
    api.error = TransientNetworkError("offline")

    await session.veto("a")

    assert api.vetoes == ["a"]
    assert api.snapshot_calls == 2
    assert session.canonical.get("a").status is MediaStatus.VETOED
    assert isinstance(events[-1], NotificationEvent)
    assert events[-1].error is api.error
