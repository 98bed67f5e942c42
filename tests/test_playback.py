from __future__ import annotations

import pytest

from aiojukebox.events import PointerChangedEvent
from aiojukebox.models.core import MediaItem, QueueEntry
from aiojukebox.models.types import MediaStatus, PointerState
from aiojukebox.playback import PlaybackCoordinator
from aiojukebox.reconcile import CanonicalQueue


class _FakeApi:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    async def skip_next(self, party_id: str) -> None:
        self.calls.append(("next", party_id))

    async def skip_previous(self, party_id: str) -> None:
        self.calls.append(("previous", party_id))


def _entry(media_id: str, status: MediaStatus = MediaStatus.QUEUED) -> QueueEntry:
    return QueueEntry(media=MediaItem(id=media_id, title=media_id), status=status)


def _canonical(party_id: str, *entries: QueueEntry, ended: bool = False) -> CanonicalQueue:
    return CanonicalQueue(party_id, entries=entries, ended=ended, loaded=True)


def _coordinator(autoplay: bool = True) -> tuple[PlaybackCoordinator, list[PointerChangedEvent]]:
    coordinator = PlaybackCoordinator(_FakeApi(), autoplay=autoplay)
    events: list[PointerChangedEvent] = []
    coordinator.add_listener(events.append)
    return coordinator, events


def test_sync_points_at_first_queued_entry() -> None:
    coordinator, events = _coordinator()
    canonical = _canonical("p1", _entry("a"), _entry("b"))

    coordinator.sync_from_queue(canonical, canonical.queued)

    assert coordinator.state is PointerState.PLAYING
    assert coordinator.pointer.media_id == "a"
    assert coordinator.pointer.index_in_display_queue == 0
    assert coordinator.pointer.is_autoplay
    assert len(events) == 1


def test_sync_prefers_playing_entry() -> None:
    coordinator, _ = _coordinator(autoplay=False)
    canonical = _canonical("p1", _entry("a"), _entry("b", MediaStatus.PLAYING))

    coordinator.sync_from_queue(canonical, canonical.queued)

    assert coordinator.pointer.media_id == "b"
    assert coordinator.pointer.index_in_display_queue == -1
    assert coordinator.state is PointerState.PLAYING


def test_sync_without_autoplay_only_loads() -> None:
    coordinator, _ = _coordinator(autoplay=False)
    coordinator.sync_from_queue(_canonical("p1", _entry("a")))
    assert coordinator.state is PointerState.LOADED
    coordinator.play()
    assert coordinator.state is PointerState.PLAYING


def test_repeated_sync_is_noop() -> None:
    coordinator, events = _coordinator()
    canonical = _canonical("p1", _entry("a"), _entry("b"))

    coordinator.sync_from_queue(canonical, canonical.queued)
    coordinator.pause()
    coordinator.sync_from_queue(canonical, canonical.queued)

    assert coordinator.state is PointerState.PAUSED
    assert len(events) == 2


def test_identical_syncs_signal_once() -> None:
    coordinator, events = _coordinator()
    canonical = _canonical("p1", _entry("a"), _entry("b"))

    coordinator.sync_from_queue(canonical, canonical.queued)
    coordinator.sync_from_queue(_canonical("p1", _entry("a"), _entry("b")), canonical.queued)

    assert len(events) == 1


def test_selected_entry_survives_sync() -> None:
    coordinator, _ = _coordinator()
    canonical = _canonical("p1", _entry("a"), _entry("b"), _entry("c"))
    coordinator.sync_from_queue(canonical, canonical.queued)
    coordinator.sync_from_queue(canonical, canonical.queued)

    coordinator.set_current(canonical.get("b"), True, party_id="p1", index=1)
    coordinator.sync_from_queue(canonical, canonical.queued)
    assert coordinator.pointer.media_id == "b"

    vetoed_c = _canonical(
        "p1", _entry("a"), _entry("b"), _entry("c", MediaStatus.VETOED)
    )
    coordinator.sync_from_queue(vetoed_c, vetoed_c.queued)
    assert coordinator.pointer.media_id == "b"
    assert coordinator.state is PointerState.PLAYING

    vetoed_b = _canonical(
        "p1", _entry("a"), _entry("b", MediaStatus.VETOED), _entry("c", MediaStatus.VETOED)
    )
    coordinator.sync_from_queue(vetoed_b, vetoed_b.queued)
    assert coordinator.pointer.media_id == "a"


def test_views_with_different_filters_agree() -> None:
    coordinator, events = _coordinator()
    canonical = _canonical("p1", _entry("a"), _entry("b"))
    filtered = (canonical.get("b"),)

    for _ in range(3):
        coordinator.sync_from_queue(canonical, canonical.queued)
        coordinator.sync_from_queue(canonical, filtered)

    assert coordinator.pointer.media_id == "a"
    assert len(events) == 1

    changed = _canonical("p1", _entry("a"), _entry("b"), _entry("c"))
    coordinator.sync_from_queue(changed, filtered)
    assert coordinator.pointer.media_id == "a"
    assert coordinator.pointer.index_in_display_queue == -1


def test_sync_from_other_party_is_ignored() -> None:
    coordinator, _ = _coordinator()
    coordinator.sync_from_queue(_canonical("p1", _entry("a")))
    coordinator.sync_from_queue(_canonical("p2", _entry("x")))
    assert coordinator.party_id == "p1"
    assert coordinator.pointer.media_id == "a"


def test_empty_queue_clears_pointer() -> None:
    coordinator, _ = _coordinator()
    coordinator.sync_from_queue(_canonical("p1", _entry("a")))
    coordinator.sync_from_queue(_canonical("p1", _entry("a", MediaStatus.PLAYED)))
    assert coordinator.state is PointerState.EMPTY
    assert coordinator.pointer is None


def test_ended_party_clears_pointer() -> None:
    coordinator, events = _coordinator()
    coordinator.sync_from_queue(_canonical("p1", _entry("a")))
    coordinator.sync_from_queue(_canonical("p1", _entry("a"), ended=True))
    assert coordinator.state is PointerState.EMPTY
    assert events[-1].pointer is None


def test_set_current_transfers_ownership() -> None:
    coordinator, _ = _coordinator()
    coordinator.sync_from_queue(_canonical("p1", _entry("a")))
    coordinator.set_current(_entry("x"), False, party_id="p2", index=3)
    assert coordinator.party_id == "p2"
    assert coordinator.state is PointerState.LOADED
    assert coordinator.pointer.index_in_display_queue == 3


def test_toggle() -> None:
    coordinator, _ = _coordinator()
    coordinator.toggle()
    assert coordinator.state is PointerState.EMPTY

    coordinator.set_current(_entry("a"), True, party_id="p1")
    coordinator.toggle()
    assert coordinator.state is PointerState.PAUSED
    coordinator.toggle()
    assert coordinator.state is PointerState.PLAYING


def test_listener_errors_do_not_propagate() -> None:
    coordinator = PlaybackCoordinator(_FakeApi())

    def _broken(event: PointerChangedEvent) -> None:
        raise RuntimeError("listener failed")

    seen: list[PointerChangedEvent] = []
    coordinator.add_listener(_broken)
    remove = coordinator.add_listener(seen.append)
    coordinator.set_current(_entry("a"), True, party_id="p1")
    remove()
    coordinator.pause()
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_skip_next_asks_server_then_reloads() -> None:
    api = _FakeApi()
    coordinator = PlaybackCoordinator(api)
    coordinator.set_current(_entry("a"), True, party_id="p1")
    order: list[str] = []

    async def _reload() -> None:
        order.append(f"reload after {api.calls[-1][0]}")

    await coordinator.skip_next(_reload)
    await coordinator.skip_previous(_reload, "p1")

    assert api.calls == [("next", "p1"), ("previous", "p1")]
    assert order == ["reload after next", "reload after previous"]


@pytest.mark.asyncio
async def test_skip_without_party_fails() -> None:
    coordinator = PlaybackCoordinator(_FakeApi())

    async def _reload() -> None:
        return None

    with pytest.raises(RuntimeError):
        await coordinator.skip_next(_reload)
