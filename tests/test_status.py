from __future__ import annotations

from datetime import UTC, datetime

import pytest

from aiojukebox.errors import RejectedTransition, UnknownEntry
from aiojukebox.models.core import MediaItem, QueueEntry
from aiojukebox.models.types import MediaStatus, StatusAction
from aiojukebox.status import is_legal, playing_entry, transition, transition_queue

AT = datetime(2026, 5, 1, 21, 30, tzinfo=UTC)


def _entry(media_id: str, status: MediaStatus = MediaStatus.QUEUED) -> QueueEntry:
    return QueueEntry(media=MediaItem(id=media_id, title=media_id.upper()), status=status)


def test_legal_edges() -> None:
    assert is_legal(MediaStatus.QUEUED, StatusAction.START)
    assert is_legal(MediaStatus.PLAYING, StatusAction.COMPLETE)
    assert is_legal(MediaStatus.QUEUED, StatusAction.VETO)
    assert is_legal(MediaStatus.VETOED, StatusAction.RESTORE)
    assert not is_legal(MediaStatus.PLAYED, StatusAction.START)
    assert not is_legal(MediaStatus.QUEUED, StatusAction.COMPLETE)
    assert not is_legal(MediaStatus.VETOED, StatusAction.START)


def test_start_stamps_played_at() -> None:
    started = transition(_entry("a"), StatusAction.START, at=AT)
    assert started.status is MediaStatus.PLAYING
    assert started.played_at == AT


def test_complete_keeps_start_time() -> None:
    started = transition(_entry("a"), StatusAction.START, at=AT)
    played = transition(started, StatusAction.COMPLETE, at=datetime(2026, 5, 1, 22, tzinfo=UTC))
    assert played.status is MediaStatus.PLAYED
    assert played.played_at == AT


def test_veto_and_restore() -> None:
    vetoed = transition(_entry("a"), StatusAction.VETO, at=AT, by="host-1")
    assert vetoed.status is MediaStatus.VETOED
    assert vetoed.vetoed_at == AT
    assert vetoed.vetoed_by == "host-1"

    restored = transition(vetoed, StatusAction.RESTORE)
    assert restored.status is MediaStatus.QUEUED
    assert restored.vetoed_at is None
    assert restored.vetoed_by is None


def test_veto_while_playing_is_rejected() -> None:
    playing = _entry("a", MediaStatus.PLAYING)
    with pytest.raises(RejectedTransition) as exc_info:
        transition(playing, StatusAction.VETO)
    assert exc_info.value.status is MediaStatus.PLAYING
    assert "complete it first" in str(exc_info.value)


def test_restart_played_is_rejected() -> None:
    with pytest.raises(RejectedTransition):
        transition(_entry("a", MediaStatus.PLAYED), StatusAction.START)


def test_start_demotes_other_playing_entry() -> None:
    entries = (_entry("a", MediaStatus.PLAYING), _entry("b"), _entry("c"))
    result = transition_queue(entries, "b", StatusAction.START, at=AT)
    assert [entry.status for entry in result] == [
        MediaStatus.QUEUED,
        MediaStatus.PLAYING,
        MediaStatus.QUEUED,
    ]
    assert [entry.media_id for entry in result] == ["a", "b", "c"]
    assert playing_entry(result) == result[1]


def test_transition_queue_unknown_entry() -> None:
    with pytest.raises(UnknownEntry) as exc_info:
        transition_queue((_entry("a"),), "missing", StatusAction.VETO)
    assert exc_info.value.media_id == "missing"
    assert isinstance(exc_info.value, KeyError)
