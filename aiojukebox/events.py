"""Events delivered to listeners of a party session and of the playback coordinator."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from aiojukebox.errors import JukeboxError
from aiojukebox.models.core import PlaybackPointer, QueueEntry
from aiojukebox.models.types import PointerState


class SessionEvent:
    """Base event type used by PartySession.add_event_listener()."""


@dataclass
class QueueChangedEvent(SessionEvent):
    """The displayed queue may have changed."""

    display_queue: tuple[QueueEntry, ...]
    """The projected queue of the main view."""


@dataclass
class BalanceChangedEvent(SessionEvent):
    """The server reported a new balance for the current user."""

    balance: float


@dataclass
class PartyEndedEvent(SessionEvent):
    """The party ended, the view should navigate away."""

    party_id: str


class NotificationLevel(Enum):
    """Severity of a notification."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class NotificationEvent(SessionEvent):
    """A non-blocking, user-facing notification."""

    level: NotificationLevel
    message: str
    error: JukeboxError | None = None


@dataclass
class PointerChangedEvent:
    """The global playback pointer or its state changed."""

    state: PointerState
    pointer: PlaybackPointer | None
    entry: QueueEntry | None = None
    """The entry the pointer refers to, as of the change."""
