"""Models for the party queue and its wire protocols."""

from __future__ import annotations

__all__ = [
    "DEFAULT_MINIMUM_BID",
    "Bid",
    "BidOutcome",
    "EventKind",
    "MediaItem",
    "MediaStatus",
    "Party",
    "PartyStatus",
    "PartyType",
    "PlaybackPointer",
    "PointerState",
    "PushMessage",
    "PushMessageType",
    "QueueEntry",
    "SortWindow",
    "StatusAction",
    "ViewState",
    "aggregate_bid_value",
    "api",
    "core",
    "push",
    "types",
]

from . import api, core, push, types
from .core import (
    DEFAULT_MINIMUM_BID,
    Bid,
    MediaItem,
    Party,
    PlaybackPointer,
    QueueEntry,
    ViewState,
    aggregate_bid_value,
)
from .types import (
    BidOutcome,
    EventKind,
    MediaStatus,
    PartyStatus,
    PartyType,
    PointerState,
    PushMessage,
    PushMessageType,
    SortWindow,
    StatusAction,
)
