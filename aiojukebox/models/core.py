"""
Core data model of a party queue.

This module contains the records shared by every component: the read-only catalog
record of a media item, the append-only bids placed on it, the party-scoped queue
entry carrying its status and bid aggregate, and the party aggregate itself. It also
holds the transient, client-only values (view state and playback pointer) that are
never sent over the wire.

Wire payloads use the platform's camelCase names and some legacy shapes (populated
references, artist objects, source lists); they are normalized in
``__pre_deserialize__`` so the rest of the package only sees one shape.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Annotated, Any

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin
from mashumaro.types import Alias

from .types import MediaStatus, PartyStatus, PartyType, SortWindow

DEFAULT_MINIMUM_BID = 0.01


def aggregate_bid_value(amounts: Iterable[float]) -> float:
    """Return the aggregate value of a sequence of bid amounts."""
    return math.fsum(amounts)


def ref_id(value: Any) -> Any:
    """Return the id of a reference that is either a bare id or a populated document."""
    if isinstance(value, dict):
        for key in ("id", "uuid", "_id"):
            if value.get(key):
                return value[key]
    return value


def _with_id(d: dict[str, Any]) -> dict[str, Any]:
    if not d.get("id"):
        for key in ("uuid", "_id"):
            if d.get(key):
                d["id"] = d[key]
                break
    return d


@dataclass(frozen=True)
class MediaItem(DataClassORJSONMixin):
    """Immutable catalog record of a media item."""

    id: str
    title: str
    artists: Annotated[tuple[str, ...], Alias("artist")] = ()
    """Artist names, the first one is the primary artist."""
    duration: float | None = None
    """Duration in seconds."""
    cover_art: Annotated[str | None, Alias("coverArt")] = None
    sources: dict[str, str] = field(default_factory=dict)
    """Playback URL per platform (youtube, spotify, upload, ...)."""
    tags: tuple[str, ...] = ()
    category: str | None = None

    @classmethod
    def __pre_deserialize__(cls, d: dict[str, Any]) -> dict[str, Any]:
        """Accept the legacy id, artist and source shapes."""
        d = _with_id(dict(d))
        artist = d.get("artist", d.pop("artists", None))
        if artist is None or artist == "":
            d["artist"] = []
        elif isinstance(artist, str):
            d["artist"] = [artist]
        elif isinstance(artist, list):
            names = (a.get("name") if isinstance(a, dict) else a for a in artist)
            d["artist"] = [str(name) for name in names if name]
        sources = d.get("sources")
        if isinstance(sources, list):
            d["sources"] = {
                source["platform"]: source["url"]
                for source in sources
                if isinstance(source, dict) and source.get("platform") and source.get("url")
            }
        elif isinstance(sources, dict):
            d["sources"] = {key: url for key, url in sources.items() if isinstance(url, str)}
        elif sources is None:
            d.pop("sources", None)
        if d.get("tags") is None:
            d.pop("tags", None)
        return d

    @property
    def artist(self) -> str | None:
        """Return the primary artist."""
        return self.artists[0] if self.artists else None

    class Config(BaseConfig):
        """Config for parsing json messages."""

        serialize_by_alias = True
        omit_none = True


@dataclass(frozen=True)
class Bid(DataClassORJSONMixin):
    """A single bid placed on a party entry. Bids are never mutated or deleted."""

    id: str
    media_id: Annotated[str, Alias("mediaId")]
    """The entry this bid was placed on."""
    user_id: Annotated[str, Alias("userId")]
    amount: float
    created_at: Annotated[datetime, Alias("createdAt")]

    @classmethod
    def __pre_deserialize__(cls, d: dict[str, Any]) -> dict[str, Any]:
        """Resolve populated references to their ids."""
        d = _with_id(dict(d))
        for key in ("mediaId", "userId"):
            if key in d:
                d[key] = ref_id(d[key])
        return d

    class Config(BaseConfig):
        """Config for parsing json messages."""

        serialize_by_alias = True


@dataclass(frozen=True)
class QueueEntry(DataClassORJSONMixin):
    """Party-scoped record of one media item's queue status and bid aggregate."""

    media: MediaItem
    status: MediaStatus = MediaStatus.QUEUED
    aggregate_bid_value: Annotated[float, Alias("partyMediaAggregate")] = 0.0
    """Cumulative total of all bids on this entry within the party."""
    bid_count: Annotated[int, Alias("bidCount")] = 0
    bids: tuple[Bid, ...] = ()
    played_at: Annotated[datetime | None, Alias("playedAt")] = None
    vetoed_at: Annotated[datetime | None, Alias("vetoedAt")] = None
    vetoed_by: Annotated[str | None, Alias("vetoedBy")] = None

    @classmethod
    def __pre_deserialize__(cls, d: dict[str, Any]) -> dict[str, Any]:
        """Accept a populated ``mediaId`` and derive missing bid figures from the bids."""
        d = dict(d)
        if "media" not in d and isinstance(d.get("mediaId"), dict):
            d["media"] = d.pop("mediaId")
        bids = d.get("bids")
        if bids is None:
            bids = []
            d.pop("bids", None)
        else:
            media_id = ref_id(d.get("media"))
            bids = [
                {"mediaId": media_id, **bid} if isinstance(bid, dict) else bid for bid in bids
            ]
            d["bids"] = bids
        if d.get("partyMediaAggregate") is None:
            d["partyMediaAggregate"] = aggregate_bid_value(
                float(bid.get("amount", 0)) for bid in bids if isinstance(bid, dict)
            )
        if d.get("bidCount") is None:
            d["bidCount"] = len(bids)
        if d.get("vetoedBy") is not None:
            d["vetoedBy"] = ref_id(d["vetoedBy"])
        return d

    @property
    def media_id(self) -> str:
        """Return the id of the media item this entry refers to."""
        return self.media.id

    class Config(BaseConfig):
        """Config for parsing json messages."""

        serialize_by_alias = True
        omit_none = True


@dataclass(frozen=True)
class Party(DataClassORJSONMixin):
    """Root aggregate: a session with a shared media queue."""

    id: str
    host_ref: Annotated[str, Alias("host")]
    queue: Annotated[tuple[QueueEntry, ...], Alias("media")] = ()
    """Entries in server ranking order."""
    type: PartyType = PartyType.REMOTE
    minimum_bid: Annotated[float, Alias("minimumBid")] = DEFAULT_MINIMUM_BID
    name: str | None = None
    status: PartyStatus | None = None

    @classmethod
    def __pre_deserialize__(cls, d: dict[str, Any]) -> dict[str, Any]:
        """Resolve a populated host and drop null optionals."""
        d = _with_id(dict(d))
        d["host"] = ref_id(d.get("host"))
        if d.get("media") is None:
            d["media"] = d.pop("songs", None) or []
        if d.get("minimumBid") is None:
            d.pop("minimumBid", None)
        return d

    @property
    def is_ended(self) -> bool:
        """Return True if the party has ended."""
        return self.status is PartyStatus.ENDED

    class Config(BaseConfig):
        """Config for parsing json messages."""

        serialize_by_alias = True
        omit_none = True


@dataclass(frozen=True, slots=True)
class ViewState:
    """Transient, per-client view of a party queue. Never shared or persisted."""

    sort_window: SortWindow = SortWindow.ALL_TIME
    search_terms: tuple[str, ...] = ()

    def with_term(self, term: str) -> ViewState:
        """Return a view state with the trimmed term added, ignoring blanks and duplicates."""
        term = term.strip()
        if not term or term in self.search_terms:
            return self
        return replace(self, search_terms=(*self.search_terms, term))

    def without_term(self, term: str) -> ViewState:
        """Return a view state without the given term."""
        return replace(self, search_terms=tuple(t for t in self.search_terms if t != term))

    def with_sort_window(self, sort_window: SortWindow) -> ViewState:
        """Return a view state using another sort window."""
        return replace(self, sort_window=sort_window)


@dataclass(frozen=True, slots=True)
class PlaybackPointer:
    """The single global "now playing" pointer."""

    party_id: str
    media_id: str
    index_in_display_queue: int
    is_autoplay: bool
