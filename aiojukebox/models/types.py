"""Models for enum types used by aiojukebox."""

from dataclasses import dataclass
from enum import Enum

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin
from mashumaro.types import Discriminator


# Base message class
@dataclass
class PushMessage(DataClassORJSONMixin):
    """Base class for messages exchanged over the party push channel."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        discriminator = Discriminator(field="type", include_subtypes=True)
        serialize_by_alias = True
        omit_none = True


# Enums


class MediaStatus(Enum):
    """Lifecycle status of a queue entry within a party."""

    QUEUED = "queued"
    """Waiting in the queue, ranked by its bid aggregate."""
    PLAYING = "playing"
    """Currently playing. At most one entry per party."""
    PLAYED = "played"
    """Finished playing."""
    VETOED = "vetoed"
    """Removed from the active queue by the host, bid history kept."""


class StatusAction(Enum):
    """Action requested against a queue entry's status."""

    START = "start"
    COMPLETE = "complete"
    VETO = "veto"
    RESTORE = "restore"


class EventKind(Enum):
    """Kind of a partial, single-entry delta applied by the reconciliation engine."""

    QUEUE_UPDATED = "queue-updated"
    """The queue changed in some way; only a trigger for a snapshot refresh."""
    STARTED = "started"
    COMPLETED = "completed"
    VETOED = "vetoed"
    PARTY_ENDED = "party-ended"
    """Terminal, nothing is applied to the party afterwards."""


class PushMessageType(Enum):
    """Type tag of push channel messages."""

    JOIN = "JOIN"
    UPDATE_QUEUE = "UPDATE_QUEUE"
    MEDIA_STARTED = "MEDIA_STARTED"
    MEDIA_COMPLETED = "MEDIA_COMPLETED"
    MEDIA_VETOED = "MEDIA_VETOED"
    PARTY_ENDED = "PARTY_ENDED"


class SortWindow(Enum):
    """Time window used for ranking the party queue."""

    ALL_TIME = "all-time"
    TODAY = "today"
    THIS_WEEK = "this-week"
    THIS_MONTH = "this-month"
    THIS_YEAR = "this-year"


class PartyType(Enum):
    """Type of a party."""

    REMOTE = "remote"
    LIVE = "live"
    GLOBAL = "global"
    TAG = "tag"
    LOCATION = "location"


class PartyStatus(Enum):
    """Scheduling status of a party."""

    SCHEDULED = "scheduled"
    ACTIVE = "active"
    ENDED = "ended"
    CANCELED = "canceled"


class PointerState(Enum):
    """State of the global playback pointer."""

    EMPTY = "empty"
    """Nothing to play."""
    LOADED = "loaded"
    """An entry is selected but not playing."""
    PLAYING = "playing"
    PAUSED = "paused"


class BidOutcome(Enum):
    """Outcome of a bid submission."""

    CONFIRMED = "confirmed"
    REJECTED = "rejected"
