"""Request and response payloads of the party REST API."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Any

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin
from mashumaro.types import Alias

from .core import Bid, Party, QueueEntry


# GET /parties/{partyId}/details
@dataclass
class PartySnapshotResponse(DataClassORJSONMixin):
    """Full, authoritative party read."""

    party: Party


# GET /parties/{partyId}/songs/sorted/{window}
@dataclass
class RankedMediaResponse(DataClassORJSONMixin):
    """Time-windowed leaderboard of a party queue, in ranking order."""

    media: list[QueueEntry]


# POST /parties/{partyId}/media/{mediaId}/bid
@dataclass
class BidRequest(DataClassORJSONMixin):
    """Bid submission body."""

    amount: Annotated[float, Alias("bidAmount")]

    class Config(BaseConfig):
        """Config for parsing json messages."""

        serialize_by_alias = True


@dataclass
class BidResponse(DataClassORJSONMixin):
    """Successful bid submission."""

    updated_balance: Annotated[float, Alias("updatedBalance")]
    bid: Bid | None = None

    class Config(BaseConfig):
        """Config for parsing json messages."""

        serialize_by_alias = True
        omit_none = True


@dataclass
class ErrorResponse(DataClassORJSONMixin):
    """Error body returned by the API."""

    error: str | None = None
    message: str | None = None
    required: float | None = None
    """For insufficient balance, the amount that was required."""
    available: float | None = None
    """For insufficient balance, the user's current balance."""

    @classmethod
    def __pre_deserialize__(cls, d: dict[str, Any]) -> dict[str, Any]:
        """Keep only the known fields."""
        return {key: d[key] for key in ("error", "message", "required", "available") if key in d}

    @property
    def is_insufficient_funds(self) -> bool:
        """Return True if this error reports an insufficient balance."""
        return self.required is not None and self.available is not None

    @property
    def detail(self) -> str:
        """Return a human readable description."""
        return self.error or self.message or "Request rejected"

    class Config(BaseConfig):
        """Config for parsing json messages."""

        omit_none = True
