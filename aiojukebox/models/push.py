"""
Push channel messages.

Every message is scoped to one party and tagged by ``type``. Apart from ``JOIN`` (sent
by the client to subscribe to a party) they are server -> client notifications of a
single state change. ``UPDATE_QUEUE`` carries the queue without per-entry status, so it
is only ever used as a trigger for a snapshot refresh.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Annotated, Any, Literal

import orjson
from mashumaro.types import Alias

from aiojukebox.errors import MalformedEvent

from .core import ref_id
from .types import PushMessage, PushMessageType

logger = logging.getLogger(__name__)

KNOWN_MESSAGE_TYPES = frozenset(message_type.value for message_type in PushMessageType)


def _resolve_refs(d: dict[str, Any]) -> dict[str, Any]:
    d = dict(d)
    for key in ("mediaId", "vetoedBy"):
        if d.get(key) is not None:
            d[key] = ref_id(d[key])
    return d


# Client -> Server: JOIN
@dataclass
class JoinMessage(PushMessage):
    """Subscribe this connection to the events of a party."""

    party_id: Annotated[str, Alias("partyId")]
    user_id: Annotated[str | None, Alias("userId")] = None
    type: Literal["JOIN"] = "JOIN"


# Server -> Client: UPDATE_QUEUE
@dataclass
class UpdateQueueMessage(PushMessage):
    """The party queue changed. Carries no per-entry status."""

    party_id: Annotated[str, Alias("partyId")]
    queue: list[Any] | None = None
    type: Literal["UPDATE_QUEUE"] = "UPDATE_QUEUE"


# Server -> Client: MEDIA_STARTED
@dataclass
class MediaStartedMessage(PushMessage):
    """An entry started playing."""

    party_id: Annotated[str, Alias("partyId")]
    media_id: Annotated[str, Alias("mediaId")]
    played_at: Annotated[datetime | None, Alias("playedAt")] = None
    type: Literal["MEDIA_STARTED"] = "MEDIA_STARTED"

    @classmethod
    def __pre_deserialize__(cls, d: dict[str, Any]) -> dict[str, Any]:
        """Resolve populated references to their ids."""
        return _resolve_refs(d)


# Server -> Client: MEDIA_COMPLETED
@dataclass
class MediaCompletedMessage(PushMessage):
    """An entry finished playing."""

    party_id: Annotated[str, Alias("partyId")]
    media_id: Annotated[str, Alias("mediaId")]
    completed_at: Annotated[datetime | None, Alias("completedAt")] = None
    type: Literal["MEDIA_COMPLETED"] = "MEDIA_COMPLETED"

    @classmethod
    def __pre_deserialize__(cls, d: dict[str, Any]) -> dict[str, Any]:
        """Resolve populated references to their ids."""
        return _resolve_refs(d)


# Server -> Client: MEDIA_VETOED
@dataclass
class MediaVetoedMessage(PushMessage):
    """The host vetoed an entry."""

    party_id: Annotated[str, Alias("partyId")]
    media_id: Annotated[str, Alias("mediaId")]
    vetoed_at: Annotated[datetime | None, Alias("vetoedAt")] = None
    vetoed_by: Annotated[str | None, Alias("vetoedBy")] = None
    type: Literal["MEDIA_VETOED"] = "MEDIA_VETOED"

    @classmethod
    def __pre_deserialize__(cls, d: dict[str, Any]) -> dict[str, Any]:
        """Resolve populated references to their ids."""
        return _resolve_refs(d)


# Server -> Client: PARTY_ENDED
@dataclass
class PartyEndedMessage(PushMessage):
    """The party ended. Nothing else will be delivered for it."""

    party_id: Annotated[str, Alias("partyId")]
    ended_at: Annotated[datetime | None, Alias("endedAt")] = None
    type: Literal["PARTY_ENDED"] = "PARTY_ENDED"


def decode_push_message(data: str | bytes) -> PushMessage | None:
    """
    Decode a push channel frame.

    Returns:
        The decoded message, or None if the frame has a type this client does not
        handle (legacy playback commands such as PLAY or PAUSE).

    Raises:
        MalformedEvent: If the frame is not a JSON object, has no type, or does not
            match the schema of its type.
    """
    try:
        payload = orjson.loads(data)
    except orjson.JSONDecodeError as err:
        raise MalformedEvent("Push frame is not valid JSON", raw=data) from err
    if not isinstance(payload, dict) or not isinstance(payload.get("type"), str):
        raise MalformedEvent("Push frame has no message type", raw=data)
    if payload["type"] not in KNOWN_MESSAGE_TYPES:
        logger.debug("Ignoring push message of unhandled type %s", payload["type"])
        return None
    try:
        return PushMessage.from_dict(payload)
    except Exception as err:
        raise MalformedEvent(f"Invalid {payload['type']} message: {err}", raw=data) from err
