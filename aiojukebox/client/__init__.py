"""Public interface for the party client package."""

from .api import PartyApiClient
from .channel import ConnectionCallback, MessageCallback, PushChannel
from .session import PartySession, SessionEventCallback

__all__ = [
    "ConnectionCallback",
    "MessageCallback",
    "PartyApiClient",
    "PartySession",
    "PushChannel",
    "SessionEventCallback",
]
