"""Client configuration."""

from __future__ import annotations

from dataclasses import dataclass

from aiojukebox.models.core import DEFAULT_MINIMUM_BID
from aiojukebox.reconcile import DEFAULT_MAX_PENDING_EVENTS


@dataclass(slots=True)
class ClientConfig:
    """Connection and behaviour settings of a party client."""

    api_url: str
    """Base URL of the REST API, e.g. ``https://example.com/api``."""
    ws_url: str
    """URL of the push channel WebSocket."""
    token: str | None = None
    """Bearer token sent with REST requests, if any."""
    request_timeout: float = 30.0
    """Total timeout of a REST request in seconds."""
    heartbeat: float = 30.0
    """WebSocket heartbeat interval in seconds."""
    reconnect_delay: float = 3.0
    """Initial delay before reconnecting the push channel, doubled on each failure."""
    max_reconnect_delay: float = 60.0
    """Upper bound of the reconnect delay."""
    max_pending_events: int = DEFAULT_MAX_PENDING_EVENTS
    """Upper bound of push events buffered for entries not yet known."""
    default_minimum_bid: float = DEFAULT_MINIMUM_BID
    """Minimum bid used until a party snapshot provides its own."""

    def __post_init__(self) -> None:
        """Validate the provided settings."""
        if not self.api_url:
            raise ValueError("api_url must be set")
        if not self.ws_url:
            raise ValueError("ws_url must be set")
        self.api_url = self.api_url.rstrip("/")
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")
        if self.reconnect_delay <= 0:
            raise ValueError("reconnect_delay must be positive")
        if self.max_reconnect_delay < self.reconnect_delay:
            raise ValueError("max_reconnect_delay must not be below reconnect_delay")
        if self.max_pending_events < 1:
            raise ValueError("max_pending_events must be positive")
        if self.default_minimum_bid <= 0:
            raise ValueError("default_minimum_bid must be positive")
