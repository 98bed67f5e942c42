"""PushChannel - persistent WebSocket delivering the push events of one party."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import suppress

from aiohttp import ClientError, ClientSession, ClientWebSocketResponse, WSMessage, WSMsgType

from aiojukebox.config import ClientConfig
from aiojukebox.errors import MalformedEvent, TransientNetworkError
from aiojukebox.models.push import JoinMessage, decode_push_message
from aiojukebox.models.types import PushMessage

logger = logging.getLogger(__name__)

# Callback invoked with every decoded push message of the party.
MessageCallback = Callable[[PushMessage], None]

# Callback invoked with True when the channel (re)connects and False when it drops.
ConnectionCallback = Callable[[bool], None]


class PushChannel:
    """
    Push channel of one party.

    Connects to the push WebSocket, subscribes to the party with a JOIN message and
    delivers every decoded message of that party to the registered listeners, in
    the order received. Malformed frames are logged and dropped without affecting
    later ones. After a successful first connection, dropped connections are
    re-established with exponential backoff until disconnect() is called.
    """

    _config: ClientConfig
    _party_id: str
    _user_id: str | None
    _session: ClientSession | None
    """Optional aiohttp ClientSession for the WebSocket connection."""
    _owns_session: bool
    """Whether this channel owns and should close the session."""
    _ws: ClientWebSocketResponse | None = None
    _task: asyncio.Task[None] | None = None
    """Background task holding the connection."""
    _retry_event: asyncio.Event
    """Set to skip the remaining backoff and reconnect immediately."""
    _closing: bool = False
    _message_callbacks: list[MessageCallback]
    _connection_callbacks: list[ConnectionCallback]

    def __init__(
        self,
        config: ClientConfig,
        party_id: str,
        *,
        user_id: str | None = None,
        session: ClientSession | None = None,
    ) -> None:
        """
        Create the channel.

        Args:
            config: Client configuration (ws_url, heartbeat and reconnect delays).
            party_id: The party to subscribe to.
            user_id: Optional id of the current user, sent with JOIN.
            session: Optional aiohttp ClientSession. If None, a session is created
                and managed by this channel.
        """
        self._config = config
        self._party_id = party_id
        self._user_id = user_id
        self._session = session
        self._owns_session = session is None
        self._retry_event = asyncio.Event()
        self._message_callbacks = []
        self._connection_callbacks = []
        self._logger = logger.getChild(party_id)

    @property
    def party_id(self) -> str:
        """Return the party this channel is subscribed to."""
        return self._party_id

    @property
    def connected(self) -> bool:
        """Return True if the channel currently has an open connection."""
        return self._ws is not None and not self._ws.closed

    def add_message_listener(self, callback: MessageCallback) -> Callable[[], None]:
        """Add a listener for push messages.

        Returns:
            A function that removes this listener when called.
        """
        self._message_callbacks.append(callback)

        def _remove() -> None:
            with suppress(ValueError):
                self._message_callbacks.remove(callback)

        return _remove

    def add_connection_listener(self, callback: ConnectionCallback) -> Callable[[], None]:
        """Add a listener for connection state changes.

        Returns:
            A function that removes this listener when called.
        """
        self._connection_callbacks.append(callback)

        def _remove() -> None:
            with suppress(ValueError):
                self._connection_callbacks.remove(callback)

        return _remove

    async def connect(self) -> None:
        """
        Connect and subscribe to the party.

        Returns once the first connection is established. If a connection task is
        already running (possibly sleeping in backoff), an immediate retry is
        requested instead.

        Raises:
            TransientNetworkError: If the first connection attempt fails.
        """
        if self._task is not None and not self._task.done():
            self._logger.debug("Push channel already running, requesting immediate retry")
            self._retry_event.set()
            return

        self._closing = False
        if self._session is None:
            self._session = ClientSession()

        connected: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._task = asyncio.create_task(self._run(connected))
        await connected

    async def disconnect(self) -> None:
        """Disconnect and stop reconnecting."""
        self._closing = True
        if self._task is not None:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def _run(self, connected: asyncio.Future[None]) -> None:
        """Hold the connection, reconnecting with exponential backoff."""
        assert self._session is not None
        backoff = self._config.reconnect_delay
        try:
            while not self._closing:
                try:
                    async with self._session.ws_connect(
                        self._config.ws_url, heartbeat=self._config.heartbeat
                    ) as ws:
                        self._ws = ws
                        await ws.send_str(
                            JoinMessage(party_id=self._party_id, user_id=self._user_id).to_json()
                        )
                        self._logger.info("Push channel connected to %s", self._config.ws_url)
                        if not connected.done():
                            connected.set_result(None)
                        backoff = self._config.reconnect_delay
                        self._notify_connection(True)
                        async for msg in ws:
                            if not self._handle_ws_message(msg):
                                break
                except (TimeoutError, ClientError) as err:
                    if not connected.done():
                        connected.set_exception(
                            TransientNetworkError(f"Push channel connection failed: {err}")
                        )
                        return
                    self._logger.debug("Push channel connection failed: %s", err)
                else:
                    self._logger.info("Push channel disconnected")
                finally:
                    if self._ws is not None:
                        self._ws = None
                        self._notify_connection(False)

                if self._closing:
                    break
                self._logger.debug("Reconnecting push channel in %.1fs", backoff)
                try:
                    await asyncio.wait_for(self._retry_event.wait(), timeout=backoff)
                    self._logger.debug("Immediate reconnect requested")
                except TimeoutError:
                    pass  # Normal timeout, continue with exponential backoff
                self._retry_event.clear()
                backoff = min(backoff * 2, self._config.max_reconnect_delay)
        except asyncio.CancelledError:
            if not connected.done():
                connected.cancel()
            raise
        except Exception as err:
            if not connected.done():
                connected.set_exception(err)
            self._logger.exception("Unexpected error in push channel")

    def _handle_ws_message(self, msg: WSMessage) -> bool:
        """Handle one frame, returns False when the connection is closing."""
        if msg.type is WSMsgType.TEXT:
            self._handle_text(msg.data)
        elif msg.type is WSMsgType.BINARY:
            self._logger.debug("Ignoring binary push frame")
        elif msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED):
            return False
        elif msg.type is WSMsgType.ERROR:
            self._logger.error(
                "Push channel error: %s", self._ws.exception() if self._ws else "unknown"
            )
            return False
        return True

    def _handle_text(self, data: str) -> None:
        try:
            message = decode_push_message(data)
        except MalformedEvent as err:
            self._logger.warning("Dropping malformed push message: %s", err)
            return
        if message is None:
            return
        party_id = getattr(message, "party_id", None)
        if party_id != self._party_id:
            self._logger.debug("Ignoring push message for party %s", party_id)
            return
        for callback in list(self._message_callbacks):
            try:
                callback(message)
            except Exception:
                self._logger.exception("Error in push message callback %s", callback)

    def _notify_connection(self, connected: bool) -> None:  # noqa: FBT001
        for callback in list(self._connection_callbacks):
            try:
                callback(connected)
            except Exception:
                self._logger.exception("Error in connection callback %s", callback)
