"""REST client for the party operations consumed by aiojukebox."""

from __future__ import annotations

import logging
from types import TracebackType
from typing import Any
from urllib.parse import quote

import orjson
from aiohttp import ClientError, ClientResponse, ClientSession, ClientTimeout

from aiojukebox.config import ClientConfig
from aiojukebox.errors import InsufficientFunds, TransientNetworkError, ValidationError
from aiojukebox.models.api import (
    BidRequest,
    BidResponse,
    ErrorResponse,
    PartySnapshotResponse,
    RankedMediaResponse,
)
from aiojukebox.models.core import Party, QueueEntry
from aiojukebox.models.types import SortWindow

logger = logging.getLogger(__name__)


def _segment(value: str) -> str:
    return quote(value, safe="")


class PartyApiClient:
    """
    Async client for the party REST API.

    Every failure is mapped onto the aiojukebox error taxonomy: connection errors,
    timeouts, server errors and undecodable responses raise TransientNetworkError;
    an insufficient balance raises InsufficientFunds; any other rejection raises
    ValidationError.
    """

    _config: ClientConfig
    _session: ClientSession | None
    """aiohttp session, created on first use if none was given."""
    _owns_session: bool
    """Whether this client owns and should close the session."""

    def __init__(self, config: ClientConfig, *, session: ClientSession | None = None) -> None:
        """
        Create the client.

        Args:
            config: Client configuration.
            session: Optional aiohttp ClientSession. If None, a session is created
                and managed by this client.
        """
        self._config = config
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> PartyApiClient:
        """Enter the async context."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Close the client."""
        await self.close()

    async def close(self) -> None:
        """Close the session if this client owns it."""
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def get_party_snapshot(self, party_id: str) -> Party:
        """Fetch the full, authoritative state of a party."""
        data = await self._request("GET", f"/parties/{_segment(party_id)}/details")
        return self._decode(PartySnapshotResponse, data).party

    async def get_ranked_media(
        self, party_id: str, window: SortWindow
    ) -> tuple[QueueEntry, ...]:
        """Fetch the leaderboard of a party for a time window, in ranking order."""
        data = await self._request(
            "GET", f"/parties/{_segment(party_id)}/songs/sorted/{window.value}"
        )
        return tuple(self._decode(RankedMediaResponse, data).media)

    async def place_bid(self, party_id: str, media_id: str, amount: float) -> BidResponse:
        """Place a bid on an entry of a party."""
        data = await self._request(
            "POST",
            f"/parties/{_segment(party_id)}/media/{_segment(media_id)}/bid",
            BidRequest(amount=amount).to_dict(),
        )
        return self._decode(BidResponse, data)

    async def veto_media(self, party_id: str, media_id: str) -> None:
        """Veto an entry (host only)."""
        await self._request(
            "PUT", f"/parties/{_segment(party_id)}/songs/{_segment(media_id)}/veto"
        )

    async def unveto_media(self, party_id: str, media_id: str) -> None:
        """Restore a vetoed entry (host only)."""
        await self._request(
            "PUT", f"/parties/{_segment(party_id)}/songs/{_segment(media_id)}/unveto"
        )

    async def start_media(self, party_id: str, media_id: str) -> None:
        """Mark an entry as playing (host only)."""
        await self._request(
            "POST", f"/parties/{_segment(party_id)}/songs/{_segment(media_id)}/play"
        )

    async def complete_media(self, party_id: str, media_id: str) -> None:
        """Mark the playing entry as played (host only)."""
        await self._request(
            "POST", f"/parties/{_segment(party_id)}/songs/{_segment(media_id)}/complete"
        )

    async def skip_next(self, party_id: str) -> None:
        """Skip to the next entry (host only)."""
        await self._request("POST", f"/parties/{_segment(party_id)}/skip-next")

    async def skip_previous(self, party_id: str) -> None:
        """Go back to the previous entry (host only)."""
        await self._request("POST", f"/parties/{_segment(party_id)}/skip-previous")

    async def end_party(self, party_id: str) -> None:
        """End a party (host only)."""
        await self._request("POST", f"/parties/{_segment(party_id)}/end")

    def _get_session(self) -> ClientSession:
        if self._session is None:
            self._session = ClientSession(
                timeout=ClientTimeout(total=self._config.request_timeout)
            )
        return self._session

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._config.token:
            headers["Authorization"] = f"Bearer {self._config.token}"
        return headers

    async def _request(
        self, method: str, path: str, body: dict[str, Any] | None = None
    ) -> Any:
        url = f"{self._config.api_url}{path}"
        headers = self._headers()
        data: bytes | None = None
        if body is not None:
            headers["Content-Type"] = "application/json"
            data = orjson.dumps(body)
        logger.debug("%s %s", method, url)
        try:
            async with self._get_session().request(
                method, url, data=data, headers=headers
            ) as response:
                raw = await response.read()
                if response.status >= 400:
                    raise self._error_for(response, raw)
        except TimeoutError as err:
            raise TransientNetworkError(f"{method} {path} timed out") from err
        except ClientError as err:
            raise TransientNetworkError(f"{method} {path} failed: {err}") from err

        if not raw:
            return None
        try:
            return orjson.loads(raw)
        except orjson.JSONDecodeError as err:
            raise TransientNetworkError(f"{method} {path} returned invalid JSON") from err

    @staticmethod
    def _error_for(
        response: ClientResponse, raw: bytes
    ) -> TransientNetworkError | InsufficientFunds | ValidationError:
        status = response.status
        if status >= 500:
            return TransientNetworkError(
                f"Server error {status} for {response.method} {response.url.path}",
                status=status,
            )
        error = ErrorResponse()
        try:
            payload = orjson.loads(raw) if raw else {}
            if isinstance(payload, dict):
                error = ErrorResponse.from_dict(payload)
        except (orjson.JSONDecodeError, ValueError, TypeError):
            logger.debug("Undecodable error body for status %s", status)
        if error.is_insufficient_funds:
            assert error.required is not None
            assert error.available is not None
            return InsufficientFunds(
                current_balance=error.available, required_amount=error.required
            )
        return ValidationError(error.detail, status=status)

    @staticmethod
    def _decode(model: Any, data: Any) -> Any:
        if not isinstance(data, dict):
            raise TransientNetworkError(f"Unexpected response for {model.__name__}")
        try:
            return model.from_dict(data)
        except Exception as err:
            raise TransientNetworkError(
                f"Could not decode {model.__name__}: {err}"
            ) from err
