"""
Bid submission and confirmation.

Bids are never applied optimistically: the ranking of a party queue depends on
aggregates the server computes across parties, so a local guess would reorder the
queue only to be corrected a moment later. A confirmed bid instead triggers a
snapshot refresh, and the ledger surfaces the balance reported by the server.
"""

from __future__ import annotations

import itertools
import logging
import math
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from aiojukebox.errors import BidBelowMinimum, InsufficientFunds, JukeboxError, ValidationError
from aiojukebox.models.core import DEFAULT_MINIMUM_BID
from aiojukebox.models.types import BidOutcome

from .util import pence

if TYPE_CHECKING:
    from .client.api import PartyApiClient

logger = logging.getLogger(__name__)

# Callback awaited after a confirmed bid to re-read the party queue.
RefreshCallback = Callable[[], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class BidConfirmation:
    """A bid accepted by the server."""

    media_id: str
    amount: float
    updated_balance: float
    """The user's balance after the bid, as reported by the server."""


@dataclass(frozen=True, slots=True)
class BidReceipt:
    """Record of a finished bid submission."""

    submission_id: int
    media_id: str
    amount: float
    outcome: BidOutcome
    at: datetime
    updated_balance: float | None = None
    error: JukeboxError | None = None


class BidLedger:
    """Submits bids for one party and keeps a history of their outcome."""

    _balance: float | None
    """Last known balance of the user, None if unknown."""
    _minimum_bid: float
    _pending: dict[int, tuple[str, float]]
    """In-flight submissions: submission id -> (media id, amount)."""
    _receipts: list[BidReceipt]

    def __init__(
        self,
        api: PartyApiClient,
        party_id: str,
        refresh: RefreshCallback,
        *,
        minimum_bid: float = DEFAULT_MINIMUM_BID,
        balance: float | None = None,
    ) -> None:
        """
        Create a ledger for one party.

        Args:
            api: REST client used to submit bids.
            party_id: The party bids are placed in.
            refresh: Awaited after each confirmed bid to refresh the party snapshot.
            minimum_bid: The party's minimum bid.
            balance: The user's balance if known, used for a fast local check. The
                server re-checks it in any case.
        """
        self._api = api
        self._party_id = party_id
        self._refresh = refresh
        self._minimum_bid = minimum_bid
        self._balance = balance
        self._pending = {}
        self._receipts = []
        self._ids = itertools.count(1)
        self._logger = logger.getChild(party_id)

    @property
    def balance(self) -> float | None:
        """Return the last known balance of the user."""
        return self._balance

    @property
    def minimum_bid(self) -> float:
        """Return the party's minimum bid."""
        return self._minimum_bid

    @property
    def pending(self) -> Mapping[int, tuple[str, float]]:
        """Return the in-flight submissions."""
        return dict(self._pending)

    @property
    def receipts(self) -> tuple[BidReceipt, ...]:
        """Return the outcome of every finished submission, oldest first."""
        return tuple(self._receipts)

    def set_balance(self, balance: float | None) -> None:
        """Update the known balance, e.g. after a top-up."""
        self._balance = balance

    def set_minimum_bid(self, minimum_bid: float) -> None:
        """Update the party's minimum bid."""
        if minimum_bid <= 0:
            raise ValueError("minimum_bid must be positive")
        self._minimum_bid = minimum_bid

    def validate(self, amount: float) -> None:
        """
        Check a bid amount locally.

        Raises:
            ValidationError: If the amount is not a positive number.
            BidBelowMinimum: If the amount is below the party minimum.
            InsufficientFunds: If the known balance does not cover the amount.
        """
        if not math.isfinite(amount) or amount <= 0:
            raise ValidationError("Bid amount must be a positive number")
        if pence(amount) < pence(self._minimum_bid):
            raise BidBelowMinimum(amount, self._minimum_bid)
        if self._balance is not None and pence(self._balance) < pence(amount):
            raise InsufficientFunds(current_balance=self._balance, required_amount=amount)

    async def place_bid(self, media_id: str, amount: float) -> BidConfirmation:
        """
        Place a bid on an entry.

        Local checks fail fast without any network call. A confirmed bid updates the
        balance from the server's response and awaits a snapshot refresh before
        returning; the entry's aggregate is never modified locally.

        Raises:
            ValidationError: If the amount is invalid, locally or for the server.
            InsufficientFunds: If the balance does not cover the bid.
            TransientNetworkError: If the submission failed and may be retried.
        """
        self.validate(amount)

        submission_id = next(self._ids)
        self._pending[submission_id] = (media_id, amount)
        self._logger.debug("Placing bid of £%.2f on %s", amount, media_id)
        try:
            response = await self._api.place_bid(self._party_id, media_id, amount)
        except JukeboxError as err:
            self._record(submission_id, media_id, amount, BidOutcome.REJECTED, error=err)
            if isinstance(err, InsufficientFunds):
                self._balance = err.current_balance
            self._logger.info("Bid of £%.2f on %s rejected: %s", amount, media_id, err)
            raise
        finally:
            self._pending.pop(submission_id, None)

        self._balance = response.updated_balance
        self._record(
            submission_id,
            media_id,
            amount,
            BidOutcome.CONFIRMED,
            updated_balance=response.updated_balance,
        )
        self._logger.info(
            "Bid of £%.2f on %s confirmed, balance £%.2f",
            amount,
            media_id,
            response.updated_balance,
        )

        try:
            await self._refresh()
        except JukeboxError as err:
            # The bid stands, the next successful refresh will show it
            self._logger.warning("Refresh after bid on %s failed: %s", media_id, err)

        return BidConfirmation(
            media_id=media_id, amount=amount, updated_balance=response.updated_balance
        )

    def _record(
        self,
        submission_id: int,
        media_id: str,
        amount: float,
        outcome: BidOutcome,
        *,
        updated_balance: float | None = None,
        error: JukeboxError | None = None,
    ) -> None:
        self._receipts.append(
            BidReceipt(
                submission_id=submission_id,
                media_id=media_id,
                amount=amount,
                outcome=outcome,
                at=datetime.now(UTC),
                updated_balance=updated_balance,
                error=error,
            )
        )
