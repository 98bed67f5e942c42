from __future__ import annotations

import pytest

from aiojukebox.bids import BidLedger
from aiojukebox.errors import (
    BidBelowMinimum,
    InsufficientFunds,
    TransientNetworkError,
    ValidationError,
)
from aiojukebox.models.api import BidResponse
from aiojukebox.models.types import BidOutcome

PARTY = "party-1"


class _FakeApi:
    def __init__(self, *, balance: float = 9.5, error: Exception | None = None) -> None:
        self.calls: list[tuple[str, str, float]] = []
        self.balance = balance
        self.error = error

    async def place_bid(self, party_id: str, media_id: str, amount: float) -> BidResponse:
        self.calls.append((party_id, media_id, amount))
        if self.error is not None:
            raise self.error
        return BidResponse(updated_balance=self.balance)


class _Refresh:
    def __init__(self, error: Exception | None = None) -> None:
        self.count = 0
        self.error = error

    async def __call__(self) -> None:
        self.count += 1
        if self.error is not None:
            raise self.error


@pytest.mark.asyncio
async def test_confirmed_bid_refreshes_and_updates_balance() -> None:
    api = _FakeApi(balance=9.5)
    refresh = _Refresh()
    ledger = BidLedger(api, PARTY, refresh, minimum_bid=0.33, balance=10.0)

    confirmation = await ledger.place_bid("a", 0.5)

    assert confirmation.updated_balance == 9.5
    assert ledger.balance == 9.5
    assert api.calls == [(PARTY, "a", 0.5)]
    assert refresh.count == 1
    assert ledger.pending == {}
    (receipt,) = ledger.receipts
    assert receipt.outcome is BidOutcome.CONFIRMED
    assert receipt.updated_balance == 9.5


@pytest.mark.asyncio
async def test_below_minimum_makes_no_request() -> None:
    api = _FakeApi()
    refresh = _Refresh()
    ledger = BidLedger(api, PARTY, refresh, minimum_bid=0.33, balance=10.0)

    with pytest.raises(BidBelowMinimum) as exc_info:
        await ledger.place_bid("a", 0.10)

    assert exc_info.value.minimum_bid == 0.33
    assert api.calls == []
    assert refresh.count == 0
    assert ledger.receipts == ()


@pytest.mark.asyncio
async def test_exact_minimum_is_accepted() -> None:
    api = _FakeApi()
    ledger = BidLedger(api, PARTY, _Refresh(), minimum_bid=0.33)
    await ledger.place_bid("a", 0.33)
    assert len(api.calls) == 1


@pytest.mark.asyncio
async def test_known_balance_too_low_makes_no_request() -> None:
    api = _FakeApi()
    ledger = BidLedger(api, PARTY, _Refresh(), balance=0.2)

    with pytest.raises(InsufficientFunds) as exc_info:
        await ledger.place_bid("a", 0.5)

    assert exc_info.value.shortfall == 0.3
    assert api.calls == []


@pytest.mark.parametrize("amount", [0, -1, float("nan"), float("inf")])
def test_invalid_amounts(amount: float) -> None:
    ledger = BidLedger(_FakeApi(), PARTY, _Refresh())
    with pytest.raises(ValidationError):
        ledger.validate(amount)


@pytest.mark.asyncio
async def test_server_insufficient_funds_updates_balance() -> None:
    api = _FakeApi(error=InsufficientFunds(current_balance=1.0, required_amount=2.0))
    refresh = _Refresh()
    ledger = BidLedger(api, PARTY, refresh)

    with pytest.raises(InsufficientFunds):
        await ledger.place_bid("a", 2.0)

    assert ledger.balance == 1.0
    assert refresh.count == 0
    (receipt,) = ledger.receipts
    assert receipt.outcome is BidOutcome.REJECTED
    assert isinstance(receipt.error, InsufficientFunds)


@pytest.mark.asyncio
async def test_transient_failure_is_retryable() -> None:
    api = _FakeApi(error=TransientNetworkError("boom", status=503))
    ledger = BidLedger(api, PARTY, _Refresh(), balance=5.0)

    with pytest.raises(TransientNetworkError) as exc_info:
        await ledger.place_bid("a", 1.0)

    assert exc_info.value.retryable
    assert ledger.balance == 5.0
    assert ledger.pending == {}


@pytest.mark.asyncio
async def test_refresh_failure_keeps_confirmation() -> None:
    refresh = _Refresh(error=TransientNetworkError("offline"))
    ledger = BidLedger(_FakeApi(balance=4.0), PARTY, refresh)

    confirmation = await ledger.place_bid("a", 1.0)

    assert confirmation.updated_balance == 4.0
    assert refresh.count == 1


def test_set_minimum_bid() -> None:
    ledger = BidLedger(_FakeApi(), PARTY, _Refresh())
    ledger.set_minimum_bid(0.5)
    assert ledger.minimum_bid == 0.5
    with pytest.raises(ValueError):
        ledger.set_minimum_bid(0)
