"""Exceptions raised by aiojukebox."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from aiojukebox.models.types import MediaStatus, StatusAction


class JukeboxError(Exception):
    """Base class for all aiojukebox errors."""

    retryable: bool = False
    """Whether repeating the same operation may succeed."""


class TransientNetworkError(JukeboxError):
    """A request failed for a transient reason (connection, timeout, server error)."""

    retryable = True

    def __init__(self, message: str, *, status: int | None = None) -> None:
        """Initialize with an optional HTTP status."""
        super().__init__(message)
        self.status = status


class RejectedTransition(JukeboxError):
    """An illegal status transition was requested for a queue entry."""

    def __init__(
        self,
        media_id: str,
        status: MediaStatus | None,
        action: StatusAction,
        reason: str | None = None,
    ) -> None:
        """Initialize with the entry, its current status and the rejected action."""
        self.media_id = media_id
        self.status = status
        self.action = action
        if reason is None:
            current = status.value if status is not None else "unknown"
            reason = f"Cannot {action.value} media {media_id} while it is {current}"
        self.reason = reason
        super().__init__(reason)


class UnknownEntry(RejectedTransition, KeyError):
    """The referenced media is not part of the party queue."""

    def __init__(self, media_id: str, action: StatusAction) -> None:
        """Initialize with the missing media id."""
        super().__init__(media_id, None, action, f"Media {media_id} is not in the party queue")

    def __str__(self) -> str:
        """Return the reason instead of the KeyError repr."""
        return self.reason


class InsufficientFunds(JukeboxError):
    """The user balance does not cover a bid."""

    def __init__(self, current_balance: float, required_amount: float) -> None:
        """Initialize with the balance and the amount that was required."""
        self.current_balance = current_balance
        self.required_amount = required_amount
        super().__init__(
            f"Insufficient funds: balance £{current_balance:.2f}, required £{required_amount:.2f}"
        )

    @property
    def shortfall(self) -> float:
        """Return the missing amount."""
        return max(0.0, round(self.required_amount - self.current_balance, 2))


class ValidationError(JukeboxError):
    """A request was rejected as invalid."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        """Initialize with an optional HTTP status."""
        super().__init__(message)
        self.status = status


class BidBelowMinimum(ValidationError):
    """A bid amount is below the party minimum."""

    def __init__(self, amount: float, minimum_bid: float) -> None:
        """Initialize with the offered amount and the party minimum."""
        self.amount = amount
        self.minimum_bid = minimum_bid
        super().__init__(f"Minimum bid amount is £{minimum_bid:.2f}")


class HostOnlyAction(JukeboxError):
    """A host-only action was attempted by a participant who is not the host."""


class MalformedEvent(JukeboxError):
    """A push message could not be decoded."""

    def __init__(self, message: str, *, raw: str | bytes | None = None) -> None:
        """Initialize with the offending frame."""
        super().__init__(message)
        self.raw = raw


class PartyEnded(JukeboxError):
    """The party has ended; nothing can be applied to it anymore."""

    def __init__(self, party_id: str) -> None:
        """Initialize with the ended party id."""
        self.party_id = party_id
        super().__init__(f"Party {party_id} has ended")
