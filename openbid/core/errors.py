"""
Auction error taxonomy.

Every precondition failure raises one of these before any state is touched,
so a caller that catches ``AuctionError`` knows the auction is unchanged.
"""

from typing import Optional


class AuctionError(Exception):
    """Base class for auction-specific errors."""


class Unauthorized(AuctionError):
    """Caller is not the auction owner."""


class AuctionInactive(AuctionError):
    """Operation requires the auction to be accepting bids."""


class AuctionEnded(AuctionInactive):
    """Auction has been finalized."""


class AuctionStillActive(AuctionError):
    """Finalization attempted before the deadline."""


class AlreadyFinalized(AuctionError):
    """Finalization attempted a second time."""


class BidTooLow(AuctionError):
    """Bid does not clear the minimum increment over the current winner."""

    def __init__(self, amount: int, minimum: int):
        self.amount = amount
        self.minimum = minimum
        super().__init__(f"Bid {amount} too low: must be at least {minimum}")


class NoPriorBids(AuctionError):
    """Participant has no superseded bid to reclaim."""


class NothingToRefund(AuctionError):
    """Every superseded bid was already reclaimed."""


class NoBalance(AuctionError):
    """Escrow holds nothing to sweep."""


class TransferFailure(AuctionError):
    """Payment collaborator declined or failed a transfer."""

    def __init__(self, recipient: Optional[bytes], amount: int, reason: str = ""):
        self.recipient = recipient
        self.amount = amount
        self.reason = reason
        target = "0x" + recipient.hex() if recipient else "escrow"
        message = f"Transfer of {amount} to {target} failed"
        if reason:
            message += f": {reason}"
        super().__init__(message)


__all__ = [
    "AuctionError",
    "Unauthorized",
    "AuctionInactive",
    "AuctionEnded",
    "AuctionStillActive",
    "AlreadyFinalized",
    "BidTooLow",
    "NoPriorBids",
    "NothingToRefund",
    "NoBalance",
    "TransferFailure",
]
