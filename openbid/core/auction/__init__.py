"""
openbid Auction Module.

This module provides the English auction state machine:
- Deadline tracking and late-bid extension
- Bid ledger (bid sequence, participant ledgers)
- Bid processing, partial refunds and settlement
- Event feed with a hash-chained audit trail
"""

from openbid.core.auction.deadline import DeadlineTracker

from openbid.core.auction.ledger import (
    Bid,
    BidLedger,
    ParticipantLedger,
    WinningBid,
)

from openbid.core.auction.events import (
    AuctionEvent,
    AuctionEndedEvent,
    AuditRecord,
    EmergencyWithdrawal,
    EventFeed,
    NewOffer,
    PartialRefund,
)

from openbid.core.auction.engine import (
    EnglishAuction,
    SettlementReport,
)

__all__ = [
    # Deadline
    "DeadlineTracker",
    # Ledger
    "Bid",
    "BidLedger",
    "ParticipantLedger",
    "WinningBid",
    # Events
    "AuctionEvent",
    "AuctionEndedEvent",
    "AuditRecord",
    "EmergencyWithdrawal",
    "EventFeed",
    "NewOffer",
    "PartialRefund",
    # Engine
    "EnglishAuction",
    "SettlementReport",
]
