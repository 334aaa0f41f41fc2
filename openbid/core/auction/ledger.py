"""
Bid Ledger - who bid what, and what is still owed back.

Conceptual Background:
---------------------
The ledger keeps two views of the same bids:

1. **Bid Sequence**: every accepted bid, in acceptance order, duplicates
   included. Settlement walks this sequence.
2. **Participant Ledgers**: per bidder, the ordered bid history (last entry
   is the active bid), the refundable balance and a one-shot withdrawn flag.

Refund Bookkeeping:
------------------
- A partial reclaim zeroes every history entry except the last and lowers
  the balance by the same amount.
- Settlement zeroes the balance and sets ``withdrawn``.
- Nothing else ever lowers a balance, so ``refundable_balance`` is always at
  most ``sum(bid_history)``.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from openbid.utils.logger import get_logger

logger = get_logger("ledger")

ADDRESS_SIZE = 20


def short_id(address: Optional[bytes]) -> str:
    """Abbreviated hex form for log lines."""
    if address is None:
        return "nobody"
    return "0x" + address.hex()[:8]


def validate_address(address: bytes, name: str = "bidder") -> None:
    if not isinstance(address, (bytes, bytearray)):
        raise ValueError(f"{name} must be bytes, got {type(address).__name__}")
    if len(address) != ADDRESS_SIZE:
        raise ValueError(f"{name} must be {ADDRESS_SIZE} bytes, got {len(address)}")


def validate_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValueError(f"amount must be an integer, got {type(amount).__name__}")
    if amount < 0:
        raise ValueError(f"amount must be non-negative, got {amount}")


# =============================================================================
# Records
# =============================================================================


@dataclass(frozen=True)
class Bid:
    """An accepted bid. Never mutated once recorded."""
    amount: int
    bidder: bytes


@dataclass(frozen=True)
class WinningBid:
    """Current highest bid; bidder is None until the first bid lands."""
    amount: int = 0
    bidder: Optional[bytes] = None

    @property
    def has_winner(self) -> bool:
        return self.bidder is not None


@dataclass
class ParticipantLedger:
    """
    Per-bidder bookkeeping.

    Attributes:
        bid_history: Amounts in submission order; reclaimed entries read 0
        refundable_balance: What is still owed back to the bidder
        withdrawn: Set once when settlement has paid this bidder
    """
    bid_history: List[int] = field(default_factory=list)
    refundable_balance: int = 0
    withdrawn: bool = False

    @property
    def active_bid(self) -> int:
        return self.bid_history[-1] if self.bid_history else 0

    @property
    def total_bid(self) -> int:
        return sum(self.bid_history)

    def superseded_total(self) -> int:
        """Sum of every entry except the most recent one."""
        return sum(self.bid_history[:-1])

    def copy(self) -> "ParticipantLedger":
        return ParticipantLedger(
            bid_history=list(self.bid_history),
            refundable_balance=self.refundable_balance,
            withdrawn=self.withdrawn,
        )


# =============================================================================
# Ledger
# =============================================================================


class BidLedger:
    """
    Global bid sequence plus lazily created participant ledgers.

    Callers validate first and only then call the mutating methods; every
    method here assumes its preconditions already hold.
    """

    def __init__(self):
        self.bids: List[Bid] = []
        self.participants: Dict[bytes, ParticipantLedger] = {}

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, bidder: bytes) -> Optional[ParticipantLedger]:
        return self.participants.get(bidder)

    def history_length(self, bidder: bytes) -> int:
        entry = self.participants.get(bidder)
        return len(entry.bid_history) if entry else 0

    def total_refundable(self) -> int:
        return sum(p.refundable_balance for p in self.participants.values())

    # =========================================================================
    # Mutations
    # =========================================================================

    def record_bid(self, bidder: bytes, amount: int) -> Bid:
        """Append an accepted bid to both views."""
        entry = self.participants.get(bidder)
        if entry is None:
            entry = ParticipantLedger()
            self.participants[bidder] = entry

        entry.bid_history.append(amount)
        entry.refundable_balance += amount

        bid = Bid(amount=amount, bidder=bidder)
        self.bids.append(bid)

        logger.debug(f"Recorded bid {amount} from {short_id(bidder)} (#{len(entry.bid_history)})")
        return bid

    def clear_superseded(self, bidder: bytes) -> int:
        """
        Zero every history entry except the last.

        Returns:
            The amount cleared
        """
        entry = self.participants[bidder]
        cleared = entry.superseded_total()
        for i in range(len(entry.bid_history) - 1):
            entry.bid_history[i] = 0
        entry.refundable_balance -= cleared
        return cleared

    def mark_settled(self, bidder: bytes) -> None:
        """Record that settlement paid this bidder."""
        entry = self.participants[bidder]
        entry.withdrawn = True
        entry.refundable_balance = 0

    # =========================================================================
    # Persistence helpers
    # =========================================================================

    def restore(self, bids: List[Bid], participants: Dict[bytes, ParticipantLedger]) -> None:
        self.bids = list(bids)
        self.participants = dict(participants)

    def __repr__(self) -> str:
        return f"BidLedger(bids={len(self.bids)}, participants={len(self.participants)})"
