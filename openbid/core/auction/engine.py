"""
English Auction - open ascending-bid auction for a single item.

Lifecycle:
---------
1. Active: bids are accepted while now < deadline. Each bid must beat the
   current winner by the minimum increment. A bid inside the extension
   window pushes the deadline out.
2. Finalizable: the deadline has passed. Only the owner can settle.
3. Ended: settlement ran once. Every losing bidder was paid back their
   refundable balance minus the settlement fee; the winner's funds stay in
   escrow for the owner.

While active, a bidder can also reclaim superseded bids (every bid except
their latest) without waiting for settlement.

Atomicity:
---------
Every operation runs under one re-entrant lock and validates all of its
preconditions before touching state. Calls into the payment service happen
inside the lock and before the ledger is updated, so a failed transfer leaves
the auction exactly as it was.

With storage attached, the ledger, the new event and the escrow movements of
an operation are written in one SQLite transaction. If anything raises after
the first mutation, including that write, the ledger, winner, clock, feed and
escrow are restored to their state before the call. Subscribers are notified
after the lock is released.
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from openbid.core.auction.deadline import DeadlineTracker
from openbid.core.auction.events import (
    AuctionEndedEvent,
    AuctionEvent,
    AuditRecord,
    EmergencyWithdrawal,
    EventFeed,
    NewOffer,
    PartialRefund,
    event_from_payload,
)
from openbid.core.auction.ledger import (
    Bid,
    BidLedger,
    ParticipantLedger,
    WinningBid,
    short_id,
    validate_address,
    validate_amount,
)
from openbid.core.config import AuctionConfig
from openbid.core.errors import (
    AlreadyFinalized,
    AuctionEnded,
    AuctionInactive,
    AuctionStillActive,
    BidTooLow,
    NoBalance,
    NoPriorBids,
    NothingToRefund,
    TransferFailure,
    Unauthorized,
)
from openbid.core.payments import PaymentService
from openbid.core.timesource import SystemTimeSource, TimeSource
from openbid.utils.logger import get_logger

logger = get_logger("auction")


# =============================================================================
# Results
# =============================================================================


@dataclass
class SettlementReport:
    """
    Outcome of finalize().

    Attributes:
        event: The AuctionEnded event that was emitted
        payouts: (bidder, amount) for every refund that went through
        failed: (bidder, amount) for refunds the payment service refused;
            those bidders keep their balance and are not marked withdrawn
    """
    event: AuctionEndedEvent
    payouts: List[Tuple[bytes, int]] = field(default_factory=list)
    failed: List[Tuple[bytes, int]] = field(default_factory=list)

    @property
    def winner(self) -> Optional[bytes]:
        return self.event.winner

    @property
    def winning_amount(self) -> int:
        return self.event.amount

    @property
    def total_paid(self) -> int:
        return sum(amount for _, amount in self.payouts)

    @property
    def complete(self) -> bool:
        return not self.failed


# =============================================================================
# English Auction
# =============================================================================


class EnglishAuction:
    """
    A single-item, single-round English auction.

    Attributes:
        auction_id: Identifier used for persistence and signed calls
        owner: Address allowed to finalize and sweep
        config: Timing, increment and fee rules
        clock: Start time, deadline and ended flag
        ledger: Bid sequence and participant ledgers
        winning: Current highest bid
        feed: Hash-chained event log
    """

    def __init__(
        self,
        owner: bytes,
        payments: PaymentService,
        config: Optional[AuctionConfig] = None,
        time_source: Optional[TimeSource] = None,
        start_time: Optional[int] = None,
        auction_id: str = "default",
        storage_manager=None,
    ):
        """
        Create an auction, or resume it if storage already holds one.

        Args:
            owner: 20-byte owner address
            payments: Escrow collaborator that moves funds
            config: Rules; defaults to AuctionConfig()
            time_source: Used when an operation is called without `now`
            start_time: Opening time; defaults to time_source.now()
            auction_id: Key under which state is persisted
            storage_manager: Persistence manager. None = in-memory only.
        """
        validate_address(owner, "owner")

        self.auction_id = auction_id
        self.owner = owner
        self.config = config or AuctionConfig()
        self.payments = payments
        self.time_source = time_source or SystemTimeSource()
        self.storage_manager = storage_manager

        self.ledger = BidLedger()
        self.winning = WinningBid()
        self.feed = EventFeed()
        self._lock = threading.RLock()

        start = self.time_source.now() if start_time is None else start_time
        self.clock = DeadlineTracker.starting_at(
            start, self.config.duration, self.config.extension_window
        )

        if storage_manager and self._load_from_storage():
            return

        logger.info(
            f"Auction {auction_id} opened by {short_id(owner)}: "
            f"start={start}, deadline={self.clock.deadline}"
        )
        if storage_manager:
            self._persist([])

    @classmethod
    def resume(
        cls,
        storage_manager,
        payments: PaymentService,
        auction_id: str = "default",
        config: Optional[AuctionConfig] = None,
        time_source: Optional[TimeSource] = None,
    ) -> "EnglishAuction":
        """
        Reopen a stored auction.

        Raises:
            KeyError: Nothing is stored under auction_id
        """
        state = storage_manager.load_auction(auction_id)
        if state is None:
            raise KeyError(f"No stored auction {auction_id!r}")
        meta = state[0]
        return cls(
            owner=meta["owner"],
            payments=payments,
            config=config,
            time_source=time_source,
            start_time=meta["start_time"],
            auction_id=auction_id,
            storage_manager=storage_manager,
        )

    # =========================================================================
    # State Access
    # =========================================================================

    @property
    def deadline(self) -> int:
        return self.clock.deadline

    @property
    def start_time(self) -> int:
        return self.clock.start_time

    @property
    def ended(self) -> bool:
        return self.clock.ended

    def is_active(self, now: Optional[int] = None) -> bool:
        with self._lock:
            return self.clock.is_active(self._now(now))

    def is_finalizable(self, now: Optional[int] = None) -> bool:
        with self._lock:
            return self.clock.is_finalizable(self._now(now))

    def time_remaining(self, now: Optional[int] = None) -> int:
        with self._lock:
            return self.clock.time_remaining(self._now(now))

    def get_winner(self) -> WinningBid:
        with self._lock:
            return self.winning

    def list_bids(self) -> List[Bid]:
        """Every accepted bid, oldest first."""
        with self._lock:
            return list(self.ledger.bids)

    def get_participant(self, bidder: bytes) -> Optional[ParticipantLedger]:
        """A copy of the bidder's ledger, or None if they never bid."""
        with self._lock:
            entry = self.ledger.get(bidder)
            return entry.copy() if entry else None

    def minimum_next_bid(self) -> int:
        with self._lock:
            return self.config.minimum_bid_above(self.winning.amount)

    # =========================================================================
    # Bid Processor
    # =========================================================================

    def place_bid(self, bidder: bytes, amount: int, now: Optional[int] = None) -> NewOffer:
        """
        Accept a bid that beats the current winner by the minimum increment.

        Collects `amount` into escrow, records it, makes the bidder the
        winner and extends the deadline if the bid is late.

        Raises:
            AuctionInactive: Deadline passed (AuctionEnded once finalized)
            BidTooLow: amount <= floor(winning * (100 + increment) / 100)
            TransferFailure: Escrow could not collect the funds
        """
        validate_address(bidder)
        validate_amount(amount)

        with self._lock:
            now = self._now(now)
            self._require_active(now)

            floor = self.config.increment_floor(self.winning.amount)
            if amount <= floor:
                raise BidTooLow(amount, floor + 1)

            with self._rollback_on_failure():
                self.payments.collect(bidder, amount)

                self.ledger.record_bid(bidder, amount)
                self.winning = WinningBid(amount=amount, bidder=bidder)
                self.clock.maybe_extend(now)

                event = NewOffer(bidder=bidder, amount=amount)
                self._commit(event)

        logger.info(f"New offer {amount} from {short_id(bidder)} (deadline {self.clock.deadline})")
        self.feed.notify(event)
        return event

    # =========================================================================
    # Refund Engine
    # =========================================================================

    def partial_refund(self, bidder: bytes, now: Optional[int] = None) -> PartialRefund:
        """
        Pay back every superseded bid of `bidder` while the auction runs.

        The latest bid stays in place. Reclaimed entries are zeroed so a
        later call only returns bids placed since.

        Raises:
            AuctionInactive: Deadline passed (AuctionEnded once finalized)
            NoPriorBids: Bidder has fewer than two bids
            NothingToRefund: Superseded bids were already reclaimed
            TransferFailure: Payment failed; nothing was changed
        """
        validate_address(bidder)

        with self._lock:
            now = self._now(now)
            self._require_active(now)

            entry = self.ledger.get(bidder)
            if entry is None or len(entry.bid_history) <= 1:
                raise NoPriorBids(f"{short_id(bidder)} has no superseded bids")

            refund = entry.superseded_total()
            if refund == 0:
                raise NothingToRefund(f"{short_id(bidder)} already reclaimed superseded bids")

            with self._rollback_on_failure():
                self.payments.transfer(bidder, refund)
                self.ledger.clear_superseded(bidder)

                event = PartialRefund(bidder=bidder, amount=refund)
                self._commit(event)

        logger.info(f"Partial refund of {refund} to {short_id(bidder)}")
        self.feed.notify(event)
        return event

    def finalize(self, caller: bytes, now: Optional[int] = None) -> SettlementReport:
        """
        Close the auction and refund every losing bidder once.

        Walks the bid sequence in acceptance order; each non-winning bidder
        with a positive balance who has not been paid receives
        floor(balance * (100 - fee) / 100). The winner receives nothing.

        A refused payout does not abort settlement: it is recorded in the
        report, the bidder's balance and withdrawn flag stay as they were,
        and the loop continues. The auction is ended regardless.

        Raises:
            Unauthorized: Caller is not the owner
            AuctionStillActive: Deadline not reached
            AlreadyFinalized: Settlement already ran
        """
        with self._lock:
            if caller != self.owner:
                raise Unauthorized("Only the auction owner can finalize")

            now = self._now(now)
            if not self.clock.is_finalizable(now):
                raise AuctionStillActive(
                    f"Auction runs until {self.clock.deadline} ({self.clock.deadline - now}s left)"
                )
            if self.clock.ended:
                raise AlreadyFinalized("Auction was already finalized")

            with self._rollback_on_failure():
                self.clock.mark_ended()

                winner = self.winning.bidder
                payouts: List[Tuple[bytes, int]] = []
                failed: List[Tuple[bytes, int]] = []
                refused = set()

                for bid in self.ledger.bids:
                    bidder = bid.bidder
                    if bidder == winner or bidder in refused:
                        continue

                    entry = self.ledger.participants[bidder]
                    if entry.refundable_balance <= 0 or entry.withdrawn:
                        continue

                    payout = self.config.settlement_payout(entry.refundable_balance)
                    try:
                        self.payments.transfer(bidder, payout)
                    except TransferFailure as e:
                        logger.warning(f"Settlement payout to {short_id(bidder)} failed: {e}")
                        refused.add(bidder)
                        failed.append((bidder, payout))
                        continue

                    self.ledger.mark_settled(bidder)
                    payouts.append((bidder, payout))

                event = AuctionEndedEvent(winner=winner, amount=self.winning.amount)
                self._commit(event)

        logger.info(
            f"Auction {self.auction_id} ended: winner={short_id(winner)} amount={event.amount}, "
            f"{len(payouts)} refunds paid, {len(failed)} failed"
        )
        self.feed.notify(event)
        return SettlementReport(event=event, payouts=payouts, failed=failed)

    # =========================================================================
    # Administrative Sweep
    # =========================================================================

    def emergency_withdraw(self, caller: bytes) -> EmergencyWithdrawal:
        """
        Move everything left in escrow to the owner.

        Allowed in any state, including before finalization.

        Raises:
            Unauthorized: Caller is not the owner
            NoBalance: Escrow is empty
            TransferFailure: Payment failed; nothing was changed
        """
        with self._lock:
            if caller != self.owner:
                raise Unauthorized("Only the auction owner can withdraw")

            balance = self.payments.balance()
            if balance <= 0:
                raise NoBalance("Escrow is empty")

            with self._rollback_on_failure():
                self.payments.transfer(self.owner, balance)

                event = EmergencyWithdrawal(owner=self.owner, amount=balance)
                self._commit(event)

        logger.warning(f"Emergency withdrawal of {balance} to owner {short_id(self.owner)}")
        self.feed.notify(event)
        return event

    # =========================================================================
    # Internals
    # =========================================================================

    def _now(self, now: Optional[int]) -> int:
        return self.time_source.now() if now is None else now

    def _require_active(self, now: int) -> None:
        if self.clock.ended:
            raise AuctionEnded("Auction has been finalized")
        if not self.clock.is_active(now):
            raise AuctionInactive(f"Auction closed at {self.clock.deadline}")

    def _commit(self, event: AuctionEvent) -> None:
        """Chain the event and persist the new state. Caller holds the lock."""
        record = self.feed.append(event)
        if self.storage_manager:
            self._persist([record])

    @contextmanager
    def _rollback_on_failure(self):
        """
        Restore the pre-operation state if the wrapped block raises.

        Covers the ledger, winner, clock, event feed and escrow, so a failed
        payment or a failed write leaves the auction as it was in memory and
        on disk. Caller holds the lock.
        """
        bids = list(self.ledger.bids)
        participants = {bidder: entry.copy() for bidder, entry in self.ledger.participants.items()}
        winning = self.winning
        clock = replace(self.clock)
        records = list(self.feed.records)
        escrow = self.payments.checkpoint()

        try:
            yield
        except Exception:
            self.ledger.restore(bids, participants)
            self.winning = winning
            self.clock = clock
            self.feed.restore(records)
            self.payments.rollback(escrow)
            raise

    # =========================================================================
    # Persistence
    # =========================================================================

    def snapshot(self) -> dict:
        """Plain-data view of the auction metadata."""
        return {
            "auction_id": self.auction_id,
            "owner": self.owner,
            "start_time": self.clock.start_time,
            "deadline": self.clock.deadline,
            "ended": self.clock.ended,
            "winning_amount": self.winning.amount,
            "winning_bidder": self.winning.bidder,
            "config": {
                "duration": self.config.duration,
                "extension_window": self.config.extension_window,
                "min_increment_percent": self.config.min_increment_percent,
                "settlement_fee_percent": self.config.settlement_fee_percent,
            },
        }

    def _persist(self, new_records: List[AuditRecord]) -> None:
        participants = [
            (bidder, list(entry.bid_history), entry.refundable_balance, entry.withdrawn)
            for bidder, entry in self.ledger.participants.items()
        ]
        self.storage_manager.persist_auction(
            self.auction_id,
            self.snapshot(),
            [(bid.amount, bid.bidder) for bid in self.ledger.bids],
            participants,
            [
                (r.sequence, r.event.name, r.event.payload(), r.digest)
                for r in new_records
            ],
            escrow=(
                self.payments.escrow_id,
                self.payments.balance(),
                [(m.kind, m.account, m.amount) for m in self.payments.unsaved_movements()],
            ),
        )
        self.payments.mark_saved()

    def _load_from_storage(self) -> bool:
        """Load saved state. Returns False if nothing was stored yet."""
        state = self.storage_manager.load_auction(self.auction_id)
        if state is None:
            return False

        meta, bids, participants, records = state

        if meta["owner"] != self.owner:
            logger.warning(
                f"Stored owner {short_id(meta['owner'])} overrides {short_id(self.owner)}"
            )
        self.owner = meta["owner"]
        self.config = AuctionConfig(
            data_dir=Path(self.config.data_dir),
            log_dir=Path(self.config.log_dir),
            **meta["config"],
        )
        self.clock = DeadlineTracker(
            start_time=meta["start_time"],
            deadline=meta["deadline"],
            extension_window=self.config.extension_window,
            ended=meta["ended"],
        )
        self.winning = WinningBid(amount=meta["winning_amount"], bidder=meta["winning_bidder"])

        ledgers: Dict[bytes, ParticipantLedger] = {
            bidder: ParticipantLedger(
                bid_history=list(history),
                refundable_balance=balance,
                withdrawn=withdrawn,
            )
            for bidder, history, balance, withdrawn in participants
        }
        self.ledger.restore([Bid(amount=a, bidder=b) for a, b in bids], ledgers)

        self.feed.restore([
            AuditRecord(sequence=seq, event=event_from_payload(name, payload), digest=digest)
            for seq, name, payload, digest in records
        ])

        logger.info(
            f"Loaded auction {self.auction_id}: {len(self.ledger.bids)} bids, "
            f"deadline={self.clock.deadline}, ended={self.clock.ended}"
        )
        return True

    # =========================================================================
    # Utility
    # =========================================================================

    def __repr__(self) -> str:
        return (
            f"EnglishAuction(id={self.auction_id}, bids={len(self.ledger.bids)}, "
            f"winner={short_id(self.winning.bidder)}/{self.winning.amount}, ended={self.clock.ended})"
        )

    def stats(self, now: Optional[int] = None) -> dict:
        """Get auction statistics."""
        with self._lock:
            now = self._now(now)
            return {
                "auction_id": self.auction_id,
                "bids": len(self.ledger.bids),
                "participants": len(self.ledger.participants),
                "winning_amount": self.winning.amount,
                "winning_bidder": "0x" + self.winning.bidder.hex() if self.winning.bidder else None,
                "deadline": self.clock.deadline,
                "active": self.clock.is_active(now),
                "ended": self.clock.ended,
                "time_remaining": self.clock.time_remaining(now),
                "escrow_balance": self.payments.balance(),
                "total_refundable": self.ledger.total_refundable(),
                "events": len(self.feed),
            }
