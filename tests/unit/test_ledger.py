"""
Unit tests for the bid ledger.

Tests cover:
1. Bid recording in both views
2. Superseded-bid clearing
3. Settlement marking
4. Input validation helpers
"""

import pytest

from openbid.core.auction import Bid, BidLedger, ParticipantLedger, WinningBid
from openbid.core.auction.ledger import validate_address, validate_amount


ALICE = b"\xaa" * 20
BOB = b"\xbb" * 20


@pytest.fixture
def ledger():
    return BidLedger()


class TestRecording:
    """Tests for recording accepted bids."""

    def test_participant_created_lazily(self, ledger):
        assert ledger.get(ALICE) is None
        ledger.record_bid(ALICE, 100)
        entry = ledger.get(ALICE)
        assert entry.bid_history == [100]
        assert entry.refundable_balance == 100
        assert not entry.withdrawn

    def test_sequence_keeps_duplicates_in_order(self, ledger):
        ledger.record_bid(ALICE, 100)
        ledger.record_bid(BOB, 106)
        ledger.record_bid(ALICE, 200)

        assert ledger.bids == [Bid(100, ALICE), Bid(106, BOB), Bid(200, ALICE)]
        assert ledger.get(ALICE).bid_history == [100, 200]
        assert ledger.get(ALICE).refundable_balance == 300

    def test_history_length(self, ledger):
        assert ledger.history_length(ALICE) == 0
        ledger.record_bid(ALICE, 1)
        ledger.record_bid(ALICE, 2)
        assert ledger.history_length(ALICE) == 2

    def test_total_refundable(self, ledger):
        ledger.record_bid(ALICE, 100)
        ledger.record_bid(BOB, 200)
        assert ledger.total_refundable() == 300

    def test_bid_is_immutable(self):
        bid = Bid(100, ALICE)
        with pytest.raises(AttributeError):
            bid.amount = 5


class TestClearing:
    """Tests for partial-reclaim bookkeeping."""

    def test_clear_superseded(self, ledger):
        for amount in (100, 200, 300):
            ledger.record_bid(ALICE, amount)

        cleared = ledger.clear_superseded(ALICE)

        entry = ledger.get(ALICE)
        assert cleared == 300
        assert entry.bid_history == [0, 0, 300]
        assert entry.refundable_balance == 300
        assert entry.active_bid == 300

    def test_second_clear_returns_zero(self, ledger):
        ledger.record_bid(ALICE, 100)
        ledger.record_bid(ALICE, 200)
        ledger.clear_superseded(ALICE)
        assert ledger.clear_superseded(ALICE) == 0

    def test_balance_never_exceeds_history_sum(self, ledger):
        ledger.record_bid(ALICE, 100)
        ledger.record_bid(ALICE, 200)
        ledger.clear_superseded(ALICE)
        ledger.record_bid(ALICE, 400)

        entry = ledger.get(ALICE)
        assert entry.refundable_balance <= entry.total_bid
        assert entry.superseded_total() == 200


class TestSettlement:
    def test_mark_settled(self, ledger):
        ledger.record_bid(ALICE, 100)
        ledger.mark_settled(ALICE)
        entry = ledger.get(ALICE)
        assert entry.withdrawn
        assert entry.refundable_balance == 0
        # History is kept for the record
        assert entry.bid_history == [100]

    def test_copy_is_independent(self):
        entry = ParticipantLedger(bid_history=[1, 2], refundable_balance=3)
        clone = entry.copy()
        clone.bid_history.append(9)
        assert entry.bid_history == [1, 2]


class TestWinningBid:
    def test_starts_empty(self):
        winning = WinningBid()
        assert winning.amount == 0
        assert winning.bidder is None
        assert not winning.has_winner


class TestValidation:
    @pytest.mark.parametrize("address", [b"\x01" * 19, b"\x01" * 21, "0x" + "aa" * 20, None])
    def test_bad_address(self, address):
        with pytest.raises(ValueError):
            validate_address(address)

    @pytest.mark.parametrize("amount", [-1, 1.5, "100", True, None])
    def test_bad_amount(self, amount):
        with pytest.raises(ValueError):
            validate_amount(amount)

    def test_zero_amount_is_well_formed(self):
        validate_amount(0)
