"""
Unit tests for the event feed and audit chain.
"""

from dataclasses import replace

import pytest

from openbid.core.auction import (
    AuctionEndedEvent,
    AuditRecord,
    EmergencyWithdrawal,
    EventFeed,
    NewOffer,
    PartialRefund,
)
from openbid.core.auction.events import GENESIS_DIGEST, chain_digest, event_from_payload


ALICE = b"\xaa" * 20
OWNER = b"\x01" * 20


@pytest.fixture
def feed():
    feed = EventFeed()
    feed.publish(NewOffer(bidder=ALICE, amount=100))
    feed.publish(PartialRefund(bidder=ALICE, amount=50))
    feed.publish(AuctionEndedEvent(winner=ALICE, amount=100))
    return feed


class TestPayload:
    def test_bytes_are_hex_encoded(self):
        payload = NewOffer(bidder=ALICE, amount=5).payload()
        assert payload == {"bidder": "0x" + ALICE.hex(), "amount": 5}

    def test_absent_winner(self):
        event = AuctionEndedEvent(winner=None, amount=0)
        assert event.payload() == {"winner": None, "amount": 0}
        assert event_from_payload("AuctionEnded", event.payload()) == event

    @pytest.mark.parametrize("event", [
        NewOffer(bidder=ALICE, amount=1),
        PartialRefund(bidder=ALICE, amount=2),
        AuctionEndedEvent(winner=ALICE, amount=3),
        EmergencyWithdrawal(owner=OWNER, amount=4),
    ])
    def test_rebuild_from_payload(self, event):
        assert event_from_payload(event.name, event.payload()) == event

    def test_unknown_event(self):
        with pytest.raises(ValueError):
            event_from_payload("Bogus", {})


class TestChain:
    """Tests for the hash chain."""

    def test_sequence_numbers(self, feed):
        assert [r.sequence for r in feed.records] == [0, 1, 2]

    def test_first_digest_chains_from_genesis(self, feed):
        first = feed.records[0]
        assert first.digest == chain_digest(GENESIS_DIGEST, first.event)

    def test_head_is_last_digest(self, feed):
        assert feed.head == feed.records[-1].digest
        assert EventFeed().head == GENESIS_DIGEST

    def test_verify_intact_chain(self, feed):
        assert feed.verify_chain()

    def test_detects_rewritten_event(self, feed):
        forged = replace(feed.records[0], event=NewOffer(bidder=ALICE, amount=1))
        feed.records[0] = forged
        assert not feed.verify_chain()

    def test_detects_dropped_record(self, feed):
        del feed.records[1]
        assert not feed.verify_chain()

    def test_restore(self, feed):
        other = EventFeed()
        other.restore(feed.records)
        assert other.verify_chain()
        assert other.head == feed.head

    def test_filter_by_name(self, feed):
        assert feed.events("PartialRefund") == [PartialRefund(bidder=ALICE, amount=50)]
        assert len(feed.events()) == 3


class TestSubscribers:
    def test_subscribe_and_unsubscribe(self):
        feed = EventFeed()
        received = []
        unsubscribe = feed.subscribe(received.append)

        feed.publish(NewOffer(bidder=ALICE, amount=1))
        unsubscribe()
        feed.publish(NewOffer(bidder=ALICE, amount=2))

        assert received == [NewOffer(bidder=ALICE, amount=1)]

    def test_append_does_not_notify(self):
        feed = EventFeed()
        received = []
        feed.subscribe(received.append)
        feed.append(NewOffer(bidder=ALICE, amount=1))
        assert received == []
        assert len(feed) == 1

    def test_bad_subscriber_isolated(self):
        feed = EventFeed()
        received = []

        def broken(event):
            raise ValueError("boom")

        feed.subscribe(broken)
        feed.subscribe(received.append)
        feed.publish(NewOffer(bidder=ALICE, amount=1))
        assert len(received) == 1
