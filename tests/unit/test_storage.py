"""
Unit tests for SQLite storage.
"""

import pytest

from openbid.core.storage import SQLiteAdapter, StorageManager


OWNER = b"\x01" * 20
ALICE = b"\xaa" * 20
BOB = b"\xbb" * 20


def make_meta(**overrides):
    meta = {
        "owner": OWNER,
        "start_time": 0,
        "deadline": 604800,
        "ended": False,
        "winning_amount": 0,
        "winning_bidder": None,
        "config": {"duration": 604800, "extension_window": 600,
                   "min_increment_percent": 5, "settlement_fee_percent": 2},
    }
    meta.update(overrides)
    return meta


@pytest.fixture
def storage(tmp_path):
    manager = StorageManager(data_dir=tmp_path)
    yield manager
    manager.close()


class TestAdapter:
    def test_creates_parent_directory(self, tmp_path):
        db_path = tmp_path / "nested" / "dir" / "a.db"
        adapter = SQLiteAdapter(db_path)
        assert db_path.parent.exists()
        adapter.close()

    def test_missing_auction(self, storage):
        assert storage.load_auction("nope") is None
        assert not storage.has_auction("nope")


class TestAuctionState:
    def test_roundtrip(self, storage):
        storage.persist_auction(
            "a1",
            make_meta(winning_amount=106, winning_bidder=BOB),
            [(100, ALICE), (106, BOB)],
            [(ALICE, [100], 100, False), (BOB, [106], 106, False)],
            [(0, "NewOffer", {"bidder": "0x" + ALICE.hex(), "amount": 100}, b"\x11" * 32)],
        )

        meta, bids, participants, events = storage.load_auction("a1")

        assert meta["owner"] == OWNER
        assert meta["winning_bidder"] == BOB
        assert meta["ended"] is False
        assert meta["config"]["extension_window"] == 600
        assert bids == [(100, ALICE), (106, BOB)]
        assert sorted(participants) == [(ALICE, [100], 100, False), (BOB, [106], 106, False)]
        assert events == [(0, "NewOffer", {"bidder": "0x" + ALICE.hex(), "amount": 100}, b"\x11" * 32)]

    def test_updates_replace_participants_and_meta(self, storage):
        storage.persist_auction("a1", make_meta(), [(100, ALICE)], [(ALICE, [100], 100, False)], [])
        storage.persist_auction(
            "a1",
            make_meta(ended=True, deadline=605400),
            [(100, ALICE)],
            [(ALICE, [100], 0, True)],
            [],
        )

        meta, bids, participants, _ = storage.load_auction("a1")
        assert meta["ended"] is True
        assert meta["deadline"] == 605400
        assert bids == [(100, ALICE)]
        assert participants == [(ALICE, [100], 0, True)]

    def test_auctions_are_isolated(self, storage):
        storage.persist_auction("a1", make_meta(), [(100, ALICE)], [], [])
        storage.persist_auction("a2", make_meta(), [], [], [])

        assert storage.load_auction("a2")[1] == []
        assert storage.list_auctions() == ["a1", "a2"]


class TestEscrowState:
    def test_escrow_written_with_auction(self, storage):
        storage.persist_auction(
            "a1", make_meta(), [(100, ALICE)], [(ALICE, [100], 100, False)], [],
            escrow=("a1", 100, [("collect", ALICE, 100)]),
        )
        storage.persist_auction(
            "a1", make_meta(), [(100, ALICE)], [(ALICE, [100], 70, False)], [],
            escrow=("a1", 70, [("transfer", ALICE, 30)]),
        )

        held, movements = storage.load_escrow("a1")
        assert held == 70
        assert movements == [("collect", ALICE, 100), ("transfer", ALICE, 30)]

    def test_failed_write_keeps_nothing(self, storage):
        """A failure mid-transaction rolls back the ledger and the escrow together."""
        unserializable = [(0, "NewOffer", {"amount": object()}, b"\x11" * 32)]

        with pytest.raises(TypeError):
            storage.persist_auction(
                "a1", make_meta(), [(100, ALICE)], [(ALICE, [100], 100, False)], unserializable,
                escrow=("a1", 100, [("collect", ALICE, 100)]),
            )

        assert storage.load_auction("a1") is None
        assert storage.load_escrow("a1") == (0, [])

    def test_unknown_escrow_is_empty(self, storage):
        assert storage.load_escrow("nope") == (0, [])


class TestNonces:
    def test_nonce_used_once(self, storage):
        assert storage.record_nonce("a1", ALICE, 1)
        assert not storage.record_nonce("a1", ALICE, 1)

    def test_nonces_scoped_by_auction_and_address(self, storage):
        assert storage.record_nonce("a1", ALICE, 1)
        assert storage.record_nonce("a2", ALICE, 1)
        assert storage.record_nonce("a1", BOB, 1)
