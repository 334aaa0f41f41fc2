import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from openbid.utils.logger import get_logger

logger = get_logger("storage.sqlite")


class SQLiteAdapter:
    """
    SQLite backend for persistent storage.

    Provides:
    1. Auction metadata (owner, timing, winner, rules)
    2. Bid sequence and participant ledgers
    3. Hash-chained event log
    4. Escrow balance and movement journal
    5. Nonces of authenticated calls
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._conn_local = threading.local()

        if not db_path.parent.exists():
            db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_schema()

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create connection for current thread."""
        if not hasattr(self._conn_local, "conn"):
            self._conn_local.conn = sqlite3.connect(
                self.db_path,
                timeout=30.0,
                check_same_thread=False
            )
            self._conn_local.conn.row_factory = sqlite3.Row
            # Enable WAL mode for better concurrency
            self._conn_local.conn.execute("PRAGMA journal_mode=WAL;")
            self._conn_local.conn.execute("PRAGMA synchronous=NORMAL;")
        return self._conn_local.conn

    def close(self):
        conn = getattr(self._conn_local, "conn", None)
        if conn is not None:
            conn.close()
            del self._conn_local.conn

    def _init_schema(self):
        """Initialize database schema."""
        conn = self._get_conn()
        with conn:
            # 1. Auction metadata, one row per auction
            conn.execute("""
                CREATE TABLE IF NOT EXISTS auctions (
                    auction_id TEXT PRIMARY KEY,
                    owner BLOB NOT NULL,
                    start_time INTEGER NOT NULL,
                    deadline INTEGER NOT NULL,
                    ended INTEGER NOT NULL DEFAULT 0,
                    winning_amount INTEGER NOT NULL DEFAULT 0,
                    winning_bidder BLOB,
                    config TEXT NOT NULL
                )
            """)

            # 2. Global bid sequence (append-only)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS bids (
                    auction_id TEXT NOT NULL,
                    seq INTEGER NOT NULL,
                    amount INTEGER NOT NULL,
                    bidder BLOB NOT NULL,
                    PRIMARY KEY (auction_id, seq)
                )
            """)

            # 3. Participant ledgers
            conn.execute("""
                CREATE TABLE IF NOT EXISTS participants (
                    auction_id TEXT NOT NULL,
                    bidder BLOB NOT NULL,
                    bid_history TEXT NOT NULL,
                    refundable_balance INTEGER NOT NULL,
                    withdrawn INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (auction_id, bidder)
                )
            """)

            # 4. Event log
            conn.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    auction_id TEXT NOT NULL,
                    seq INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    digest BLOB NOT NULL,
                    PRIMARY KEY (auction_id, seq)
                )
            """)

            # 5. Escrow
            conn.execute("""
                CREATE TABLE IF NOT EXISTS escrow (
                    escrow_id TEXT PRIMARY KEY,
                    held INTEGER NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS escrow_movements (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    escrow_id TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    account BLOB NOT NULL,
                    amount INTEGER NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_movements_escrow ON escrow_movements(escrow_id);")

            # 6. Authenticated call nonces, one use per (auction, caller)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS nonces (
                    auction_id TEXT NOT NULL,
                    address BLOB NOT NULL,
                    nonce INTEGER NOT NULL,
                    PRIMARY KEY (auction_id, address, nonce)
                )
            """)

    # =========================================================================
    # Auction State
    # =========================================================================

    def save_auction_state(
        self,
        auction_id: str,
        meta: Dict[str, Any],
        bids: List[Tuple[int, bytes]],
        participants: List[Tuple[bytes, List[int], int, bool]],
        events: List[Tuple[int, str, dict, bytes]],
        escrow: Optional[Tuple[str, int, List[Tuple[str, bytes, int]]]] = None,
    ):
        """
        Atomically write the full auction state.

        Bids and events are append-only, so existing rows are left alone.
        `escrow` is (escrow_id, held, new movements); it is written in the
        same transaction so the ledger and the funds it accounts for never
        diverge on disk.
        """
        conn = self._get_conn()
        with conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO auctions
                    (auction_id, owner, start_time, deadline, ended,
                     winning_amount, winning_bidder, config)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    auction_id,
                    meta["owner"],
                    meta["start_time"],
                    meta["deadline"],
                    int(meta["ended"]),
                    meta["winning_amount"],
                    meta["winning_bidder"],
                    json.dumps(meta["config"], sort_keys=True),
                )
            )

            conn.executemany(
                "INSERT OR IGNORE INTO bids (auction_id, seq, amount, bidder) VALUES (?, ?, ?, ?)",
                [(auction_id, seq, amount, bidder) for seq, (amount, bidder) in enumerate(bids)]
            )

            conn.executemany(
                """
                INSERT OR REPLACE INTO participants
                    (auction_id, bidder, bid_history, refundable_balance, withdrawn)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    (auction_id, bidder, json.dumps(history), balance, int(withdrawn))
                    for bidder, history, balance, withdrawn in participants
                ]
            )

            if escrow is not None:
                escrow_id, held, movements = escrow
                conn.executemany(
                    "INSERT INTO escrow_movements (escrow_id, kind, account, amount) VALUES (?, ?, ?, ?)",
                    [(escrow_id, kind, account, amount) for kind, account, amount in movements]
                )
                conn.execute(
                    "INSERT OR REPLACE INTO escrow (escrow_id, held) VALUES (?, ?)",
                    (escrow_id, held)
                )

            conn.executemany(
                "INSERT OR IGNORE INTO events (auction_id, seq, name, payload, digest) VALUES (?, ?, ?, ?, ?)",
                [
                    (auction_id, seq, name, json.dumps(payload, sort_keys=True), digest)
                    for seq, name, payload, digest in events
                ]
            )

    def get_auction_meta(self, auction_id: str) -> Optional[Dict[str, Any]]:
        conn = self._get_conn()
        cursor = conn.execute("SELECT * FROM auctions WHERE auction_id = ?", (auction_id,))
        row = cursor.fetchone()
        if row is None:
            return None
        return {
            "auction_id": row["auction_id"],
            "owner": bytes(row["owner"]),
            "start_time": row["start_time"],
            "deadline": row["deadline"],
            "ended": bool(row["ended"]),
            "winning_amount": row["winning_amount"],
            "winning_bidder": bytes(row["winning_bidder"]) if row["winning_bidder"] is not None else None,
            "config": json.loads(row["config"]),
        }

    def get_bids(self, auction_id: str) -> List[Tuple[int, bytes]]:
        """Get (amount, bidder) in sequence order."""
        conn = self._get_conn()
        cursor = conn.execute(
            "SELECT amount, bidder FROM bids WHERE auction_id = ? ORDER BY seq ASC", (auction_id,)
        )
        return [(row["amount"], bytes(row["bidder"])) for row in cursor]

    def get_participants(self, auction_id: str) -> List[Tuple[bytes, List[int], int, bool]]:
        conn = self._get_conn()
        cursor = conn.execute(
            "SELECT bidder, bid_history, refundable_balance, withdrawn FROM participants WHERE auction_id = ?",
            (auction_id,)
        )
        return [
            (bytes(row["bidder"]), json.loads(row["bid_history"]), row["refundable_balance"], bool(row["withdrawn"]))
            for row in cursor
        ]

    def get_events(self, auction_id: str) -> List[Tuple[int, str, dict, bytes]]:
        conn = self._get_conn()
        cursor = conn.execute(
            "SELECT seq, name, payload, digest FROM events WHERE auction_id = ? ORDER BY seq ASC",
            (auction_id,)
        )
        return [
            (row["seq"], row["name"], json.loads(row["payload"]), bytes(row["digest"]))
            for row in cursor
        ]

    def list_auction_ids(self) -> List[str]:
        conn = self._get_conn()
        cursor = conn.execute("SELECT auction_id FROM auctions ORDER BY auction_id")
        return [row["auction_id"] for row in cursor]

    # =========================================================================
    # Escrow Operations
    # =========================================================================

    def get_escrow_held(self, escrow_id: str) -> int:
        conn = self._get_conn()
        cursor = conn.execute("SELECT held FROM escrow WHERE escrow_id = ?", (escrow_id,))
        row = cursor.fetchone()
        return row["held"] if row else 0

    def get_escrow_movements(self, escrow_id: str) -> List[Tuple[str, bytes, int]]:
        conn = self._get_conn()
        cursor = conn.execute(
            "SELECT kind, account, amount FROM escrow_movements WHERE escrow_id = ? ORDER BY id ASC",
            (escrow_id,)
        )
        return [(row["kind"], bytes(row["account"]), row["amount"]) for row in cursor]

    # =========================================================================
    # Nonces
    # =========================================================================

    def record_nonce(self, auction_id: str, address: bytes, nonce: int) -> bool:
        """Store a used nonce. Returns False if it was already used."""
        conn = self._get_conn()
        with conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO nonces (auction_id, address, nonce) VALUES (?, ?, ?)",
                (auction_id, address, nonce)
            )
        return cursor.rowcount == 1
