from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from openbid.core.storage.sqlite_adapter import SQLiteAdapter
from openbid.utils.logger import get_logger

logger = get_logger("storage.manager")


class StorageManager:
    """
    Manages persistent storage for auctions.

    Coordinates data persistence using SQLite adapter.
    Handles:
    - Auction state (metadata, bid sequence, participant ledgers)
    - Event log
    - Escrow balance and journal
    - Used call nonces
    """

    def __init__(self, data_dir: Path, db_name: str = "auctions.db"):
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / db_name
        self.adapter = SQLiteAdapter(self.db_path)

        logger.info(f"StorageManager initialized at {self.db_path}")

    def close(self):
        self.adapter.close()

    # =========================================================================
    # Auction State
    # =========================================================================

    def persist_auction(
        self,
        auction_id: str,
        meta: Dict[str, Any],
        bids: List[Tuple[int, bytes]],
        participants: List[Tuple[bytes, List[int], int, bool]],
        events: List[Tuple[int, str, dict, bytes]],
        escrow: Optional[Tuple[str, int, List[Tuple[str, bytes, int]]]] = None,
    ):
        """
        Atomically persist the auction after a committed operation.

        `escrow` is (escrow_id, held, new movements) and lands in the same
        transaction as the ledger.
        """
        self.adapter.save_auction_state(auction_id, meta, bids, participants, events, escrow)

    def load_auction(self, auction_id: str) -> Optional[Tuple[Dict[str, Any], List, List, List]]:
        """
        Load full auction state.

        Returns:
            (meta, bids, participants, events), or None if not stored
            bids: List[(amount, bidder)]
            participants: List[(bidder, history, balance, withdrawn)]
            events: List[(seq, name, payload, digest)]
        """
        meta = self.adapter.get_auction_meta(auction_id)
        if meta is None:
            return None
        bids = self.adapter.get_bids(auction_id)
        participants = self.adapter.get_participants(auction_id)
        events = self.adapter.get_events(auction_id)
        return meta, bids, participants, events

    def has_auction(self, auction_id: str) -> bool:
        return self.adapter.get_auction_meta(auction_id) is not None

    def list_auctions(self) -> List[str]:
        return self.adapter.list_auction_ids()

    # =========================================================================
    # Escrow
    # =========================================================================

    def load_escrow(self, escrow_id: str) -> Tuple[int, List[Tuple[str, bytes, int]]]:
        """
        Returns:
            (held, movements) with movements as [(kind, account, amount)]
        """
        return self.adapter.get_escrow_held(escrow_id), self.adapter.get_escrow_movements(escrow_id)

    # =========================================================================
    # Nonces
    # =========================================================================

    def record_nonce(self, auction_id: str, address: bytes, nonce: int) -> bool:
        """Mark (address, nonce) as used for auction_id. False on reuse."""
        return self.adapter.record_nonce(auction_id, address, nonce)
