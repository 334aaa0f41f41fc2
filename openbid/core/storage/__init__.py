"""
Persistent Storage Module.

Provides SQLite-backed persistence for:
- Auction state (metadata, bids, participant ledgers)
- Event log (hash-chained audit trail)
- Escrow balance and journal
"""

from openbid.core.storage.sqlite_adapter import SQLiteAdapter
from openbid.core.storage.storage_manager import StorageManager

__all__ = ["SQLiteAdapter", "StorageManager"]
