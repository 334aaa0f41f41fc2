"""
Payments - value transfer between participants and the auction escrow.

The auction engine only talks to the PaymentService protocol:

- collect(payer, amount): move a bid into escrow
- transfer(recipient, amount): pay out of escrow
- balance(): what escrow currently holds

EscrowPaymentService is the bundled in-process implementation. It never
partially applies a transfer: either the whole amount moves and the call
returns, or TransferFailure is raised and nothing changed.

The escrow does not write to storage itself. Movements stay unsaved until
the auction persists them together with its ledger in one transaction
(unsaved_movements / mark_saved), and an auction whose write fails rolls
the escrow back to a checkpoint taken before the operation.
"""

from dataclasses import dataclass
from typing import List, Protocol, Set, Tuple

from openbid.core.errors import TransferFailure
from openbid.utils.logger import get_logger

logger = get_logger("payments")


class PaymentService(Protocol):
    escrow_id: str

    def collect(self, payer: bytes, amount: int) -> None:
        ...

    def transfer(self, recipient: bytes, amount: int) -> None:
        ...

    def balance(self) -> int:
        ...

    def checkpoint(self) -> Tuple[int, int]:
        ...

    def rollback(self, checkpoint: Tuple[int, int]) -> None:
        ...

    def unsaved_movements(self) -> List["Movement"]:
        ...

    def mark_saved(self) -> None:
        ...


@dataclass(frozen=True)
class Movement:
    """One entry of the escrow journal."""
    kind: str  # "collect" or "transfer"
    account: bytes
    amount: int


class EscrowPaymentService:
    """
    In-process escrow account.

    Attributes:
        held: Amount currently in escrow
        journal: Every successful collection and payout, in order
    """

    def __init__(self, storage_manager=None, escrow_id: str = "default"):
        self.held = 0
        self.journal: List[Movement] = []
        self._rejected: Set[bytes] = set()
        self._insolvent_payers: Set[bytes] = set()
        self._saved = 0

        self.storage_manager = storage_manager
        self.escrow_id = escrow_id

        if storage_manager:
            self._load_from_storage()

    # =========================================================================
    # Failure injection
    # =========================================================================

    def reject_recipient(self, recipient: bytes) -> None:
        """Make every future transfer to `recipient` fail."""
        self._rejected.add(recipient)

    def reject_payer(self, payer: bytes) -> None:
        """Make every future collection from `payer` fail."""
        self._insolvent_payers.add(payer)

    def accept_recipient(self, recipient: bytes) -> None:
        self._rejected.discard(recipient)

    # =========================================================================
    # PaymentService
    # =========================================================================

    def collect(self, payer: bytes, amount: int) -> None:
        if amount < 0:
            raise ValueError(f"Cannot collect negative amount {amount}")
        if payer in self._insolvent_payers:
            raise TransferFailure(payer, amount, "payer declined")

        self.held += amount
        self._record(Movement("collect", payer, amount))

    def transfer(self, recipient: bytes, amount: int) -> None:
        if amount < 0:
            raise ValueError(f"Cannot transfer negative amount {amount}")
        if recipient in self._rejected:
            raise TransferFailure(recipient, amount, "recipient rejected transfer")
        if amount > self.held:
            raise TransferFailure(recipient, amount, f"escrow holds only {self.held}")

        self.held -= amount
        self._record(Movement("transfer", recipient, amount))

    def balance(self) -> int:
        return self.held

    # =========================================================================
    # Queries
    # =========================================================================

    def paid_to(self, account: bytes) -> int:
        """Total transferred out of escrow to `account`."""
        return sum(m.amount for m in self.journal if m.kind == "transfer" and m.account == account)

    def collected_from(self, account: bytes) -> int:
        return sum(m.amount for m in self.journal if m.kind == "collect" and m.account == account)

    # =========================================================================
    # Transactions
    # =========================================================================

    def checkpoint(self) -> Tuple[int, int]:
        """Opaque marker for rollback(): (held, journal length)."""
        return self.held, len(self.journal)

    def rollback(self, checkpoint: Tuple[int, int]) -> None:
        """Undo every movement recorded since `checkpoint`."""
        held, length = checkpoint
        if length < len(self.journal):
            logger.warning(f"Escrow {self.escrow_id}: rolling back {len(self.journal) - length} movements")
        self.held = held
        del self.journal[length:]
        self._saved = min(self._saved, length)

    def unsaved_movements(self) -> List[Movement]:
        return self.journal[self._saved:]

    def mark_saved(self) -> None:
        self._saved = len(self.journal)

    # =========================================================================
    # Persistence
    # =========================================================================

    def _record(self, movement: Movement) -> None:
        self.journal.append(movement)
        logger.debug(f"Escrow {movement.kind} {movement.amount} ({movement.account.hex()[:8]}), held={self.held}")

    def _load_from_storage(self) -> None:
        held, movements = self.storage_manager.load_escrow(self.escrow_id)
        self.held = held
        self.journal = [Movement(kind, account, amount) for kind, account, amount in movements]
        self._saved = len(self.journal)
        if self.journal:
            logger.info(f"Loaded escrow {self.escrow_id}: held={self.held}, {len(self.journal)} movements")
