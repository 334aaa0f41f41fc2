"""
Auction events and the audit feed they are published to.

Each published event becomes an AuditRecord whose digest commits to the
previous record's digest:

    digest_n = keccak256(digest_{n-1} || canonical_json(event_n))

with digest_{-1} = 32 zero bytes. Rewriting or dropping any past record
changes every later digest, which verify_chain() detects.
"""

import json
from dataclasses import dataclass, fields
from typing import Callable, ClassVar, Dict, List, Optional, Type

from openbid.crypto import keccak256
from openbid.utils.logger import get_logger

logger = get_logger("events")

GENESIS_DIGEST = bytes(32)


# =============================================================================
# Events
# =============================================================================


@dataclass(frozen=True)
class AuctionEvent:
    """Base class; subclasses set `name` and their own fields."""
    name: ClassVar[str] = "AuctionEvent"

    def payload(self) -> dict:
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            data[f.name] = "0x" + value.hex() if isinstance(value, bytes) else value
        return data


@dataclass(frozen=True)
class NewOffer(AuctionEvent):
    name: ClassVar[str] = "NewOffer"
    bidder: bytes
    amount: int


@dataclass(frozen=True)
class PartialRefund(AuctionEvent):
    name: ClassVar[str] = "PartialRefund"
    bidder: bytes
    amount: int


@dataclass(frozen=True)
class AuctionEndedEvent(AuctionEvent):
    name: ClassVar[str] = "AuctionEnded"
    winner: Optional[bytes]
    amount: int


@dataclass(frozen=True)
class EmergencyWithdrawal(AuctionEvent):
    name: ClassVar[str] = "EmergencyWithdrawal"
    owner: bytes
    amount: int


EVENT_TYPES: Dict[str, Type[AuctionEvent]] = {
    cls.name: cls for cls in (NewOffer, PartialRefund, AuctionEndedEvent, EmergencyWithdrawal)
}


def event_from_payload(name: str, payload: dict) -> AuctionEvent:
    """Rebuild an event from its stored name and payload."""
    cls = EVENT_TYPES.get(name)
    if cls is None:
        raise ValueError(f"Unknown event type: {name}")

    kwargs = {}
    for f in fields(cls):
        value = payload[f.name]
        if isinstance(value, str) and value.startswith("0x"):
            value = bytes.fromhex(value[2:])
        kwargs[f.name] = value
    return cls(**kwargs)


# =============================================================================
# Audit Feed
# =============================================================================


@dataclass(frozen=True)
class AuditRecord:
    sequence: int
    event: AuctionEvent
    digest: bytes


def encode_event(event: AuctionEvent) -> bytes:
    body = {"event": event.name, **event.payload()}
    return json.dumps(body, sort_keys=True, separators=(",", ":")).encode()


def chain_digest(previous: bytes, event: AuctionEvent) -> bytes:
    return keccak256(previous + encode_event(event))


Subscriber = Callable[[AuctionEvent], None]


class EventFeed:
    """
    Ordered, hash-chained event log with synchronous subscribers.

    Subscribers run after the emitting operation has committed; an exception
    in one subscriber is logged and does not affect the auction or the other
    subscribers.
    """

    def __init__(self):
        self.records: List[AuditRecord] = []
        self._subscribers: List[Subscriber] = []

    @property
    def head(self) -> bytes:
        return self.records[-1].digest if self.records else GENESIS_DIGEST

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register a callback for every future event.

        Returns:
            A function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def append(self, event: AuctionEvent) -> AuditRecord:
        """Chain an event onto the log without notifying subscribers."""
        record = AuditRecord(
            sequence=len(self.records),
            event=event,
            digest=chain_digest(self.head, event),
        )
        self.records.append(record)
        logger.debug(f"Event #{record.sequence} {event.name}: {event.payload()}")
        return record

    def notify(self, event: AuctionEvent) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception(f"Subscriber {callback!r} failed on {event.name}")

    def publish(self, event: AuctionEvent) -> AuditRecord:
        record = self.append(event)
        self.notify(event)
        return record

    def events(self, name: Optional[str] = None) -> List[AuctionEvent]:
        return [r.event for r in self.records if name is None or r.event.name == name]

    def restore(self, records: List[AuditRecord]) -> None:
        self.records = list(records)

    def verify_chain(self) -> bool:
        """Recompute every digest from the start of the log."""
        previous = GENESIS_DIGEST
        for i, record in enumerate(self.records):
            if record.sequence != i:
                return False
            expected = chain_digest(previous, record.event)
            if expected != record.digest:
                logger.warning(f"Audit chain broken at record #{i}")
                return False
            previous = expected
        return True

    def __len__(self) -> int:
        return len(self.records)
