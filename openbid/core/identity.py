"""
Caller identity - resolves who is invoking an auction operation.

Callers sign a canonical encoding of (auction_id, action, params, nonce);
the identity service recovers the signer's address from the signature. The
engine only ever sees the resolved 20-byte address, so any other
authentication scheme can be swapped in behind the same interface.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Set, Tuple

from openbid.crypto import (
    address_from_public_key,
    bytes_to_hex,
    keccak256,
    recover_public_key,
    sign,
)
from openbid.core.errors import Unauthorized
from openbid.utils.logger import get_logger

logger = get_logger("identity")

DOMAIN_TAG = b"openbid.call.v1"


@dataclass
class SignedCall:
    """
    An authenticated request to run one auction operation.

    Attributes:
        auction_id: Which auction the call targets
        action: Operation name (e.g. "place_bid")
        params: JSON-serializable arguments
        nonce: Caller-chosen value, accepted once per caller
        signature: 65-byte recoverable signature over signing_hash()
    """
    auction_id: str
    action: str
    params: Dict[str, Any] = field(default_factory=dict)
    nonce: int = 0
    signature: bytes = b""

    def signing_hash(self) -> bytes:
        body = json.dumps(
            {
                "auction_id": self.auction_id,
                "action": self.action,
                "params": self.params,
                "nonce": self.nonce,
            },
            sort_keys=True,
            separators=(",", ":"),
        ).encode()
        return keccak256(DOMAIN_TAG + body)

    def sign(self, private_key: bytes) -> "SignedCall":
        self.signature = sign(self.signing_hash(), private_key)
        return self


def sign_call(
    auction_id: str,
    action: str,
    params: Dict[str, Any],
    private_key: bytes,
    nonce: int = 0,
) -> SignedCall:
    """Build and sign a call in one step."""
    call = SignedCall(auction_id=auction_id, action=action, params=params, nonce=nonce)
    return call.sign(private_key)


class IdentityService:
    """
    Resolves signed calls to caller addresses.

    Rejects replays: each (address, nonce) pair authenticates once. With a
    storage manager the used pairs are kept in the auction database, so a
    call cannot be replayed against a later process either.
    """

    def __init__(self, auction_id: str, storage_manager=None):
        self.auction_id = auction_id
        self.storage_manager = storage_manager
        self._seen: Set[Tuple[bytes, int]] = set()

    def authenticate(self, call: SignedCall) -> bytes:
        """
        Recover the caller's address.

        Raises:
            Unauthorized: On a foreign auction id, bad signature or replay
        """
        if call.auction_id != self.auction_id:
            raise Unauthorized(f"Call targets auction {call.auction_id!r}, not {self.auction_id!r}")

        public_key = recover_public_key(call.signing_hash(), call.signature)
        if public_key is None:
            raise Unauthorized("Invalid signature")

        caller = address_from_public_key(public_key)
        if not self._use_nonce(caller, call.nonce):
            raise Unauthorized(f"Replayed call from {bytes_to_hex(caller)} (nonce {call.nonce})")

        logger.debug(f"Authenticated {call.action} from {bytes_to_hex(caller)[:10]}...")
        return caller

    def _use_nonce(self, caller: bytes, nonce: int) -> bool:
        if self.storage_manager is not None:
            return self.storage_manager.record_nonce(self.auction_id, caller, nonce)

        if (caller, nonce) in self._seen:
            return False
        self._seen.add((caller, nonce))
        return True
