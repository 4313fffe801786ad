"""
Payout signer.

Signs a canonical transfer body with the issuer's ed25519 key. The resulting
payload and hash are opaque to the rest of the pipeline: they are stored on
the payout record and announced to the ledger node as-is.
"""

import hashlib
import json
import uuid
from dataclasses import dataclass
from typing import Optional

import base58
import structlog
from solders.keypair import Keypair

from elevate.core.exceptions import SigningError


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SignedPayout:
    """A signed transfer ready for broadcast."""
    payload: str
    hash: str


class Signer:
    """ed25519 signer holding the payout issuer key."""

    def __init__(self, private_key: str):
        self._private_key = private_key
        self._keypair: Optional[Keypair] = None
        self.logger = logger.bind(service="signer")

    @property
    def keypair(self) -> Keypair:
        if self._keypair is None:
            if not self._private_key:
                raise SigningError("Payout issuer private key is not configured")
            try:
                self._keypair = Keypair.from_base58_string(self._private_key)
            except Exception as e:
                raise SigningError(f"Invalid payout issuer private key: {e}") from e
        return self._keypair

    @property
    def public_key(self) -> str:
        return str(self.keypair.pubkey())

    @staticmethod
    def transfer_body(asset_id: str, amount: int, recipient_address: str, signer: str, nonce: str) -> bytes:
        """Canonical serialization of a transfer."""
        return json.dumps(
            {
                "asset": asset_id,
                "amount": amount,
                "recipient": recipient_address,
                "signer": signer,
                "nonce": nonce,
            },
            sort_keys=True,
            separators=(",", ":"),
        ).encode()

    def sign(self, asset_id: str, amount: int, recipient_address: str) -> SignedPayout:
        """Sign a transfer of `amount` units of `asset_id` to `recipient_address`."""
        if amount <= 0:
            raise SigningError(
                "Refusing to sign a non-positive amount",
                {"asset_id": asset_id, "amount": amount, "recipient": recipient_address},
            )
        if not recipient_address:
            raise SigningError("Missing recipient address", {"asset_id": asset_id})

        keypair = self.keypair
        body = self.transfer_body(
            asset_id, amount, recipient_address, str(keypair.pubkey()), uuid.uuid4().hex
        )
        signature = bytes(keypair.sign_message(body))
        signed = body + signature

        result = SignedPayout(
            payload=base58.b58encode(signed).decode(),
            hash=hashlib.sha3_256(signed).hexdigest().upper(),
        )
        self.logger.debug(
            "Transfer signed",
            asset_id=asset_id,
            amount=amount,
            recipient=recipient_address,
            hash=result.hash,
        )
        return result
