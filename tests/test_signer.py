"""
Test payout signing.
"""

import hashlib
import json

import base58
import pytest
from solders.keypair import Keypair
from solders.signature import Signature

from elevate.core.exceptions import SigningError
from elevate.services.signer import Signer


def test_signed_payload_verifies_with_issuer_key(issuer):
    signer = Signer(str(issuer))
    signed = signer.sign("5A4935C1D66E6AC4", 1500, "NRECIPIENT")

    raw = base58.b58decode(signed.payload)
    body, signature = raw[:-64], raw[-64:]

    assert Signature(signature).verify(issuer.pubkey(), body)
    assert json.loads(body) == {
        "amount": 1500,
        "asset": "5A4935C1D66E6AC4",
        "nonce": json.loads(body)["nonce"],
        "recipient": "NRECIPIENT",
        "signer": str(issuer.pubkey()),
    }
    assert signed.hash == hashlib.sha3_256(raw).hexdigest().upper()


def test_each_signature_is_unique(issuer):
    signer = Signer(str(issuer))
    first = signer.sign("5A4935C1D66E6AC4", 1, "NRECIPIENT")
    second = signer.sign("5A4935C1D66E6AC4", 1, "NRECIPIENT")
    assert first.hash != second.hash


def test_public_key_matches_keypair():
    keypair = Keypair()
    assert Signer(str(keypair)).public_key == str(keypair.pubkey())


@pytest.mark.parametrize("amount", [0, -5])
def test_non_positive_amount_is_refused(issuer, amount):
    with pytest.raises(SigningError):
        Signer(str(issuer)).sign("5A4935C1D66E6AC4", amount, "NRECIPIENT")


def test_missing_recipient_is_refused(issuer):
    with pytest.raises(SigningError):
        Signer(str(issuer)).sign("5A4935C1D66E6AC4", 10, "")


def test_missing_or_invalid_key():
    with pytest.raises(SigningError, match="not configured"):
        Signer("").sign("5A4935C1D66E6AC4", 10, "NRECIPIENT")
    with pytest.raises(SigningError, match="Invalid"):
        Signer("not-a-key").sign("5A4935C1D66E6AC4", 10, "NRECIPIENT")
