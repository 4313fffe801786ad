"""
Test ledger node response parsing.
"""

import base64

from elevate.services.ledger_client import (
    BlockSearchFilter,
    Page,
    TransactionSearchFilter,
    decode_address,
    decode_message,
    parse_block,
    parse_transaction,
)


ADDRESS = "NDAPPH6ZGD4D6LBWFLGFZUT2KQ5OLBLU32K3HNY"
ADDRESS_HEX = base64.b32decode(ADDRESS + "=").hex().upper()


def test_decode_address():
    assert len(ADDRESS_HEX) == 48
    assert decode_address(ADDRESS_HEX) == ADDRESS
    # already decoded
    assert decode_address(ADDRESS) == ADDRESS


def test_decode_message():
    assert decode_message("00" + "hello".encode().hex()) == "hello"
    assert decode_message({"type": 0, "payload": "hi".encode().hex()}) == "hi"
    assert decode_message({"type": 1, "payload": "abcd"}) is None
    assert decode_message("01abcd") is None
    assert decode_message(None) is None


def test_parse_block():
    block = parse_block({
        "meta": {"hash": "ABC", "totalTransactionsCount": "3"},
        "block": {"height": "1200", "timestamp": "99000", "beneficiaryAddress": ADDRESS_HEX},
    })

    assert block.height == 1200
    assert block.hash == "ABC"
    assert block.harvester == ADDRESS
    assert block.timestamp == 99000
    assert block.transaction_count == 3


def test_parse_transaction():
    info = parse_transaction({
        "meta": {"hash": "TXHASH", "height": "42"},
        "transaction": {
            "type": 16724,
            "signerPublicKey": "PUBKEY",
            "recipientAddress": ADDRESS_HEX,
            "mosaics": [{"id": "5A4935C1D66E6AC4", "amount": "250"}],
            "message": "00" + "elevate".encode().hex(),
        },
    })

    assert info.hash == "TXHASH"
    assert info.height == 42
    assert info.recipient_address == ADDRESS
    assert info.mosaics[0].mosaic_id == "5A4935C1D66E6AC4"
    assert info.mosaics[0].amount == 250
    assert info.message == "elevate"


def test_page_is_last_when_short():
    assert Page(data=[1, 2], page_number=1, page_size=3).is_last_page()
    assert not Page(data=[1, 2, 3], page_number=1, page_size=3).is_last_page()


def test_search_parameters():
    params = BlockSearchFilter(offset=201, page_size=100).to_params()
    assert params["offset"] == "201"
    assert params["order"] == "desc"
    assert params["orderBy"] == "height"

    tx_params = TransactionSearchFilter(address=ADDRESS, page_number=2).to_params()
    assert ("address", ADDRESS) in tx_params
    assert ("pageNumber", "2") in tx_params
    assert ("type", "16724") in tx_params
