"""
REST client for the ledger node (Symbol-style REST gateway of dHealth Network).
Provides paginated search of blocks and confirmed transactions, account
address resolution, transaction announcement and status lookup.
"""

import asyncio
import base64
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, Optional, TypeVar

import aiohttp
import structlog

from elevate.core.exceptions import RemoteUnavailableError


logger = structlog.get_logger(__name__)

T = TypeVar("T")

TRANSFER_TRANSACTION_TYPE = 16724


@dataclass
class Page(Generic[T]):
    """One page of a remote search."""
    data: List[T]
    page_number: int
    page_size: int

    def is_last_page(self) -> bool:
        return len(self.data) < self.page_size


@dataclass
class BlockInfo:
    """Block information from the ledger node."""
    height: int
    hash: str
    harvester: str
    timestamp: int
    transaction_count: int


@dataclass
class MosaicAmount:
    mosaic_id: str
    amount: int


@dataclass
class TransactionInfo:
    """Confirmed transaction information from the ledger node."""
    hash: str
    height: int
    type: int
    signer_public_key: str
    recipient_address: Optional[str] = None
    mosaics: List[MosaicAmount] = field(default_factory=list)
    message: Optional[str] = None


@dataclass
class BlockSearchFilter:
    """Query of `GET /blocks`. With `order="desc"`, `offset` is exclusive."""
    offset: Optional[int] = None
    order_by: str = "height"
    order: str = "desc"
    page_number: int = 1
    page_size: int = 100

    def to_params(self) -> Dict[str, str]:
        params = {
            "orderBy": self.order_by,
            "order": self.order,
            "pageNumber": str(self.page_number),
            "pageSize": str(self.page_size),
        }
        if self.offset is not None:
            params["offset"] = str(self.offset)
        return params


@dataclass
class TransactionSearchFilter:
    """Query of `GET /transactions/confirmed` for one address."""
    address: str
    page_number: int = 1
    page_size: int = 100
    order: str = "asc"
    types: List[int] = field(default_factory=lambda: [TRANSFER_TRANSACTION_TYPE])

    def to_params(self) -> List[tuple]:
        params = [
            ("address", self.address),
            ("pageNumber", str(self.page_number)),
            ("pageSize", str(self.page_size)),
            ("order", self.order),
            ("embedded", "true"),
        ]
        params.extend(("type", str(t)) for t in self.types)
        return params


def decode_address(encoded: str) -> str:
    """Convert a hex encoded address (REST representation) to its base32 form."""
    if len(encoded) == 48:
        return base64.b32encode(bytes.fromhex(encoded)).decode().rstrip("=")
    return encoded


def decode_message(message: Any) -> Optional[str]:
    """Decode a plain transfer message. Encrypted or binary messages are dropped."""
    if not message:
        return None
    if isinstance(message, dict):
        # older gateways return {type, payload}
        if message.get("type", 0) != 0:
            return None
        message = message.get("payload", "")
        raw = bytes.fromhex(message)
    else:
        raw = bytes.fromhex(message)
        if not raw or raw[0] != 0:
            return None
        raw = raw[1:]
    return raw.decode("utf-8", errors="replace")


def parse_block(entry: Dict[str, Any]) -> BlockInfo:
    meta = entry.get("meta", {})
    block = entry["block"]
    return BlockInfo(
        height=int(block["height"]),
        hash=meta.get("hash", ""),
        harvester=decode_address(block.get("beneficiaryAddress", "")),
        timestamp=int(block.get("timestamp", 0)),
        transaction_count=int(meta.get("totalTransactionsCount", meta.get("transactionsCount", 0))),
    )


def parse_transaction(entry: Dict[str, Any]) -> TransactionInfo:
    meta = entry.get("meta", {})
    transaction = entry["transaction"]
    recipient = transaction.get("recipientAddress")
    return TransactionInfo(
        hash=meta["hash"],
        height=int(meta["height"]),
        type=int(transaction.get("type", 0)),
        signer_public_key=transaction["signerPublicKey"],
        recipient_address=decode_address(recipient) if recipient else None,
        mosaics=[
            MosaicAmount(mosaic_id=m["id"], amount=int(m["amount"]))
            for m in transaction.get("mosaics", [])
        ],
        message=decode_message(transaction.get("message")),
    )


class LedgerClient:
    """
    Async REST client for one ledger node.

    Every call carries its own timeout; connection problems, timeouts and
    server errors surface as `RemoteUnavailableError`.
    """

    def __init__(self, node_url: str, timeout: float = 15.0):
        self.node_url = node_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None
        self._addresses: Dict[str, str] = {}
        self.logger = logger.bind(service="ledger_client")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def _request(
        self,
        method: str,
        path: str,
        params: Any = None,
        json: Optional[Dict[str, Any]] = None,
        allow_not_found: bool = False,
    ) -> Optional[Any]:
        url = f"{self.node_url}{path}"
        try:
            async with self._get_session().request(
                method, url, params=params, json=json, timeout=self.timeout
            ) as response:
                if allow_not_found and response.status == 404:
                    return None
                if response.status >= 400:
                    body = await response.text()
                    raise RemoteUnavailableError(
                        f"Ledger node answered {response.status} on {path}",
                        {"status": response.status, "url": url, "body": body[:500]},
                    )
                return await response.json(content_type=None)
        except asyncio.TimeoutError:
            raise RemoteUnavailableError(f"Ledger node timed out on {path}", {"url": url})
        except aiohttp.ClientError as e:
            raise RemoteUnavailableError(
                f"Ledger node unreachable on {path}: {e}", {"url": url}
            ) from e

    async def search_blocks(self, search: BlockSearchFilter) -> Page[BlockInfo]:
        payload = await self._request("GET", "/blocks", params=search.to_params())
        pagination = payload.get("pagination", {})
        blocks = [parse_block(entry) for entry in payload.get("data", [])]
        self.logger.debug("Blocks fetched", offset=search.offset, count=len(blocks))
        return Page(
            data=blocks,
            page_number=int(pagination.get("pageNumber", search.page_number)),
            page_size=int(pagination.get("pageSize", search.page_size)),
        )

    async def search_transactions(self, search: TransactionSearchFilter) -> Page[TransactionInfo]:
        payload = await self._request(
            "GET", "/transactions/confirmed", params=search.to_params()
        )
        pagination = payload.get("pagination", {})
        transactions = [parse_transaction(entry) for entry in payload.get("data", [])]
        self.logger.debug(
            "Transactions fetched",
            address=search.address,
            page=search.page_number,
            count=len(transactions),
        )
        return Page(
            data=transactions,
            page_number=int(pagination.get("pageNumber", search.page_number)),
            page_size=int(pagination.get("pageSize", search.page_size)),
        )

    async def get_account_address(self, public_key: str) -> str:
        """Resolve the address of a public key. Results are cached per client."""
        if public_key in self._addresses:
            return self._addresses[public_key]

        payload = await self._request("GET", f"/accounts/{public_key}")
        address = decode_address(payload["account"]["address"])
        self._addresses[public_key] = address
        return address

    async def announce(self, payload: str) -> None:
        await self._request("PUT", "/transactions", json={"payload": payload})
        self.logger.info("Transaction announced")

    async def get_transaction_status(self, transaction_hash: str) -> str:
        """Return the group of a transaction: confirmed, unconfirmed, failed or unknown."""
        status = await self._request(
            "GET", f"/transactionStatus/{transaction_hash}", allow_not_found=True
        )
        if status is None:
            return "unknown"
        return status.get("group", "unknown")
