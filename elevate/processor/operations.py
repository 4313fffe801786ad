"""
Contract operations.

Transfers carry dApp contracts in their plain message, either as a JSON
object naming its `contract` or, for earn contracts, as a bare `YYYYMMDD`
date. One job per configured contract pages through the local transactions
matching its query and stores each execution once, keyed by transaction hash.
"""

import json
import re
from typing import Any, Dict, Optional, Sequence, Tuple

from sqlalchemy import select

from elevate.core.config import OperationParameters
from elevate.core.database import Database
from elevate.discovery.base import DiscoveryJob, SourcePage
from elevate.models.ledger import Transaction
from elevate.models.operation import Operation
from elevate.services.job_lock import JobLock
from elevate.services.state_store import StateStore


DATE_MESSAGE = re.compile(r"^[0-9]{8}$")


def parse_operation(message: Optional[str]) -> Optional[Tuple[str, Dict[str, Any]]]:
    """Contract signature and body carried by `message`, or None."""
    if not message:
        return None

    if DATE_MESSAGE.match(message):
        return "elevate:earn", {"contract": "elevate:earn", "version": 0, "date": message}

    if message.startswith("{") and message.endswith("}"):
        try:
            payload = json.loads(message)
        except ValueError:
            return None
        signature = payload.get("contract") if isinstance(payload, dict) else None
        if not isinstance(signature, str) or not signature:
            return None
        return signature, payload

    return None


def user_of(transaction: Transaction) -> str:
    if transaction.transaction_mode == "incoming":
        return transaction.signer_address
    return transaction.recipient_address


class OperationProcessor(DiscoveryJob):
    """Stores the executions of one contract."""

    def __init__(
        self,
        database: Database,
        state_store: StateStore,
        job_lock: JobLock,
        operation: OperationParameters,
        page_size: int = 100,
    ):
        self.operation = operation
        self.name = f"processor:operations:{operation.contract}"
        super().__init__(database, state_store, job_lock, page_size)

    def default_state(self) -> Dict[str, Any]:
        return {"lastPageNumber": 1, "totalNumberOfOperations": 0}

    async def fetch_source_page(self, page_number: int) -> SourcePage:
        query = select(Transaction).where(Transaction.transaction_message.is_not(None))
        if self.operation.source_address:
            query = query.where(Transaction.source_address == self.operation.source_address)
        if self.operation.transaction_mode:
            query = query.where(Transaction.transaction_mode == self.operation.transaction_mode)

        async with self.database.session() as session:
            result = await session.execute(
                query.order_by(Transaction.id.asc())
                .offset((page_number - 1) * self.page_size)
                .limit(self.page_size)
            )
            transactions = list(result.scalars().all())
        return SourcePage(items=transactions, page_number=page_number, page_size=self.page_size)

    async def pending_work(self, page: SourcePage) -> Sequence[Operation]:
        candidates = []
        for transaction in page.items:
            parsed = parse_operation(transaction.transaction_message)
            if parsed is None or parsed[0] != self.operation.contract:
                continue
            signature, payload = parsed
            candidates.append(Operation(
                transaction_hash=transaction.transaction_hash,
                user_address=user_of(transaction),
                contract_signature=signature,
                contract_payload=payload,
                creation_block=transaction.creation_block,
            ))
        if not candidates:
            return []

        async with self.database.session() as session:
            result = await session.execute(
                select(Operation.transaction_hash).where(
                    Operation.transaction_hash.in_([o.transaction_hash for o in candidates])
                )
            )
            known = set(result.scalars().all())
        return [o for o in candidates if o.transaction_hash not in known]

    async def execute(self) -> None:
        page, operations = await self.next_source_page()

        batch = await self.persist_batch(list(operations))
        self.state["totalNumberOfOperations"] += batch.inserted
        self.state["lastPageNumber"] = page.page_number if page.is_last else page.page_number + 1

        if batch.inserted:
            self.logger.info(
                "Operations stored",
                contract=self.operation.contract,
                page=page.page_number,
                inserted=batch.inserted,
                total=self.state["totalNumberOfOperations"],
            )
