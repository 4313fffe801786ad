"""
Transaction discovery.

Pulls confirmed transfer transactions of the configured discovery sources
from the ledger node. Each source keeps its own page cursor; sources that
never reached their last page are served before synchronized sources, which
then take turns.
"""

from typing import Any, Dict, List, Optional

from elevate.core.database import Database
from elevate.models.ledger import Transaction
from elevate.services.job_lock import JobLock
from elevate.services.ledger_client import (
    LedgerClient, TransactionInfo, TransactionSearchFilter, TRANSFER_TRANSACTION_TYPE
)
from elevate.services.state_store import StateStore

from .base import DiscoveryJob, DiscoveryStatus


class TransactionDiscovery(DiscoveryJob):
    """Discovers transactions involving the discovery sources."""

    name = "discovery:transactions"

    def __init__(
        self,
        database: Database,
        state_store: StateStore,
        job_lock: JobLock,
        ledger: LedgerClient,
        sources: List[str],
        page_size: int = 100,
        max_pages: int = 5,
    ):
        self.sources = list(sources)
        super().__init__(database, state_store, job_lock, page_size)
        self.ledger = ledger
        self.max_pages = max_pages

    def default_state(self) -> Dict[str, Any]:
        return {
            "totalNumberOfTransactions": 0,
            "lastUsedAccount": None,
            "sources": {},
        }

    def source_cursor(self, source: str) -> Dict[str, Any]:
        return self.state["sources"].setdefault(source, {"lastPageNumber": 1, "sync": False})

    def next_source(self) -> Optional[str]:
        """Pick the source of this tick."""
        if not self.sources:
            return None

        for source in self.sources:
            cursor = self.state["sources"].get(source)
            if cursor is None or not cursor.get("sync"):
                return source

        last = self.state.get("lastUsedAccount")
        if last in self.sources:
            return self.sources[(self.sources.index(last) + 1) % len(self.sources)]
        return self.sources[0]

    async def execute(self) -> None:
        source = self.next_source()
        if source is None:
            self.logger.warning("No discovery source configured")
            return

        cursor = dict(self.source_cursor(source))
        page_number = cursor["lastPageNumber"]
        synchronized = cursor["sync"]
        fetched: List[TransactionInfo] = []

        self.set_status(DiscoveryStatus.FETCHING)
        for _ in range(self.max_pages):
            page = await self.ledger.search_transactions(
                TransactionSearchFilter(
                    address=source,
                    page_number=page_number,
                    page_size=self.page_size,
                    types=[TRANSFER_TRANSACTION_TYPE],
                )
            )
            fetched.extend(page.data)
            if page.is_last_page():
                synchronized = True
                break
            page_number += 1

        records = [await self._to_record(source, info) for info in fetched]
        batch = await self.persist_batch(records)

        self.state["sources"][source] = {"lastPageNumber": page_number, "sync": synchronized}
        self.state["totalNumberOfTransactions"] += batch.inserted
        self.state["lastUsedAccount"] = source

        self.logger.info(
            "Transactions discovered",
            source=source,
            fetched=len(fetched),
            inserted=batch.inserted,
            skipped=batch.skipped,
            page=page_number,
            sync=synchronized,
        )

    async def _to_record(self, source: str, info: TransactionInfo) -> Transaction:
        signer = await self.ledger.get_account_address(info.signer_public_key)
        return Transaction(
            transaction_hash=info.hash,
            source_address=source,
            signer_address=signer,
            recipient_address=info.recipient_address,
            transaction_mode="outgoing" if signer == source else "incoming",
            transaction_type=info.type,
            transaction_assets=[
                {"mosaicId": m.mosaic_id, "amount": m.amount} for m in info.mosaics
            ],
            transaction_message=info.message,
            creation_block=info.height,
        )
