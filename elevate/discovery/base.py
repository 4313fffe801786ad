"""
Generic discovery job.

Discovery jobs page through *source* records, derive the work they imply,
and persist new ledger records idempotently. The cursor advances only after
the batch of a tick has been committed.

Local source tables are paged in insertion order: a record stored after the
cursor moved on always lands on the last page, never on a page already read.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Generic, List, Sequence, Tuple, TypeVar

from sqlalchemy import select

from elevate.core.database import Database
from elevate.models.base import BaseModel
from elevate.models.dto import to_query
from elevate.scheduler.base import StatefulJob
from elevate.services.job_lock import JobLock
from elevate.services.state_store import StateStore


S = TypeVar("S")


class DiscoveryStatus(Enum):
    """Phase of a discovery tick."""
    IDLE = "idle"
    SYNCING = "syncing"
    FETCHING = "fetching"
    PERSISTING = "persisting"


@dataclass
class SourcePage(Generic[S]):
    """One page of source records."""
    items: List[S]
    page_number: int
    page_size: int

    @property
    def is_last(self) -> bool:
        return len(self.items) < self.page_size


@dataclass
class BatchResult:
    inserted: int = 0
    skipped: int = 0


class DiscoveryJob(StatefulJob):
    """Base of discovery jobs."""

    def __init__(
        self,
        database: Database,
        state_store: StateStore,
        job_lock: JobLock,
        page_size: int = 100,
    ):
        super().__init__(state_store, job_lock)
        self.database = database
        self.page_size = page_size
        self.status = DiscoveryStatus.IDLE

    def default_state(self) -> Dict[str, Any]:
        return {"lastPageNumber": 1}

    def set_status(self, status: DiscoveryStatus) -> None:
        self.status = status
        self.logger.debug("Discovery status", status=status.value)

    async def load_state(self) -> None:
        self.set_status(DiscoveryStatus.SYNCING)
        await super().load_state()

    async def run(self) -> bool:
        try:
            return await super().run()
        finally:
            self.set_status(DiscoveryStatus.IDLE)

    async def fetch_source_page(self, page_number: int) -> SourcePage:
        raise NotImplementedError

    async def pending_work(self, page: SourcePage) -> Sequence[Any]:
        raise NotImplementedError

    async def next_source_page(self) -> Tuple[SourcePage, Sequence[Any]]:
        """
        Fetch the cursor's source page and the work it implies.

        When the page implies no work and is not the last one, the next page
        is tried once.
        """
        self.set_status(DiscoveryStatus.FETCHING)
        page_number = self.state["lastPageNumber"]

        page = await self.fetch_source_page(page_number)
        work = await self.pending_work(page)
        if not work and not page.is_last:
            self.logger.debug("Source page has no new work, trying next", page=page_number)
            page = await self.fetch_source_page(page_number + 1)
            work = await self.pending_work(page)

        return page, work

    async def persist_batch(self, records: Sequence[BaseModel]) -> BatchResult:
        """
        Insert `records` that do not exist yet, in one transaction.

        Existing records (by natural key) and duplicates within the batch are
        skipped. The batch is all-or-nothing.
        """
        self.set_status(DiscoveryStatus.PERSISTING)
        result = BatchResult()
        if not records:
            return result

        seen = set()
        async with self.database.session() as session:
            for record in records:
                key = to_query(record)
                identity = (type(record), tuple(key.values()))
                if identity in seen:
                    result.skipped += 1
                    continue
                seen.add(identity)

                existing = await session.execute(
                    select(type(record)).filter_by(**key).limit(1)
                )
                if existing.scalar_one_or_none() is not None:
                    result.skipped += 1
                    self.logger.debug("Record already known", **key)
                    continue

                session.add(record)
                result.inserted += 1

        if result.skipped:
            self.logger.info("Skipped known records", skipped=result.skipped)
        return result
