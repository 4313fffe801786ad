"""
Block discovery.

Reads the heights of locally known transactions, groups the heights whose
block is still unknown into ranges of 100 and fetches each range from the
ledger node with one descending query.
"""

import asyncio
import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select

from elevate.core.database import Database
from elevate.models.ledger import Block, Transaction
from elevate.services.job_lock import JobLock
from elevate.services.ledger_client import BlockInfo, BlockSearchFilter, LedgerClient
from elevate.services.state_store import StateStore

from .base import DiscoveryJob, SourcePage


RANGE_SIZE = 100


@dataclass(frozen=True)
class HeightRange:
    """Heights in `(lower, upper]` and the pending heights that opened it."""
    lower: int
    upper: int
    heights: tuple

    def __contains__(self, height: int) -> bool:
        return self.lower < height <= self.upper


def range_upper(height: int) -> int:
    """Smallest multiple of 100 greater than or equal to `height`."""
    return int(math.ceil(height / RANGE_SIZE)) * RANGE_SIZE


def compute_ranges(heights: Iterable[int]) -> List[HeightRange]:
    """
    Group heights into ranges of 100.

    Heights are scanned in ascending order and a new range is opened only
    when a height exceeds the upper bound of the current one.
    """
    ranges: List[HeightRange] = []
    current: List[int] = []
    upper: Optional[int] = None

    for height in sorted(set(heights)):
        if upper is None or height > upper:
            if current:
                ranges.append(HeightRange(upper - RANGE_SIZE, upper, tuple(current)))
            upper = range_upper(height)
            current = []
        current.append(height)

    if current:
        ranges.append(HeightRange(upper - RANGE_SIZE, upper, tuple(current)))
    return ranges


class BlockDiscovery(DiscoveryJob):
    """Discovers the blocks that include locally known transactions."""

    name = "discovery:blocks"

    def __init__(
        self,
        database: Database,
        state_store: StateStore,
        job_lock: JobLock,
        ledger: LedgerClient,
        page_size: int = 100,
        max_ranges: int = 5,
    ):
        super().__init__(database, state_store, job_lock, page_size)
        self.ledger = ledger
        self.max_ranges = max_ranges
        self._fan_out = asyncio.Semaphore(max_ranges)

    def default_state(self) -> Dict[str, Any]:
        return {
            "lastPageNumber": 1,
            "totalNumberOfBlocks": 0,
            "lastRangeUpper": 0,
        }

    async def fetch_source_page(self, page_number: int) -> SourcePage:
        async with self.database.session() as session:
            result = await session.execute(
                select(Transaction.creation_block)
                .order_by(Transaction.id.asc())
                .offset((page_number - 1) * self.page_size)
                .limit(self.page_size)
            )
            heights = list(result.scalars().all())
        return SourcePage(items=heights, page_number=page_number, page_size=self.page_size)

    async def pending_work(self, page: SourcePage) -> Sequence[int]:
        """Heights of the page without a local block, ascending."""
        heights = sorted(set(page.items))
        if not heights:
            return []

        async with self.database.session() as session:
            result = await session.execute(
                select(Block.height).where(Block.height.in_(heights))
            )
            known = set(result.scalars().all())
        return [h for h in heights if h not in known]

    async def execute(self) -> None:
        page, pending = await self.next_source_page()
        if not pending:
            self.logger.debug("No pending heights", page=page.page_number)
            self.state["lastPageNumber"] = (
                page.page_number if page.is_last else page.page_number + 1
            )
            return

        ranges = compute_ranges(pending)
        selected = ranges[: self.max_ranges]
        self.logger.info(
            "Fetching block ranges",
            page=page.page_number,
            pending=len(pending),
            ranges=[r.upper for r in selected],
            deferred=len(ranges) - len(selected),
        )

        results = await asyncio.gather(*(self._fetch_range(r) for r in selected))

        staged: List[Block] = []
        completed: List[HeightRange] = []
        for height_range, blocks in zip(selected, results):
            if blocks is None:
                continue
            completed.append(height_range)
            expected = set(height_range.heights)
            staged.extend(self._to_record(b) for b in blocks if b.height in expected)

        batch = await self.persist_batch(staged)

        self.state["totalNumberOfBlocks"] += batch.inserted
        if completed:
            self.state["lastRangeUpper"] = max(
                self.state["lastRangeUpper"], max(r.upper for r in completed)
            )

        page_done = len(completed) == len(ranges)
        if page_done and not page.is_last:
            self.state["lastPageNumber"] = page.page_number + 1
        else:
            self.state["lastPageNumber"] = page.page_number

        self.logger.info(
            "Blocks discovered",
            inserted=batch.inserted,
            skipped=batch.skipped,
            failed_ranges=len(selected) - len(completed),
            total=self.state["totalNumberOfBlocks"],
        )

    async def _fetch_range(self, height_range: HeightRange) -> Optional[List[BlockInfo]]:
        """Fetch one range. Errors are isolated to the range and reported as None."""
        async with self._fan_out:
            try:
                page = await self.ledger.search_blocks(
                    BlockSearchFilter(
                        offset=height_range.upper + 1,
                        order_by="height",
                        order="desc",
                        page_size=RANGE_SIZE,
                    )
                )
            except Exception as e:
                self.logger.warning(
                    "Block range fetch failed",
                    lower=height_range.lower,
                    upper=height_range.upper,
                    error=str(e),
                )
                return None
        return [b for b in page.data if b.height in height_range]

    @staticmethod
    def _to_record(block: BlockInfo) -> Block:
        return Block(
            height=block.height,
            harvester=block.harvester,
            timestamp=block.timestamp,
            count_transactions=block.transaction_count,
        )
