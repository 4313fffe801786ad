"""
Asset discovery.

Materializes one asset per transferred mosaic of each locally known
transaction. Outgoing transfers credit their recipient, incoming transfers
credit their signer.
"""

from typing import Any, Dict, List, Sequence

from sqlalchemy import select

from elevate.models.ledger import Asset, Transaction

from .base import DiscoveryJob, SourcePage


def assets_of(transaction: Transaction) -> List[Asset]:
    """Assets implied by one transaction."""
    if transaction.transaction_mode == "outgoing":
        user = transaction.recipient_address
    else:
        user = transaction.signer_address
    if not user:
        return []

    return [
        Asset(
            transaction_hash=transaction.transaction_hash,
            user_address=user,
            mosaic_id=entry["mosaicId"],
            amount=int(entry["amount"]),
            creation_block=transaction.creation_block,
        )
        for entry in transaction.transaction_assets or []
    ]


class AssetDiscovery(DiscoveryJob):
    """Discovers assets from local transactions."""

    name = "discovery:assets"

    def default_state(self) -> Dict[str, Any]:
        return {"lastPageNumber": 1, "totalNumberOfAssets": 0}

    async def fetch_source_page(self, page_number: int) -> SourcePage:
        async with self.database.session() as session:
            result = await session.execute(
                select(Transaction)
                .order_by(Transaction.id.asc())
                .offset((page_number - 1) * self.page_size)
                .limit(self.page_size)
            )
            transactions = list(result.scalars().all())
        return SourcePage(items=transactions, page_number=page_number, page_size=self.page_size)

    async def pending_work(self, page: SourcePage) -> Sequence[Asset]:
        candidates = [asset for tx in page.items for asset in assets_of(tx)]
        if not candidates:
            return []

        hashes = {a.transaction_hash for a in candidates}
        async with self.database.session() as session:
            result = await session.execute(
                select(Asset.user_address, Asset.mosaic_id, Asset.transaction_hash)
                .where(Asset.transaction_hash.in_(hashes))
            )
            known = {tuple(row) for row in result.all()}

        return [
            a for a in candidates
            if (a.user_address, a.mosaic_id, a.transaction_hash) not in known
        ]

    async def execute(self) -> None:
        page, assets = await self.next_source_page()

        batch = await self.persist_batch(list(assets))
        self.state["totalNumberOfAssets"] += batch.inserted
        self.state["lastPageNumber"] = page.page_number if page.is_last else page.page_number + 1

        if batch.inserted or batch.skipped:
            self.logger.info(
                "Assets discovered",
                page=page.page_number,
                inserted=batch.inserted,
                skipped=batch.skipped,
                total=self.state["totalNumberOfAssets"],
            )
