"""
Account discovery.

Every recipient of a transfer sent by a discovery source is a dApp account.
Accounts are derived from local outgoing transactions, read past a cursor on
the transaction id; the per-account counters are recomputed from all stored
transfers so re-reading a batch never counts twice.
"""

from typing import Any, Dict, List

from sqlalchemy import func, select

from elevate.models.account import Account
from elevate.models.ledger import Transaction

from .base import DiscoveryJob, DiscoveryStatus


class AccountDiscovery(DiscoveryJob):
    """Creates and updates accounts from the transfers the dApp sent."""

    name = "discovery:accounts"

    def default_state(self) -> Dict[str, Any]:
        return {"lastTransactionId": 0, "totalNumberOfAccounts": 0}

    async def fetch_transfers(self) -> List[Transaction]:
        self.set_status(DiscoveryStatus.FETCHING)
        async with self.database.session() as session:
            result = await session.execute(
                select(Transaction)
                .where(
                    Transaction.id > self.state["lastTransactionId"],
                    Transaction.transaction_mode == "outgoing",
                    Transaction.recipient_address.is_not(None),
                )
                .order_by(Transaction.id.asc())
                .limit(self.page_size)
            )
            return list(result.scalars().all())

    async def execute(self) -> None:
        transfers = await self.fetch_transfers()
        if not transfers:
            self.logger.debug("No new transfers")
            return

        addresses = sorted({tx.recipient_address for tx in transfers})
        self.set_status(DiscoveryStatus.PERSISTING)
        created = 0

        async with self.database.session() as session:
            totals = await session.execute(
                select(
                    Transaction.recipient_address,
                    func.count(Transaction.id),
                    func.min(Transaction.creation_block),
                )
                .where(
                    Transaction.transaction_mode == "outgoing",
                    Transaction.recipient_address.in_(addresses),
                )
                .group_by(Transaction.recipient_address)
            )
            counters = {address: (count, first) for address, count, first in totals.all()}

            known = await session.execute(select(Account).where(Account.address.in_(addresses)))
            accounts = {account.address: account for account in known.scalars().all()}

            for address in addresses:
                count, first_block = counters[address]
                account = accounts.get(address)
                if account is None:
                    account = Account(address=address)
                    session.add(account)
                    created += 1
                account.transactions_count = count
                account.first_transaction_at_block = first_block

        self.state["lastTransactionId"] = transfers[-1].id
        self.state["totalNumberOfAccounts"] += created

        self.logger.info(
            "Accounts discovered",
            transfers=len(transfers),
            created=created,
            updated=len(addresses) - created,
            total=self.state["totalNumberOfAccounts"],
        )
