"""
Referral booster payouts.

A booster tier grants its asset once to every referrer whose number of
referred accounts equals the tier threshold. Tiers are configuration entries;
each one runs the generic payout pipeline with its own capability.
"""

from typing import List

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from elevate.core.config import BoosterTier
from elevate.core.database import Database
from elevate.models.account import Account
from elevate.models.ledger import Asset
from elevate.models.payout import Payout, PayoutState

from .pipeline import PayoutSubject


logger = structlog.get_logger(__name__)

ACCOUNTS_COLLECTION = "accounts"


class BoosterPayouts:
    """Payout capability of one booster tier."""

    collection = ACCOUNTS_COLLECTION

    def __init__(self, database: Database, tier: BoosterTier):
        self.database = database
        self.tier = tier
        self.logger = logger.bind(service="booster_payouts", tier=tier.name)

    async def fetch_subjects(self, limit: int) -> List[PayoutSubject]:
        async with self.database.session() as session:
            referral_count = func.count(Account.id)
            groups = await session.execute(
                select(Account.referred_by, referral_count)
                .where(Account.referred_by.is_not(None))
                .group_by(Account.referred_by)
                .having(referral_count == self.tier.threshold)
                .order_by(Account.referred_by.asc())
            )
            counts = {referrer: count for referrer, count in groups.all()}
            if not counts:
                return []

            result = await session.execute(
                select(Account)
                .where(Account.address.in_(list(counts)))
                .order_by(Account.address.asc())
            )
            referrers = list(result.scalars().all())

        subjects: List[PayoutSubject] = []
        for account in referrers:
            subject = PayoutSubject(
                slug=account.address,
                address=account.address,
                collection=self.collection,
                created_at=account.created_at,
                data={"referrals": counts[account.address]},
            )
            if await self.verify_attribution_allowance(subject):
                subjects.append(subject)
            if len(subjects) >= limit:
                break

        self.logger.debug("Booster subjects selected", count=len(subjects))
        return subjects

    async def verify_attribution_allowance(self, subject: PayoutSubject) -> bool:
        """False when the address owns the booster asset or a payout of it exists."""
        mosaic_id = self.tier.mosaic_id
        async with self.database.session() as session:
            owned = await session.execute(
                select(Asset.id).where(
                    Asset.user_address == subject.address,
                    Asset.mosaic_id == mosaic_id,
                ).limit(1)
            )
            if owned.scalar_one_or_none() is not None:
                return False

            paid = await session.execute(
                select(Payout.id).where(
                    Payout.user_address == subject.address,
                    Payout.asset_id == mosaic_id,
                ).limit(1)
            )
            return paid.scalar_one_or_none() is None

    def get_asset_identifier(self) -> str:
        return self.tier.mosaic_id

    def get_asset_amount(self, subject: PayoutSubject, multiplier: float) -> int:
        return 1

    async def get_multiplier(self, address: str) -> float:
        return 1

    async def mark_subject(
        self, session: AsyncSession, subject: PayoutSubject, state: PayoutState
    ) -> None:
        # accounts carry no payout state
        return None
