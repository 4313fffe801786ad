"""
Activity payouts.

Processed activities earn the earn asset. The amount depends on the sport,
distance, elapsed time, elevation, energy and calories of the activity and is
multiplied by the booster bonuses the owner holds.
"""

import math
from typing import Any, Dict, List, Sequence

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from elevate.core.config import AssetParameters, BoosterTier
from elevate.core.database import Database
from elevate.models.activity import Activity, ProcessingState
from elevate.models.ledger import Asset
from elevate.models.payout import Payout, PayoutState
from elevate.services.math_service import MathService

from .pipeline import PayoutSubject


logger = structlog.get_logger(__name__)

ACTIVITIES_COLLECTION = "activities"

# sport -> reward factor
SPORT_FACTORS = {
    "Walk": 1.2,
    "Run": 1.5,
    "Ride": 1.3,
    "Swim": 1.7,
}
DEFAULT_SPORT_FACTOR = 1.6

ELEVATE_FACTOR = 1000000


def compute_activity_amount(data: Dict[str, Any], divisibility: int, math_service: MathService) -> int:
    """
    Reward of one activity, in atomic units of the earn asset.

    Manual activities and activities without elapsed time earn nothing. A
    missing elevation is replaced by a skew-normal adjustment so that the
    product never collapses to zero.
    """
    C = data.get("calories") or 0
    D = data.get("distance") or 0
    E = data.get("elevation") or 0
    T = data.get("elapsed_time") or 0
    J = data.get("kilojoules") or 0
    sport = data.get("sport")

    if T <= 0 or data.get("is_manual") is True:
        return 0

    A = E
    if E <= 0:
        A = math_service.skew_normal(0.8, 0.3, 0.5)

    kC = C / 1000
    dE = ELEVATE_FACTOR
    minutes = T / 60

    if sport in ("Walk", "Run"):
        amount = ((D + J) / minutes) * (A + J + kC) / dE * SPORT_FACTORS[sport] * 100
    elif sport == "Ride":
        dM = D * 10  # dekameters
        amount = ((dM + J) / minutes) * (A + J + kC) / dE * SPORT_FACTORS[sport] * 100
    elif sport == "Swim":
        cM = D * 100  # centimeters, lanes of 25m
        amount = ((cM + J) / minutes) * (D / 25 + A + J + kC) / dE * SPORT_FACTORS[sport] * 100
    else:
        amount = minutes * (A + J + kC) / dE * DEFAULT_SPORT_FACTOR * 100

    return int(round(math.floor(amount * 10 ** divisibility)))


class ActivityPayouts:
    """Payout capability of processed activities."""

    collection = ACTIVITIES_COLLECTION

    def __init__(
        self,
        database: Database,
        earn_asset: AssetParameters,
        booster_tiers: Sequence[BoosterTier],
        math_service: MathService,
    ):
        self.database = database
        self.earn_asset = earn_asset
        self.booster_tiers = list(booster_tiers)
        self.math_service = math_service
        self.logger = logger.bind(service="activity_payouts")

    async def fetch_subjects(self, limit: int) -> List[PayoutSubject]:
        async with self.database.session() as session:
            result = await session.execute(
                select(Activity)
                .where(
                    Activity.processing_state == ProcessingState.PROCESSED,
                    Activity.payout_state == PayoutState.NOT_STARTED,
                )
                .order_by(Activity.created_at.asc(), Activity.id.asc())
                .limit(limit)
            )
            activities = list(result.scalars().all())

        return [
            PayoutSubject(
                slug=activity.slug,
                address=activity.address,
                collection=self.collection,
                created_at=activity.created_at,
                data=dict(activity.activity_data or {}),
            )
            for activity in activities
        ]

    async def verify_attribution_allowance(self, subject: PayoutSubject) -> bool:
        async with self.database.session() as session:
            result = await session.execute(
                select(Payout.id).where(
                    Payout.subject_collection == self.collection,
                    Payout.subject_slug == subject.slug,
                    Payout.asset_id == self.earn_asset.mosaic_id,
                ).limit(1)
            )
            return result.scalar_one_or_none() is None

    def get_asset_identifier(self) -> str:
        return self.earn_asset.mosaic_id

    def get_asset_amount(self, subject: PayoutSubject, multiplier: float) -> int:
        base = compute_activity_amount(subject.data, self.earn_asset.divisibility, self.math_service)
        return int(math.floor(base * multiplier))

    async def get_multiplier(self, address: str) -> float:
        """1 plus the bonus of every booster tier whose asset `address` owns."""
        if not self.booster_tiers:
            return 1

        mosaics = [tier.mosaic_id for tier in self.booster_tiers]
        async with self.database.session() as session:
            result = await session.execute(
                select(Asset.mosaic_id)
                .where(Asset.user_address == address, Asset.mosaic_id.in_(mosaics))
                .distinct()
            )
            owned = set(result.scalars().all())

        return 1 + sum(tier.bonus for tier in self.booster_tiers if tier.mosaic_id in owned)

    async def mark_subject(
        self, session: AsyncSession, subject: PayoutSubject, state: PayoutState
    ) -> None:
        await session.execute(
            update(Activity)
            .where(Activity.slug == subject.slug)
            .values(payout_state=state)
        )
