"""
Test activity reward computation and activity payouts.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from elevate.models import Activity, Payout, PayoutState, ProcessingState
from elevate.payout.activities import ActivityPayouts, compute_activity_amount
from elevate.payout.pipeline import PayoutPipeline, PayoutSubject
from elevate.services.math_service import MathService
from elevate.services.signer import Signer
from elevate.utils.time import utc_now

from conftest import EARN_MOSAIC, add_activity, add_asset


class FixedMath(MathService):
    def random_variates(self):
        return 0.0, 0.0


WALK = {
    "sport": "Walk",
    "distance": 100000,
    "elapsed_time": 600,
    "elevation": 500,
    "kilojoules": 0,
    "calories": 0,
    "is_manual": False,
}


@pytest.fixture
def capability(database, settings):
    return ActivityPayouts(database, settings.earn_asset, settings.booster_tiers, FixedMath())


@pytest.fixture
def pipeline(capability, database, state_store, job_lock, settings):
    return PayoutPipeline(
        "payout:prepare:activities", capability,
        database, state_store, job_lock,
        Signer(settings.payout_issuer_private_key),
    )


def test_walk_amount():
    assert compute_activity_amount(WALK, 2, FixedMath()) == 60000


def test_run_amount():
    assert compute_activity_amount(dict(WALK, sport="Run"), 2, FixedMath()) == 75000


def test_manual_or_timeless_activities_earn_nothing():
    assert compute_activity_amount(dict(WALK, is_manual=True), 2, FixedMath()) == 0
    assert compute_activity_amount(dict(WALK, elapsed_time=0), 2, FixedMath()) == 0


def test_missing_elevation_uses_skew_normal_adjustment():
    # variates (0, 0): adjusted elevation is the mean 0.8
    data = dict(WALK, elevation=0)
    expected = int((100000 / 10) * 0.8 / 1000000 * 1.2 * 100 * 100)
    assert compute_activity_amount(data, 2, FixedMath()) == expected


def test_amount_applies_multiplier(capability):
    subject = PayoutSubject(slug="s", address="NADDRESS", collection="activities", data=WALK)
    assert capability.get_asset_amount(subject, 1) == 60000
    assert capability.get_asset_amount(subject, 2) == 120000


@pytest.mark.asyncio
async def test_multiplier_sums_owned_booster_bonuses(database, capability):
    assert await capability.get_multiplier("NADDRESS") == 1

    await add_asset(database, "NADDRESS", "1A13B4D2E5C2E0F5")
    assert await capability.get_multiplier("NADDRESS") == pytest.approx(1.1)

    await add_asset(database, "NADDRESS", "4ADBC6CEF9393B90", tx_hash="OTHERTX")
    assert await capability.get_multiplier("NADDRESS") == pytest.approx(1.15)


@pytest.mark.asyncio
async def test_subjects_are_processed_unpaid_activities_oldest_first(database, capability):
    now = utc_now()
    await add_activity(database, "20240115-2-b-1", data=WALK, created_at=now)
    await add_activity(database, "20240115-1-a-1", data=WALK, created_at=now - timedelta(hours=1))
    await add_activity(database, "20240115-3-c-1", data=WALK, processing_state=ProcessingState.PENDING)
    await add_activity(database, "20240115-4-d-1", data=WALK, payout_state=PayoutState.PREPARED)

    subjects = await capability.fetch_subjects(10)

    assert [s.slug for s in subjects] == ["20240115-1-a-1", "20240115-2-b-1"]
    assert subjects[0].data["sport"] == "Walk"


@pytest.mark.asyncio
async def test_pipeline_prepares_and_marks_activity(database, pipeline):
    await add_activity(database, "20240115-1-123-456", address="NOWNER", data=WALK)

    prepared = await pipeline.prepare()

    assert len(prepared) == 1
    assert prepared[0].asset_id == EARN_MOSAIC
    assert prepared[0].amount == 60000
    assert prepared[0].user_address == "NOWNER"

    async with database.session() as session:
        activity = (await session.execute(select(Activity))).scalar_one()
        assert activity.payout_state == PayoutState.PREPARED

    assert await pipeline.prepare() == []


@pytest.mark.asyncio
async def test_pipeline_marks_zero_amount_not_eligible(database, pipeline):
    await add_activity(database, "20240115-1-123-456", data=dict(WALK, is_manual=True))

    assert await pipeline.prepare() == []

    async with database.session() as session:
        activity = (await session.execute(select(Activity))).scalar_one()
        assert activity.payout_state == PayoutState.NOT_ELIGIBLE
        assert (await session.execute(select(Payout))).scalars().all() == []


@pytest.mark.asyncio
async def test_booster_owner_earns_more(database, pipeline):
    await add_activity(database, "20240115-1-123-456", address="NOWNER", data=WALK)
    await add_asset(database, "NOWNER", "1A13B4D2E5C2E0F5")

    prepared = await pipeline.prepare()

    assert prepared[0].amount == 66000
