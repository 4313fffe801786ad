"""
Test payout broadcasting, confirmation and state transitions.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from elevate.core.exceptions import InvalidTransitionError, RemoteUnavailableError
from elevate.models import Activity, Payout, PayoutState
from elevate.payout.activities import ActivityPayouts
from elevate.payout.broadcast import BroadcastPayoutsJob, ConfirmPayoutsJob, PayoutBroadcaster
from elevate.payout.state_machine import TERMINAL, assert_transition, transition
from elevate.services.math_service import MathService
from elevate.utils.time import utc_now

from conftest import EARN_MOSAIC, add_activity


SLUG = "20240115-1-123-456"


@pytest.fixture
def make_broadcaster(database, ledger, settings):
    def build(**kwargs):
        capability = ActivityPayouts(database, settings.earn_asset, settings.booster_tiers, MathService())
        return PayoutBroadcaster(
            database, ledger, capabilities={capability.collection: capability}, **kwargs
        )
    return build


async def add_payout(database, state=PayoutState.PREPARED, slug=SLUG):
    await add_activity(database, slug, address="NOWNER", payout_state=state)
    async with database.session() as session:
        payout = Payout(
            subject_collection="activities",
            subject_slug=slug,
            user_address="NOWNER",
            asset_id=EARN_MOSAIC,
            amount=60000,
            signed_payload=f"PAYLOAD-{slug}",
            transaction_hash=f"HASH-{slug}",
            payout_state=state,
        )
        session.add(payout)
    return payout


async def states(database, slug=SLUG):
    async with database.session() as session:
        payout = (await session.execute(select(Payout).where(Payout.subject_slug == slug))).scalar_one()
        activity = (await session.execute(select(Activity).where(Activity.slug == slug))).scalar_one()
        return payout, activity


def test_legal_transitions():
    assert_transition(PayoutState.PREPARED, PayoutState.BROADCAST)
    assert_transition(PayoutState.PREPARED, PayoutState.FAILED)
    assert_transition(PayoutState.BROADCAST, PayoutState.CONFIRMED)
    assert_transition(PayoutState.BROADCAST, PayoutState.FAILED)


@pytest.mark.parametrize("old,new", [
    (PayoutState.PREPARED, PayoutState.CONFIRMED),
    (PayoutState.BROADCAST, PayoutState.PREPARED),
    (PayoutState.CONFIRMED, PayoutState.FAILED),
    (PayoutState.FAILED, PayoutState.PREPARED),
])
def test_illegal_transitions(old, new):
    with pytest.raises(InvalidTransitionError):
        assert_transition(old, new)


def test_terminal_states_have_no_exits():
    for state in TERMINAL:
        for target in PayoutState:
            with pytest.raises(InvalidTransitionError):
                assert_transition(state, target)


def test_transition_updates_payout():
    payout = Payout(payout_state=PayoutState.PREPARED)
    transition(payout, PayoutState.BROADCAST)
    assert payout.payout_state == PayoutState.BROADCAST


def test_backoff_is_exponential(make_broadcaster):
    broadcaster = make_broadcaster(backoff_base=30)
    assert broadcaster.backoff(1) == timedelta(seconds=60)
    assert broadcaster.backoff(3) == timedelta(seconds=240)


@pytest.mark.asyncio
async def test_broadcast_announces_and_mirrors(database, ledger, make_broadcaster):
    await add_payout(database)

    counts = await make_broadcaster().broadcast()

    assert counts == {"broadcast": 1, "retried": 0, "failed": 0}
    assert ledger.announced == [f"PAYLOAD-{SLUG}"]
    payout, activity = await states(database)
    assert payout.payout_state == PayoutState.BROADCAST
    assert activity.payout_state == PayoutState.BROADCAST


@pytest.mark.asyncio
async def test_dry_run_announces_nothing(database, ledger, make_broadcaster):
    await add_payout(database)

    counts = await make_broadcaster(dry_run=True).broadcast()

    assert counts == {"broadcast": 0, "retried": 0, "failed": 0}
    assert ledger.announced == []
    payout, _ = await states(database)
    assert payout.payout_state == PayoutState.PREPARED


@pytest.mark.asyncio
async def test_announce_failures_back_off_then_fail(database, ledger, make_broadcaster):
    await add_payout(database)
    ledger.announce_error = RemoteUnavailableError("node down")
    broadcaster = make_broadcaster(max_attempts=2, backoff_base=30)

    assert await broadcaster.broadcast() == {"broadcast": 0, "retried": 1, "failed": 0}
    payout, activity = await states(database)
    assert payout.attempts == 1
    assert payout.error_message == "node down"
    assert payout.next_attempt_at > utc_now() + timedelta(seconds=50)
    assert activity.payout_state == PayoutState.PREPARED

    # not due yet
    assert await broadcaster.broadcast() == {"broadcast": 0, "retried": 0, "failed": 0}

    async with database.session() as session:
        stored = await session.get(Payout, payout.id)
        stored.next_attempt_at = utc_now() - timedelta(seconds=1)

    assert await broadcaster.broadcast() == {"broadcast": 0, "retried": 0, "failed": 1}
    payout, activity = await states(database)
    assert payout.payout_state == PayoutState.FAILED
    assert payout.attempts == 2
    assert activity.payout_state == PayoutState.FAILED


@pytest.mark.asyncio
async def test_confirm_follows_network_status(database, ledger, make_broadcaster):
    for slug in ("a", "b", "c"):
        await add_payout(database, state=PayoutState.BROADCAST, slug=slug)
    ledger.statuses = {"HASH-a": "confirmed", "HASH-b": "failed", "HASH-c": "unconfirmed"}

    counts = await make_broadcaster().confirm()

    assert counts == {"confirmed": 1, "failed": 1, "pending": 1}
    payout, activity = await states(database, "a")
    assert payout.payout_state == PayoutState.CONFIRMED
    assert activity.payout_state == PayoutState.CONFIRMED
    payout, activity = await states(database, "b")
    assert payout.payout_state == PayoutState.FAILED
    assert payout.error_message == "Rejected by the network"
    payout, _ = await states(database, "c")
    assert payout.payout_state == PayoutState.BROADCAST


@pytest.mark.asyncio
async def test_jobs_count_into_state(database, ledger, state_store, job_lock, make_broadcaster):
    await add_payout(database)
    broadcaster = make_broadcaster()

    await BroadcastPayoutsJob(broadcaster, state_store, job_lock).run()
    ledger.statuses[f"HASH-{SLUG}"] = "confirmed"
    await ConfirmPayoutsJob(broadcaster, state_store, job_lock).run()

    assert await state_store.get("payout:broadcast") == {"totalNumberBroadcast": 1, "totalNumberFailed": 0}
    assert await state_store.get("payout:confirm") == {"totalNumberConfirmed": 1, "totalNumberFailed": 0}
