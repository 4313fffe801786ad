"""
Test job ticks, the task scheduler and the component graph.
"""

import asyncio

import pytest

from elevate.container import build_container
from elevate.core.config import OperationParameters, Settings
from elevate.core.exceptions import SchedulerError
from elevate.models import Asset, Block, Payout, Transaction
from elevate.models.dto import to_query
from elevate.scheduler.base import StatefulJob
from elevate.scheduler.task_scheduler import TaskScheduler
from elevate.services.job_lock import JobLock


class CountingJob(StatefulJob):
    name = "test:counter"

    def __init__(self, state_store, job_lock, fail=False):
        super().__init__(state_store, job_lock)
        self.fail = fail

    def default_state(self):
        return {"ticks": 0}

    async def execute(self):
        self.state["ticks"] += 1
        if self.fail:
            raise RuntimeError("tick failed")


@pytest.mark.asyncio
async def test_job_commits_state_after_success(state_store, job_lock):
    job = CountingJob(state_store, job_lock)

    assert await job.run()
    assert await job.run()

    assert await state_store.get("test:counter") == {"ticks": 2}
    assert job.stats.runs == 2
    assert not await job_lock.is_locked("test:counter")


@pytest.mark.asyncio
async def test_failed_tick_keeps_previous_state(state_store, job_lock):
    await CountingJob(state_store, job_lock).run()
    job = CountingJob(state_store, job_lock, fail=True)

    with pytest.raises(RuntimeError):
        await job.run()

    assert await state_store.get("test:counter") == {"ticks": 1}
    assert job.stats.failed_runs == 1
    assert job.stats.last_error == "tick failed"
    assert not await job_lock.is_locked("test:counter")


class SlowJob(CountingJob):
    name = "test:slow"

    def __init__(self, state_store, job_lock, duration):
        super().__init__(state_store, job_lock)
        self.duration = duration

    async def execute(self):
        await asyncio.sleep(self.duration)
        self.state["ticks"] += 1


@pytest.mark.asyncio
async def test_slow_tick_keeps_its_lease(state_store, redis):
    lock = JobLock(redis, prefix="test:", ttl_seconds=0.3)
    first = asyncio.create_task(SlowJob(state_store, lock, 0.6).run())
    await asyncio.sleep(0.4)

    assert not await SlowJob(state_store, lock, 0).run()
    assert await first
    assert await state_store.get("test:slow") == {"ticks": 1}


@pytest.mark.asyncio
async def test_tick_losing_its_lease_commits_nothing(state_store, redis):
    lock = JobLock(redis, prefix="test:", ttl_seconds=0.3)
    job = SlowJob(state_store, lock, 1)
    running = asyncio.create_task(job.run())
    while not await lock.is_locked("test:slow"):
        await asyncio.sleep(0.01)
    await redis.set("test:lock:test:slow", "intruder")

    with pytest.raises(SchedulerError):
        await running
    assert await state_store.get("test:slow") is None


@pytest.mark.asyncio
async def test_run_pending_isolates_task_errors():
    calls = []

    async def ok():
        calls.append("ok")

    async def broken():
        calls.append("broken")
        raise RuntimeError("boom")

    scheduler = TaskScheduler()
    scheduler.register_task("ok", ok, interval_seconds=60, run_immediately=True)
    scheduler.register_task("broken", broken, interval_seconds=60, run_immediately=True)
    scheduler.register_task("later", ok, interval_seconds=60)

    await scheduler.run_pending()

    assert sorted(calls) == ["broken", "ok"]
    assert scheduler.tasks["ok"].run_count == 1
    assert scheduler.tasks["broken"].error_count == 1
    assert scheduler.tasks["broken"].last_error == "boom"
    assert scheduler.tasks["later"].run_count == 0

    # both rescheduled
    await scheduler.run_pending()
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_disabled_task_does_not_run():
    calls = []

    async def task():
        calls.append(1)

    scheduler = TaskScheduler()
    scheduler.register_task("task", task, interval_seconds=60, run_immediately=True)
    scheduler.disable_task("task")
    await scheduler.run_pending()
    assert calls == []

    scheduler.enable_task("task")
    await scheduler.run_pending()
    assert calls == [1]

    health = await scheduler.health_check()
    assert health["total_tasks"] == 1
    assert health["tasks"]["task"]["run_count"] == 1


@pytest.mark.asyncio
async def test_register_job_uses_job_name(state_store, job_lock):
    scheduler = TaskScheduler()
    scheduler.register_job(CountingJob(state_store, job_lock), interval_seconds=5, run_immediately=True)

    await scheduler.run_pending()

    assert await state_store.get("test:counter") == {"ticks": 1}


@pytest.mark.asyncio
async def test_container_wires_every_job(settings, redis, ledger, strava):
    container = build_container(settings, redis=redis, ledger=ledger, drivers={"strava": strava})

    assert [job.name for job, _ in container.jobs] == [
        "discovery:transactions",
        "discovery:blocks",
        "discovery:assets",
        "discovery:accounts",
        "payout:prepare:activities",
        "payout:prepare:boost5",
        "payout:prepare:boost10",
        "payout:prepare:boost15",
        "payout:broadcast",
        "payout:confirm",
    ]

    intervals = {job.name: interval for job, interval in container.schedule()}
    assert intervals["discovery:blocks"] == 120
    assert intervals["payout:prepare:activities"] == 30
    assert intervals["payout:prepare:boost10"] == 300
    assert intervals["discovery:accounts"] == 300
    assert container.job("payout:confirm").name == "payout:confirm"
    with pytest.raises(KeyError):
        container.job("unknown")


@pytest.mark.asyncio
async def test_container_wires_configured_operations(settings, redis, ledger, strava):
    settings.operations = [
        OperationParameters(contract="elevate:earn", source_address="NSOURCE", transaction_mode="outgoing"),
        OperationParameters(contract="elevate:referral"),
    ]
    container = build_container(settings, redis=redis, ledger=ledger, drivers={"strava": strava})

    intervals = {job.name: interval for job, interval in container.schedule()}
    assert intervals["processor:operations:elevate:earn"] == 30
    assert intervals["processor:operations:elevate:referral"] == 30
    assert container.job("processor:operations:elevate:earn").operation.source_address == "NSOURCE"


def test_interval_falls_back_to_family():
    settings = Settings(environment="testing", schedule_intervals={"payout:prepare": 45})
    assert settings.interval_for("payout:prepare:custom") == 45
    assert settings.interval_for("discovery:blocks") == 60


def test_invalid_environment():
    with pytest.raises(ValueError):
        Settings(environment="moon")


def test_natural_keys():
    assert to_query(Block(height=10)) == {"height": 10}
    assert to_query(Transaction(transaction_hash="H")) == {"transaction_hash": "H"}
    assert to_query(Asset(user_address="N", mosaic_id="M", transaction_hash="H")) == {
        "user_address": "N", "mosaic_id": "M", "transaction_hash": "H",
    }
    assert to_query(Payout(
        subject_collection="activities", subject_slug="s", user_address="N", asset_id="A",
    )) == {
        "subject_collection": "activities",
        "subject_slug": "s",
        "user_address": "N",
        "asset_id": "A",
    }
    with pytest.raises(TypeError):
        to_query(object())
