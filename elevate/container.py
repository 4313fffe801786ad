"""
Explicit dependency graph of the backend.

Everything is built once from a `Settings` instance and passed down by
reference; no component reaches for module-level settings or clients.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import redis.asyncio as aioredis
import structlog
from redis.asyncio import Redis

from elevate.core.config import Settings
from elevate.core.database import Database
from elevate.discovery.accounts import AccountDiscovery
from elevate.discovery.assets import AssetDiscovery
from elevate.discovery.blocks import BlockDiscovery
from elevate.discovery.transactions import TransactionDiscovery
from elevate.oauth.drivers import OAuthDriver, build_driver
from elevate.oauth.service import OAuthService
from elevate.payout.activities import ActivityPayouts
from elevate.payout.boosters import BoosterPayouts
from elevate.payout.broadcast import BroadcastPayoutsJob, ConfirmPayoutsJob, PayoutBroadcaster
from elevate.payout.pipeline import PayoutPipeline
from elevate.processor.enricher import ActivityEnricher
from elevate.processor.operations import OperationProcessor
from elevate.processor.webhooks import WebhookIngestor
from elevate.scheduler.base import StatefulJob
from elevate.services.event_channel import ACTIVITY_CREATED, ActivityCreatedEvent, EventChannel
from elevate.services.job_lock import JobLock
from elevate.services.ledger_client import LedgerClient
from elevate.services.math_service import MathService
from elevate.services.signer import Signer
from elevate.services.state_store import StateStore


logger = structlog.get_logger(__name__)


@dataclass
class Container:
    """Wired components of one process."""
    settings: Settings
    database: Database
    redis: Redis
    ledger: LedgerClient
    state_store: StateStore
    job_lock: JobLock
    signer: Signer
    math_service: MathService
    activity_channel: EventChannel[ActivityCreatedEvent]
    oauth_service: OAuthService
    ingestor: WebhookIngestor
    enricher: ActivityEnricher
    broadcaster: PayoutBroadcaster
    # (job, schedule interval key)
    jobs: List[Tuple[StatefulJob, str]] = field(default_factory=list)

    def job(self, name: str) -> StatefulJob:
        for job, _ in self.jobs:
            if job.name == name:
                return job
        raise KeyError(name)

    def schedule(self) -> List[Tuple[StatefulJob, int]]:
        return [(job, self.settings.interval_for(key)) for job, key in self.jobs]

    async def close(self) -> None:
        await self.ledger.close()
        await self.redis.aclose()
        await self.database.close()


def build_container(
    settings: Settings,
    redis: Optional[Redis] = None,
    ledger: Optional[LedgerClient] = None,
    drivers: Optional[Dict[str, OAuthDriver]] = None,
) -> Container:
    """
    Build the component graph.

    `redis`, `ledger` and `drivers` replace the clients built from settings,
    which lets tests run the real graph against fakes.
    """
    database = Database(settings)
    if redis is None:
        redis = aioredis.from_url(settings.redis_url, decode_responses=True)
    if ledger is None:
        ledger = LedgerClient(settings.ledger_node_url, timeout=settings.ledger_timeout)
    if drivers is None:
        drivers = {
            name: build_driver(name, config, timeout=settings.ledger_timeout)
            for name, config in settings.oauth_providers.items()
        }

    state_store = StateStore(database)
    job_lock = JobLock(redis, prefix=settings.redis_prefix, ttl_seconds=settings.job_lock_ttl)
    signer = Signer(settings.payout_issuer_private_key)
    math_service = MathService()
    channel = EventChannel(
        redis,
        ACTIVITY_CREATED,
        ActivityCreatedEvent,
        prefix=settings.redis_prefix,
        poll_interval=settings.activity_channel_poll_interval,
    )
    oauth_service = OAuthService(database, drivers)

    activity_payouts = ActivityPayouts(
        database, settings.earn_asset, settings.booster_tiers, math_service
    )
    broadcaster = PayoutBroadcaster(
        database,
        ledger,
        capabilities={activity_payouts.collection: activity_payouts},
        batch_size=settings.payout_batch_size,
        max_attempts=settings.payout_max_attempts,
        backoff_base=settings.payout_backoff_base,
        dry_run=settings.payout_global_dry_run,
    )

    jobs: List[Tuple[StatefulJob, str]] = [
        (
            TransactionDiscovery(
                database, state_store, job_lock, ledger,
                sources=settings.discovery_sources,
                page_size=settings.discovery_page_size,
                max_pages=settings.discovery_max_pages,
            ),
            "discovery:transactions",
        ),
        (
            BlockDiscovery(
                database, state_store, job_lock, ledger,
                page_size=settings.discovery_page_size,
                max_ranges=settings.discovery_max_ranges,
            ),
            "discovery:blocks",
        ),
        (
            AssetDiscovery(database, state_store, job_lock, page_size=settings.discovery_page_size),
            "discovery:assets",
        ),
        (
            AccountDiscovery(database, state_store, job_lock, page_size=settings.discovery_page_size),
            "discovery:accounts",
        ),
        (
            PayoutPipeline(
                "payout:prepare:activities", activity_payouts,
                database, state_store, job_lock, signer,
                subjects_limit=settings.payout_subjects_limit,
            ),
            "payout:prepare:activities",
        ),
    ]

    for operation in settings.operations:
        processor = OperationProcessor(
            database, state_store, job_lock, operation,
            page_size=settings.discovery_page_size,
        )
        jobs.append((processor, "processor:operations"))

    for tier in settings.booster_tiers:
        pipeline = PayoutPipeline(
            f"payout:prepare:{tier.name}", BoosterPayouts(database, tier),
            database, state_store, job_lock, signer,
            subjects_limit=settings.payout_subjects_limit,
        )
        jobs.append((pipeline, "payout:prepare:boosters"))

    jobs.append((BroadcastPayoutsJob(broadcaster, state_store, job_lock), "payout:broadcast"))
    jobs.append((ConfirmPayoutsJob(broadcaster, state_store, job_lock), "payout:confirm"))

    logger.debug("Container built", jobs=[job.name for job, _ in jobs])

    return Container(
        settings=settings,
        database=database,
        redis=redis,
        ledger=ledger,
        state_store=state_store,
        job_lock=job_lock,
        signer=signer,
        math_service=math_service,
        activity_channel=channel,
        oauth_service=oauth_service,
        ingestor=WebhookIngestor(database, channel),
        enricher=ActivityEnricher(database, oauth_service),
        broadcaster=broadcaster,
        jobs=jobs,
    )
