"""
Shared fixtures: SQLite database per test, fake Redis, fake ledger node and
fake provider driver.
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional

import pytest
import pytest_asyncio
from fakeredis import FakeServer, aioredis
from solders.keypair import Keypair

from elevate.core.config import BoosterTier, OAuthProviderConfig, Settings
from elevate.core.database import Database
from elevate.core.exceptions import RemoteUnavailableError
from elevate.models import Account, AccountIntegration, Activity, Asset, ProcessingState, Transaction
from elevate.models.payout import PayoutState
from elevate.oauth.drivers import AccessToken, ProviderResponse, StravaOAuthDriver
from elevate.services.event_channel import ACTIVITY_CREATED, ActivityCreatedEvent, EventChannel
from elevate.services.job_lock import JobLock
from elevate.services.ledger_client import BlockInfo, Page, TransactionInfo
from elevate.services.state_store import StateStore
from elevate.utils.time import utc_now


SOURCE = "NDAPPH6ZGD4D6LBWFLGFZUT2KQ5OLBLU32K3HNY"
EARN_MOSAIC = "5A4935C1D66E6AC4"


class FakeLedger:
    """In-memory ledger node."""

    def __init__(self):
        self.blocks: Dict[int, BlockInfo] = {}
        self.transactions: Dict[str, List[TransactionInfo]] = {}
        self.accounts: Dict[str, str] = {}
        self.failing_offsets = set()
        self.block_queries: List[int] = []
        self.announced: List[str] = []
        self.announce_error: Optional[Exception] = None
        self.statuses: Dict[str, str] = {}

    def add_blocks(self, heights):
        for height in heights:
            self.blocks[height] = BlockInfo(
                height=height,
                hash=f"{height:064X}",
                harvester=f"HARVESTER{height}",
                timestamp=height * 15000,
                transaction_count=1,
            )

    async def search_blocks(self, search):
        self.block_queries.append(search.offset)
        if search.offset in self.failing_offsets:
            raise RemoteUnavailableError(f"offset {search.offset} unavailable")
        heights = sorted((h for h in self.blocks if h < search.offset), reverse=True)
        data = [self.blocks[h] for h in heights[: search.page_size]]
        return Page(data=data, page_number=search.page_number, page_size=search.page_size)

    async def search_transactions(self, search):
        items = self.transactions.get(search.address, [])
        start = (search.page_number - 1) * search.page_size
        return Page(
            data=items[start:start + search.page_size],
            page_number=search.page_number,
            page_size=search.page_size,
        )

    async def get_account_address(self, public_key):
        return self.accounts[public_key]

    async def announce(self, payload):
        if self.announce_error is not None:
            raise self.announce_error
        self.announced.append(payload)

    async def get_transaction_status(self, transaction_hash):
        return self.statuses.get(transaction_hash, "unknown")

    async def close(self):
        pass


class FakeStravaDriver(StravaOAuthDriver):
    """Strava driver answering from memory."""

    def __init__(self):
        super().__init__(
            "strava",
            OAuthProviderConfig(api_url="https://strava.test/api/v3", token_url="https://strava.test/oauth/token"),
        )
        self.responses: Dict[str, ProviderResponse] = {}
        self.requests: List[str] = []
        self.refreshed: List[str] = []
        self.error: Optional[Exception] = None

    async def update_access_token(self, refresh_token):
        self.refreshed.append(refresh_token)
        return AccessToken(
            access_token="fresh-access",
            refresh_token="fresh-refresh",
            expires_at=utc_now() + timedelta(hours=6),
        )

    async def execute_request(self, access_token, endpoint, method="GET"):
        self.requests.append(endpoint)
        if self.error is not None:
            raise self.error
        return self.responses.get(endpoint, ProviderResponse(code=404, status="ERROR", data={}))


@pytest.fixture
def issuer() -> Keypair:
    return Keypair()


@pytest.fixture
def settings(tmp_path, issuer) -> Settings:
    return Settings(
        environment="testing",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'elevate.db'}",
        payout_issuer_private_key=str(issuer),
        discovery_sources=[SOURCE],
        booster_tiers=[
            BoosterTier(name="boost5", threshold=10, mosaic_id="4ADBC6CEF9393B90", bonus=0.05),
            BoosterTier(name="boost10", threshold=50, mosaic_id="1A13B4D2E5C2E0F5", bonus=0.10),
            BoosterTier(name="boost15", threshold=100, mosaic_id="5B0C4D6EBA3B3F4A", bonus=0.15),
        ],
        log_format="console",
    )


@pytest_asyncio.fixture
async def database(settings):
    db = Database(settings)
    await db.connect()
    await db.create_tables()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def redis():
    client = aioredis.FakeRedis(server=FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def strava() -> FakeStravaDriver:
    return FakeStravaDriver()


@pytest.fixture
def state_store(database) -> StateStore:
    return StateStore(database)


@pytest.fixture
def job_lock(redis) -> JobLock:
    return JobLock(redis, prefix="test:", ttl_seconds=30)


@pytest.fixture
def channel(redis) -> EventChannel:
    return EventChannel(redis, ACTIVITY_CREATED, ActivityCreatedEvent, prefix="test:", poll_interval=0.01)


async def add_transactions(database, heights, source=SOURCE, prefix="TX"):
    """Store one incoming transfer per height."""
    async with database.session() as session:
        for i, height in enumerate(heights):
            session.add(Transaction(
                transaction_hash=f"{prefix}{height}-{i}",
                source_address=source,
                signer_address=f"SIGNER{i}",
                recipient_address=source,
                transaction_mode="incoming",
                transaction_type=16724,
                transaction_assets=[{"mosaicId": EARN_MOSAIC, "amount": 10}],
                creation_block=height,
            ))


async def add_referrals(database, referrer, count):
    async with database.session() as session:
        session.add(Account(address=referrer, referral_code=f"REF-{referrer}"))
        for i in range(count):
            session.add(Account(address=f"{referrer}-R{i}", referred_by=referrer))


async def add_asset(database, address, mosaic_id, tx_hash="ASSETTX"):
    async with database.session() as session:
        session.add(Asset(
            transaction_hash=tx_hash,
            user_address=address,
            mosaic_id=mosaic_id,
            amount=1,
            creation_block=1,
        ))


async def add_activity(
    database,
    slug,
    address="NADDRESS",
    data=None,
    processing_state=ProcessingState.PROCESSED,
    payout_state=PayoutState.NOT_STARTED,
    remote_identifier=None,
    created_at: Optional[datetime] = None,
):
    async with database.session() as session:
        activity = Activity(
            slug=slug,
            address=address,
            date_slug=slug.split("-")[0],
            daily_index=1,
            remote_identifier=remote_identifier or slug,
            provider="strava",
            processing_state=processing_state,
            payout_state=payout_state,
            activity_data=data,
        )
        if created_at is not None:
            activity.created_at = created_at
        session.add(activity)


async def add_integration(database, address, remote_identifier="999", expires_in=timedelta(hours=1)):
    async with database.session() as session:
        session.add(AccountIntegration(
            provider="strava",
            address=address,
            remote_identifier=remote_identifier,
            access_token="current-access",
            refresh_token="current-refresh",
            expires_at=utc_now() + expires_in,
        ))
