"""
Payout broadcasting and confirmation.

`broadcast()` announces prepared payouts to the ledger node, retrying failed
announcements with exponential backoff. `confirm()` polls the status of
broadcast payouts. Both mirror the new payout state on the subject.
"""

from datetime import timedelta
from typing import Any, Dict, Mapping, Optional

import structlog
from sqlalchemy import or_, select

from elevate.core.database import Database
from elevate.core.exceptions import ElevateException
from elevate.models.payout import Payout, PayoutState
from elevate.scheduler.base import StatefulJob
from elevate.services.job_lock import JobLock
from elevate.services.ledger_client import LedgerClient
from elevate.services.state_store import StateStore
from elevate.utils.time import utc_now

from .pipeline import PayoutCapability, PayoutSubject
from .state_machine import transition


logger = structlog.get_logger(__name__)


class PayoutBroadcaster:
    """Moves payouts from PREPARED to BROADCAST and on to CONFIRMED or FAILED."""

    def __init__(
        self,
        database: Database,
        ledger: LedgerClient,
        capabilities: Mapping[str, PayoutCapability],
        batch_size: int = 100,
        max_attempts: int = 5,
        backoff_base: int = 30,
        dry_run: bool = False,
    ):
        self.database = database
        self.ledger = ledger
        self.capabilities = dict(capabilities)
        self.batch_size = batch_size
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.dry_run = dry_run
        self.logger = logger.bind(service="payout_broadcaster")

    def backoff(self, attempts: int) -> timedelta:
        return timedelta(seconds=self.backoff_base * 2 ** attempts)

    async def broadcast(self) -> Dict[str, int]:
        """Announce one batch of due prepared payouts."""
        counts = {"broadcast": 0, "retried": 0, "failed": 0}
        now = utc_now()

        async with self.database.session() as session:
            result = await session.execute(
                select(Payout)
                .where(
                    Payout.payout_state == PayoutState.PREPARED,
                    or_(Payout.next_attempt_at.is_(None), Payout.next_attempt_at <= now),
                )
                .order_by(Payout.created_at.asc(), Payout.id.asc())
                .limit(self.batch_size)
            )
            payouts = list(result.scalars().all())

        if self.dry_run:
            if payouts:
                self.logger.info("Dry run, payouts not announced", count=len(payouts))
            return counts

        for payout in payouts:
            try:
                await self.ledger.announce(payout.signed_payload)
            except ElevateException as e:
                outcome = await self._record_failure(payout.id, e.message)
                counts[outcome] += 1
                self.logger.warning(
                    "Announce failed",
                    hash=payout.transaction_hash,
                    outcome=outcome,
                    error=e.message,
                )
                continue

            await self._move(payout.id, PayoutState.BROADCAST)
            counts["broadcast"] += 1
            self.logger.info(
                "Payout broadcast",
                hash=payout.transaction_hash,
                address=payout.user_address,
                asset_id=payout.asset_id,
                amount=payout.amount,
            )

        return counts

    async def confirm(self) -> Dict[str, int]:
        """Check the status of one batch of broadcast payouts."""
        counts = {"confirmed": 0, "failed": 0, "pending": 0}

        async with self.database.session() as session:
            result = await session.execute(
                select(Payout)
                .where(Payout.payout_state == PayoutState.BROADCAST)
                .order_by(Payout.updated_at.asc(), Payout.id.asc())
                .limit(self.batch_size)
            )
            payouts = list(result.scalars().all())

        for payout in payouts:
            try:
                status = await self.ledger.get_transaction_status(payout.transaction_hash)
            except ElevateException as e:
                self.logger.warning(
                    "Status lookup failed", hash=payout.transaction_hash, error=e.message
                )
                counts["pending"] += 1
                continue

            if status == "confirmed":
                await self._move(payout.id, PayoutState.CONFIRMED)
                counts["confirmed"] += 1
            elif status == "failed":
                await self._move(payout.id, PayoutState.FAILED, error="Rejected by the network")
                counts["failed"] += 1
            else:
                counts["pending"] += 1
                continue

            self.logger.info("Payout status updated", hash=payout.transaction_hash, status=status)

        return counts

    async def _move(self, payout_id: int, state: PayoutState, error: Optional[str] = None) -> None:
        async with self.database.session() as session:
            payout = await session.get(Payout, payout_id)
            transition(payout, state)
            if error is not None:
                payout.error_message = error
            await self._mirror(session, payout, state)

    async def _record_failure(self, payout_id: int, error: str) -> str:
        async with self.database.session() as session:
            payout = await session.get(Payout, payout_id)
            payout.attempts += 1
            payout.error_message = error

            if payout.attempts >= self.max_attempts:
                transition(payout, PayoutState.FAILED)
                await self._mirror(session, payout, PayoutState.FAILED)
                return "failed"

            payout.next_attempt_at = utc_now() + self.backoff(payout.attempts)
            return "retried"

    async def _mirror(self, session, payout: Payout, state: PayoutState) -> None:
        capability = self.capabilities.get(payout.subject_collection)
        if capability is None:
            return
        subject = PayoutSubject(
            slug=payout.subject_slug,
            address=payout.user_address,
            collection=payout.subject_collection,
        )
        await capability.mark_subject(session, subject, state)


class BroadcastPayoutsJob(StatefulJob):
    """Scheduled broadcast of prepared payouts."""

    name = "payout:broadcast"

    def __init__(self, broadcaster: PayoutBroadcaster, state_store: StateStore, job_lock: JobLock):
        super().__init__(state_store, job_lock)
        self.broadcaster = broadcaster

    def default_state(self) -> Dict[str, Any]:
        return {"totalNumberBroadcast": 0, "totalNumberFailed": 0}

    async def execute(self) -> None:
        counts = await self.broadcaster.broadcast()
        self.state["totalNumberBroadcast"] += counts["broadcast"]
        self.state["totalNumberFailed"] += counts["failed"]
        if any(counts.values()):
            self.logger.info("Broadcast tick", **counts)


class ConfirmPayoutsJob(StatefulJob):
    """Scheduled confirmation of broadcast payouts."""

    name = "payout:confirm"

    def __init__(self, broadcaster: PayoutBroadcaster, state_store: StateStore, job_lock: JobLock):
        super().__init__(state_store, job_lock)
        self.broadcaster = broadcaster

    def default_state(self) -> Dict[str, Any]:
        return {"totalNumberConfirmed": 0, "totalNumberFailed": 0}

    async def execute(self) -> None:
        counts = await self.broadcaster.confirm()
        self.state["totalNumberConfirmed"] += counts["confirmed"]
        self.state["totalNumberFailed"] += counts["failed"]
        if counts["confirmed"] or counts["failed"]:
            self.logger.info("Confirmation tick", **counts)
