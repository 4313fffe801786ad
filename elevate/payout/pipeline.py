"""
Generic payout preparation pipeline.

A pipeline is configured with a capability that knows how to select its
subjects and how much of which asset they earn. For each subject the pipeline
verifies that the asset was not attributed yet, computes the amount, signs a
transfer and stores it as a `PREPARED` payout.

Single attribution is enforced by the unique index of the payouts table: the
allowance check only avoids useless signing, a concurrent preparer losing the
insert race gets `AttributionDeniedError`.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from elevate.core.database import Database
from elevate.core.exceptions import AttributionDeniedError, ElevateException, SigningError
from elevate.models.dto import PayoutDTO, payout_to_dto
from elevate.models.payout import Payout, PayoutState
from elevate.scheduler.base import StatefulJob
from elevate.services.job_lock import JobLock
from elevate.services.signer import Signer
from elevate.services.state_store import StateStore


@dataclass
class PayoutSubject:
    """An account or activity evaluated for a reward."""
    slug: str
    address: str
    collection: str
    created_at: Optional[datetime] = None
    data: Dict[str, Any] = field(default_factory=dict)


class PayoutCapability(Protocol):
    """What a pipeline needs to know about one kind of payout."""

    collection: str

    async def fetch_subjects(self, limit: int) -> List[PayoutSubject]:
        """At most `limit` candidates, in a deterministic order."""

    async def verify_attribution_allowance(self, subject: PayoutSubject) -> bool:
        """False when the subject was already attributed the asset."""

    def get_asset_identifier(self) -> str:
        ...

    def get_asset_amount(self, subject: PayoutSubject, multiplier: float) -> int:
        """Absolute amount (atomic units)."""

    async def get_multiplier(self, address: str) -> float:
        ...

    async def mark_subject(
        self, session: AsyncSession, subject: PayoutSubject, state: PayoutState
    ) -> None:
        """Mirror the payout state on the subject, inside `session`."""


class PayoutPipeline(StatefulJob):
    """Prepares payouts for the subjects of one capability."""

    def __init__(
        self,
        name: str,
        capability: PayoutCapability,
        database: Database,
        state_store: StateStore,
        job_lock: JobLock,
        signer: Signer,
        subjects_limit: int = 10,
    ):
        super().__init__(state_store, job_lock, name=name)
        self.capability = capability
        self.database = database
        self.signer = signer
        self.subjects_limit = subjects_limit

    def default_state(self) -> Dict[str, Any]:
        return {"totalNumberPrepared": 0}

    async def execute(self) -> None:
        prepared = await self.prepare()
        if prepared:
            self.logger.info(
                "Payouts prepared",
                count=len(prepared),
                total=self.state["totalNumberPrepared"],
            )

    async def prepare(self) -> List[PayoutDTO]:
        """Prepare one batch of payouts. Subject errors never abort the batch."""
        subjects = await self.capability.fetch_subjects(self.subjects_limit)
        prepared: List[PayoutDTO] = []
        seen = set()

        for subject in subjects:
            key = (subject.collection, subject.slug, subject.address)
            if key in seen:
                self.logger.debug("Duplicate subject ignored", subject=subject.slug)
                continue
            seen.add(key)

            try:
                payout = await self.prepare_subject(subject)
            except AttributionDeniedError as e:
                self.logger.info("Attribution denied", subject=subject.slug, **e.details)
                continue
            except SigningError as e:
                self.logger.error(
                    "Signing failed, subject skipped",
                    subject=subject.slug,
                    address=subject.address,
                    error=e.message,
                )
                continue
            except (ElevateException, SQLAlchemyError) as e:
                self.logger.error(
                    "Subject preparation failed, subject skipped",
                    subject=subject.slug,
                    address=subject.address,
                    error=str(e),
                    exc_info=True,
                )
                continue

            if payout is not None:
                prepared.append(payout_to_dto(payout))
                self.state["totalNumberPrepared"] += 1

        return prepared

    async def prepare_subject(self, subject: PayoutSubject) -> Optional[Payout]:
        asset_id = self.capability.get_asset_identifier()

        if not await self.capability.verify_attribution_allowance(subject):
            self.logger.debug("Subject not allowed", subject=subject.slug, asset_id=asset_id)
            return None

        multiplier = await self.capability.get_multiplier(subject.address)
        amount = self.capability.get_asset_amount(subject, multiplier)

        if amount <= 0:
            async with self.database.session() as session:
                await self.capability.mark_subject(session, subject, PayoutState.NOT_ELIGIBLE)
            self.logger.info("Subject not eligible", subject=subject.slug, amount=amount)
            return None

        signed = self.signer.sign(asset_id, amount, subject.address)

        payout = Payout(
            subject_collection=subject.collection,
            subject_slug=subject.slug,
            user_address=subject.address,
            asset_id=asset_id,
            amount=amount,
            signed_payload=signed.payload,
            transaction_hash=signed.hash,
            payout_state=PayoutState.PREPARED,
            attempts=0,
        )

        try:
            async with self.database.session() as session:
                session.add(payout)
                await session.flush()
                await self.capability.mark_subject(session, subject, PayoutState.PREPARED)
        except IntegrityError:
            raise AttributionDeniedError(subject.address, asset_id)

        self.logger.debug(
            "Payout prepared",
            subject=subject.slug,
            address=subject.address,
            asset_id=asset_id,
            amount=amount,
            multiplier=multiplier,
            hash=signed.hash,
        )
        return payout
