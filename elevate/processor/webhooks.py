"""
Webhook ingestion.

Provider webhook events announcing a new activity are stored as `PENDING`
activity headers and announced on the `activity.created` channel. Enrichment
happens asynchronously, the webhook caller never waits for it.

Daily indexes are allocated from a per-owner, per-day counter row with a
conditional `UPDATE ... RETURNING`, so concurrent events of the same owner
and day never share an index.
"""

from datetime import datetime
from typing import Any, Dict, Optional

import structlog
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from elevate.core.database import Database
from elevate.core.exceptions import DuplicateError, ElevateException, ValidationError
from elevate.models.activity import Activity, ActivityCounter, ProcessingState
from elevate.models.dto import ActivityDTO, activity_to_dto
from elevate.models.payout import PayoutState
from elevate.services.event_channel import ActivityCreatedEvent, EventChannel
from elevate.utils.time import date_slug, from_unix, utc_now


logger = structlog.get_logger(__name__)

MAX_ALLOCATION_ATTEMPTS = 3


class WebhookEvent(BaseModel):
    """Provider webhook payload."""

    object_type: str
    object_id: str
    aspect_type: str
    owner_id: str
    event_time: Optional[int] = None
    subscription_id: Optional[int] = None
    updates: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("object_id", "owner_id", mode="before")
    @classmethod
    def coerce_identifier(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @property
    def is_activity_creation(self) -> bool:
        return self.object_type == "activity" and self.aspect_type == "create"

    @property
    def moment(self) -> datetime:
        return from_unix(self.event_time) if self.event_time else utc_now()


def build_slug(day: str, daily_index: int, remote_identifier: str, owner_id: str) -> str:
    return "-".join([day, str(daily_index), remote_identifier, owner_id])


class WebhookIngestor:
    """Turns provider events into pending activities."""

    def __init__(self, database: Database, channel: EventChannel[ActivityCreatedEvent]):
        self.database = database
        self.channel = channel
        self.logger = logger.bind(service="webhook_ingestor")

    async def ingest(self, provider: str, user_address: str, payload: Dict[str, Any]) -> Optional[ActivityDTO]:
        """
        Ingest one webhook event.

        Returns the created activity, or None for events that do not announce
        an activity creation. An event whose activity is still pending is
        announced again and returns that activity.

        Raises:
            ValidationError: malformed payload
            DuplicateError: the activity was already ingested and enriched
            ElevateException: storage or announcement failure, with the object id in the message
        """
        try:
            event = WebhookEvent.model_validate(payload)
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid webhook event payload",
                {"errors": e.errors(include_url=False, include_context=False)},
            )

        if not event.is_activity_creation:
            self.logger.info(
                "Ignoring webhook event",
                object_type=event.object_type,
                aspect_type=event.aspect_type,
                object_id=event.object_id,
            )
            return None

        existing = await self._find(event.object_id)
        if existing is not None:
            if existing.processing_state != ProcessingState.PENDING:
                raise DuplicateError(
                    f"Activity {event.object_id} was already ingested",
                    {"remote_identifier": event.object_id},
                )
            # stored earlier but maybe never announced
            activity = activity_to_dto(existing)
            await self._announce(activity, event.object_id)
            self.logger.info("Pending activity announced again", slug=activity.slug)
            return activity

        try:
            activity = await self._create(provider.lower(), user_address, event)
        except DuplicateError:
            raise
        except Exception as e:
            self.logger.error(
                "Webhook event handling failed",
                object_id=event.object_id,
                error=str(e),
                exc_info=True,
            )
            raise ElevateException(
                f"An error occurred while handling event {event.object_id}: {e}",
                "WEBHOOK_ERROR",
                {"object_id": event.object_id},
            ) from e

        await self._announce(activity, event.object_id)
        self.logger.info(
            "Activity ingested",
            slug=activity.slug,
            address=user_address,
            provider=activity.provider,
        )
        return activity

    async def _announce(self, activity: ActivityDTO, object_id: str) -> None:
        try:
            await self.channel.publish(ActivityCreatedEvent(slug=activity.slug))
        except Exception as e:
            self.logger.error(
                "Activity announcement failed",
                object_id=object_id,
                slug=activity.slug,
                error=str(e),
                exc_info=True,
            )
            raise ElevateException(
                f"An error occurred while announcing event {object_id}: {e}",
                "WEBHOOK_ERROR",
                {"object_id": object_id, "slug": activity.slug},
            ) from e

    async def _find(self, remote_identifier: str) -> Optional[Activity]:
        async with self.database.session() as session:
            result = await session.execute(
                select(Activity).where(Activity.remote_identifier == remote_identifier).limit(1)
            )
            return result.scalar_one_or_none()

    async def _exists(self, remote_identifier: str) -> bool:
        async with self.database.session() as session:
            result = await session.execute(
                select(Activity.id).where(Activity.remote_identifier == remote_identifier).limit(1)
            )
            return result.scalar_one_or_none() is not None

    async def _create(self, provider: str, address: str, event: WebhookEvent) -> ActivityDTO:
        day = date_slug(event.moment)

        for attempt in range(1, MAX_ALLOCATION_ATTEMPTS + 1):
            try:
                async with self.database.session() as session:
                    daily_index = await self.allocate_daily_index(session, address, day)
                    activity = Activity(
                        slug=build_slug(day, daily_index, event.object_id, event.owner_id),
                        address=address,
                        date_slug=day,
                        daily_index=daily_index,
                        remote_identifier=event.object_id,
                        provider=provider,
                        processing_state=ProcessingState.PENDING,
                        payout_state=PayoutState.NOT_STARTED,
                    )
                    session.add(activity)
                    await session.flush()
                    return activity_to_dto(activity)
            except IntegrityError:
                if await self._exists(event.object_id):
                    raise DuplicateError(
                        f"Activity {event.object_id} was already ingested",
                        {"remote_identifier": event.object_id},
                    )
                if attempt == MAX_ALLOCATION_ATTEMPTS:
                    raise
                self.logger.warning(
                    "Daily index allocation collided, retrying",
                    address=address,
                    date_slug=day,
                    attempt=attempt,
                )

    async def allocate_daily_index(self, session: AsyncSession, address: str, day: str) -> int:
        """
        Reserve the next daily index of `address` on `day`.

        The counter row is incremented in place; the first allocation of a day
        seeds it from the activities already stored for that day.
        """
        result = await session.execute(
            update(ActivityCounter)
            .where(ActivityCounter.address == address, ActivityCounter.date_slug == day)
            .values(count=ActivityCounter.count + 1, updated_at=utc_now())
            .returning(ActivityCounter.count)
            .execution_options(synchronize_session=False)
        )
        allocated = result.scalar_one_or_none()
        if allocated is not None:
            return allocated

        existing = await session.execute(
            select(func.count(Activity.id)).where(
                Activity.address == address, Activity.date_slug == day
            )
        )
        allocated = existing.scalar_one() + 1
        session.add(ActivityCounter(address=address, date_slug=day, count=allocated))
        await session.flush()
        return allocated
