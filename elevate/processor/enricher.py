"""
Activity enrichment.

Consumes `activity.created` messages: fetches the activity detail from the
provider on behalf of its owner and completes the pending activity as
`PROCESSED`, or marks it `FAILED`. Failures are terminal, nothing is retried
here. Messages for activities that are no longer pending are acknowledged
without effect.
"""

from typing import Any, Dict, Optional

import structlog
from sqlalchemy import select, update

from elevate.core.database import Database
from elevate.core.exceptions import (
    IntegrationMissingError, NotFoundError, RemoteUnavailableError
)
from elevate.models.activity import Activity, ProcessingState
from elevate.oauth.service import OAuthService
from elevate.services.event_channel import ActivityCreatedEvent


logger = structlog.get_logger(__name__)


class ActivityEnricher:
    """Completes pending activities with provider detail."""

    def __init__(self, database: Database, oauth_service: OAuthService):
        self.database = database
        self.oauth_service = oauth_service
        self.logger = logger.bind(service="activity_enricher")

    async def on_activity_created(self, event: ActivityCreatedEvent) -> None:
        await self.enrich(event.slug)

    async def enrich(self, slug: str) -> ProcessingState:
        """Enrich the activity `slug` and return its resulting state."""
        activity = await self._load(slug)
        if activity is None:
            raise NotFoundError(f"Activity {slug} does not exist", {"slug": slug})

        if activity.processing_state != ProcessingState.PENDING:
            self.logger.debug(
                "Activity already enriched",
                slug=slug,
                state=activity.processing_state.value,
            )
            return activity.processing_state

        integration = await self.oauth_service.get_integration(activity.provider, activity.address)
        if integration is None:
            error = IntegrationMissingError(activity.provider, activity.address)
            self.logger.error(error.message, slug=slug)
            return await self._fail(slug, error.message)

        try:
            response = await self.oauth_service.call_provider_api(
                f"/activities/{activity.remote_identifier}", integration
            )
            if not response.ok:
                raise RemoteUnavailableError(
                    f"Provider answered {response.code}",
                    {"code": response.code, "data": response.data},
                )
            driver = self.oauth_service.driver_for(activity.provider)
            detail = driver.map_activity(response.data)
        except Exception as e:
            self.logger.error(
                "Activity detail request failed",
                slug=slug,
                provider=activity.provider,
                address=activity.address,
                error=str(e),
                exc_info=True,
            )
            return await self._fail(
                slug,
                f"An error happened for {activity.provider} during request "
                f'with address "{activity.address}" and activity slug "{slug}": {e}',
            )

        return await self._complete(slug, detail)

    async def _load(self, slug: str) -> Optional[Activity]:
        async with self.database.session() as session:
            result = await session.execute(select(Activity).where(Activity.slug == slug))
            return result.scalar_one_or_none()

    async def _complete(self, slug: str, detail: Dict[str, Any]) -> ProcessingState:
        updated = await self._finalize(
            slug,
            processing_state=ProcessingState.PROCESSED,
            activity_data=detail,
            error_message=None,
        )
        if not updated:
            return await self._current_state(slug)

        self.logger.info("Activity processed", slug=slug)
        return ProcessingState.PROCESSED

    async def _fail(self, slug: str, error: str) -> ProcessingState:
        updated = await self._finalize(
            slug, processing_state=ProcessingState.FAILED, error_message=error
        )
        if not updated:
            return await self._current_state(slug)
        return ProcessingState.FAILED

    async def _current_state(self, slug: str) -> ProcessingState:
        """State written by whoever completed the activity first."""
        activity = await self._load(slug)
        self.logger.info(
            "Activity completed concurrently",
            slug=slug,
            state=activity.processing_state.value,
        )
        return activity.processing_state

    async def _finalize(self, slug: str, **values: Any) -> bool:
        """Apply the terminal update, only while the activity is still pending."""
        async with self.database.session() as session:
            result = await session.execute(
                update(Activity)
                .where(
                    Activity.slug == slug,
                    Activity.processing_state == ProcessingState.PENDING,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount > 0
