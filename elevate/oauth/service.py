"""
OAuth integration service.

Looks up a user's provider integration, keeps its access token fresh and runs
authorized provider API calls on behalf of the user.
"""

from datetime import timedelta
from typing import Dict, Optional

import structlog
from sqlalchemy import select

from elevate.core.database import Database
from elevate.core.exceptions import ConfigurationError, IntegrationMissingError
from elevate.models.account import AccountIntegration
from elevate.utils.time import utc_now

from .drivers import OAuthDriver, ProviderResponse


logger = structlog.get_logger(__name__)

# refresh tokens that expire within this window
TOKEN_EXPIRY_MARGIN = timedelta(minutes=5)


class OAuthService:
    """Per-provider drivers plus integration storage."""

    def __init__(self, database: Database, drivers: Dict[str, OAuthDriver]):
        self.database = database
        self.drivers = {name.lower(): driver for name, driver in drivers.items()}
        self.logger = logger.bind(service="oauth_service")

    def driver_for(self, provider: str) -> OAuthDriver:
        driver = self.drivers.get(provider.lower())
        if driver is None:
            raise ConfigurationError(f'Invalid OAuth provider "{provider}"')
        return driver

    async def get_integration(self, provider: str, address: str) -> Optional[AccountIntegration]:
        async with self.database.session() as session:
            result = await session.execute(
                select(AccountIntegration).where(
                    AccountIntegration.provider == provider.lower(),
                    AccountIntegration.address == address,
                )
            )
            return result.scalar_one_or_none()

    async def get_access_token(self, integration: AccountIntegration) -> str:
        """Return a valid access token, refreshing and storing it when it expired."""
        if not integration.access_token and not integration.refresh_token:
            raise IntegrationMissingError(integration.provider, integration.address)

        expires_at = integration.expires_at
        if integration.access_token and expires_at and expires_at > utc_now() + TOKEN_EXPIRY_MARGIN:
            return integration.access_token

        driver = self.driver_for(integration.provider)
        token = await driver.update_access_token(integration.refresh_token)

        async with self.database.session() as session:
            stored = await session.get(AccountIntegration, integration.id)
            if stored is None:
                raise IntegrationMissingError(integration.provider, integration.address)
            stored.access_token = token.access_token
            stored.refresh_token = token.refresh_token
            stored.expires_at = token.expires_at

        integration.access_token = token.access_token
        integration.refresh_token = token.refresh_token
        integration.expires_at = token.expires_at

        self.logger.info(
            "Integration token refreshed",
            provider=integration.provider,
            address=integration.address,
        )
        return token.access_token

    async def call_provider_api(self, endpoint: str, integration: AccountIntegration) -> ProviderResponse:
        """Run an authorized GET request for the owner of `integration`."""
        access_token = await self.get_access_token(integration)
        driver = self.driver_for(integration.provider)
        return await driver.execute_request(access_token, endpoint)
