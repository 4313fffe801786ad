"""
OAuth provider drivers.

A driver knows how to refresh an access token at its provider, how to run an
authorized API request and how to map provider entities into the internal
shapes. The authorization-code exchange happens in the authentication layer.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Type

import aiohttp
import asyncio
import structlog

from elevate.core.config import OAuthProviderConfig
from elevate.core.exceptions import RemoteUnavailableError, ConfigurationError
from elevate.utils.time import from_unix


logger = structlog.get_logger(__name__)


@dataclass
class ProviderResponse:
    """Result of an authorized provider API call."""
    code: int
    status: str
    data: Any

    @property
    def ok(self) -> bool:
        return 200 <= self.code < 300


@dataclass
class AccessToken:
    """Token pair returned by a provider's token endpoint."""
    access_token: str
    refresh_token: str
    expires_at: datetime
    remote_identifier: Optional[str] = None


class OAuthDriver:
    """Generic OAuth 2.0 driver."""

    # providers returning `expires_at` as unix seconds instead of milliseconds
    uses_seconds_utc = False

    def __init__(self, name: str, config: OAuthProviderConfig, timeout: float = 15.0):
        self.name = name
        self.config = config
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.logger = logger.bind(service="oauth_driver", provider=name)

    async def update_access_token(self, refresh_token: str) -> AccessToken:
        """Exchange a refresh token for a new token pair."""
        params = {
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(self.config.token_url, data=params) as response:
                    if response.status != 200:
                        raise RemoteUnavailableError(
                            f'An error occurred requesting an access token from "{self.name}"',
                            {"status": response.status},
                        )
                    data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RemoteUnavailableError(
                f'Could not reach the token endpoint of "{self.name}": {e}'
            ) from e

        self.logger.info("Access token refreshed")
        return self.extract_token(data)

    def extract_token(self, data: Dict[str, Any]) -> AccessToken:
        expires_at = int(data["expires_at"])
        if not self.uses_seconds_utc:
            expires_at //= 1000
        return AccessToken(
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            expires_at=from_unix(expires_at),
        )

    async def execute_request(
        self,
        access_token: str,
        endpoint: str,
        method: str = "GET",
    ) -> ProviderResponse:
        """Run an authorized request against the provider API."""
        url = f"{self.config.api_url.rstrip('/')}/{endpoint.lstrip('/')}"
        headers = {"Authorization": f"Bearer {access_token}"}

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.request(method, url, headers=headers) as response:
                    data = await response.json(content_type=None)
                    status = "OK" if response.status < 400 else "ERROR"
                    return ProviderResponse(code=response.status, status=status, data=data)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RemoteUnavailableError(
                f'Request to "{self.name}" failed: {e}', {"endpoint": endpoint}
            ) from e

    def map_activity(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Map a provider activity into the internal detail shape."""
        return dict(data)


class StravaOAuthDriver(OAuthDriver):
    """Strava: unix-seconds expiry, athlete id as remote identifier."""

    uses_seconds_utc = True

    def extract_token(self, data: Dict[str, Any]) -> AccessToken:
        token = super().extract_token(data)
        athlete = data.get("athlete")
        if athlete:
            token.remote_identifier = str(athlete["id"])
        return token

    def map_activity(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "name": data.get("name"),
            "sport": data.get("sport_type"),
            "started_at": data.get("start_date"),
            "timezone": data.get("timezone"),
            "start_location": data.get("start_latlng"),
            "end_location": data.get("end_latlng"),
            "is_manual": bool(data.get("manual", False)),
            "has_trainer_device": bool(data.get("trainer", False)),
            "elapsed_time": data.get("elapsed_time", 0),
            "moving_time": data.get("moving_time", 0),
            "distance": data.get("distance", 0),
            "elevation": data.get("total_elevation_gain", 0),
            "kilojoules": data.get("kilojoules") or 0,
            "calories": data.get("calories") or 0,
        }


DRIVERS: Dict[str, Type[OAuthDriver]] = {
    "strava": StravaOAuthDriver,
}


def build_driver(name: str, config: OAuthProviderConfig, timeout: float = 15.0) -> OAuthDriver:
    """Instantiate the driver registered for provider `name`."""
    name = name.lower()
    driver_class = DRIVERS.get(name, OAuthDriver)
    if not config.api_url:
        raise ConfigurationError(f'Missing API URL for OAuth provider "{name}"')
    return driver_class(name, config, timeout)
