"""
Strava API client.

Thin synchronous wrapper around the Strava REST API v3. Credentials are
passed explicitly on every call; a refreshed token pair is returned to the
caller, which is responsible for persisting it.
"""

import logging
from datetime import datetime
from typing import Any

import httpx

from health_fitness_ledger.domain.fitness import StravaCredentials
from health_fitness_ledger.utils.exceptions import AuthenticationError, StravaClientError
from health_fitness_ledger.utils.parameters import StravaConfig

logger = logging.getLogger(__name__)

MAX_PER_PAGE = 200


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.reason_phrase or f"HTTP {response.status_code}"

    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    return response.reason_phrase or f"HTTP {response.status_code}"


class StravaClient:
    """
    Strava API client.

    One instance wraps one ``httpx.Client``; pass ``http_client`` to reuse
    an existing client or to inject a transport in tests.
    """

    def __init__(self, config: StravaConfig, http_client: httpx.Client | None = None) -> None:
        """
        Initialize Strava client.

        Args:
            config: Strava configuration.
            http_client: Optional preconfigured HTTP client.
        """
        self.config = config
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.Client(timeout=config.timeout_seconds)

    def close(self) -> None:
        if self._owns_http_client:
            self._http_client.close()

    def __enter__(self) -> "StravaClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _get(self, path: str, credentials: StravaCredentials, params: dict[str, Any] | None = None) -> Any:
        url = f"{self.config.api_base}{path}"

        try:
            response = self._http_client.get(
                url,
                params=params,
                headers={"Authorization": f"Bearer {credentials.access_token}"},
            )
        except httpx.HTTPError as e:
            raise StravaClientError(f"Request to {path} failed: {e}") from e

        if response.status_code == 401:
            raise AuthenticationError(f"Strava rejected the access token: {_error_message(response)}")
        if response.is_error:
            raise StravaClientError(
                f"Failed to fetch {path} ({response.status_code}): {_error_message(response)}"
            )

        try:
            return response.json()
        except ValueError as e:
            raise StravaClientError(f"Invalid JSON payload from {path}") from e

    def refresh_token(self, credentials: StravaCredentials) -> StravaCredentials:
        """
        Exchange a refresh token for a new token pair.

        Args:
            credentials: Current credentials.

        Returns:
            New credentials; the athlete id is kept when Strava omits it.

        Raises:
            AuthenticationError: If the client is not configured or Strava
                rejects the refresh.
        """
        if not self.config.client_id or not self.config.client_secret:
            raise AuthenticationError("Strava client_id and client_secret are not configured")

        try:
            response = self._http_client.post(
                f"{self.config.oauth_base}/token",
                json={
                    "client_id": self.config.client_id,
                    "client_secret": self.config.client_secret,
                    "grant_type": "refresh_token",
                    "refresh_token": credentials.refresh_token,
                },
            )
        except httpx.HTTPError as e:
            raise AuthenticationError(f"Failed to refresh Strava token: {e}") from e

        if response.is_error:
            raise AuthenticationError(f"Failed to refresh Strava token: {_error_message(response)}")

        try:
            data = response.json()
            refreshed = StravaCredentials(
                access_token=data["access_token"],
                refresh_token=data["refresh_token"],
                expires_at=data["expires_at"],
                athlete_id=(data.get("athlete") or {}).get("id") or credentials.athlete_id,
            )
        except (ValueError, KeyError) as e:
            raise AuthenticationError(f"Unexpected token refresh response: {e}") from e

        logger.info(f"Refreshed Strava access token for athlete {refreshed.athlete_id}")
        return refreshed

    def ensure_fresh(
        self, credentials: StravaCredentials, now: datetime | None = None
    ) -> StravaCredentials:
        """
        Return credentials that stay valid for at least the configured margin.

        Args:
            credentials: Current credentials.
            now: Reference time; defaults to the current time.

        Returns:
            The same credentials, or refreshed ones if they expire within
            ``refresh_margin_seconds``.
        """
        if credentials.expires_within(self.config.refresh_margin_seconds, now):
            logger.info("Strava access token expired or about to expire, refreshing")
            return self.refresh_token(credentials)
        return credentials

    def get_athlete(self, credentials: StravaCredentials) -> dict[str, Any]:
        athlete: dict[str, Any] = self._get("/athlete", credentials)
        return athlete

    def get_activities(
        self,
        credentials: StravaCredentials,
        page: int = 1,
        per_page: int | None = None,
        after: int | None = None,
        before: int | None = None,
    ) -> list[dict[str, Any]]:
        """
        Fetch one page of the athlete's activities.

        Args:
            credentials: Valid credentials.
            page: Page number, starting at 1.
            per_page: Page size, capped at 200; defaults to the configured size.
            after: Only activities after this unix timestamp.
            before: Only activities before this unix timestamp.

        Returns:
            Raw activity payloads.
        """
        params: dict[str, Any] = {
            "page": page,
            "per_page": min(per_page or self.config.per_page, MAX_PER_PAGE),
        }
        if after:
            params["after"] = after
        if before:
            params["before"] = before

        activities = self._get("/athlete/activities", credentials, params)
        if not isinstance(activities, list):
            raise StravaClientError("Strava activities payload must be a JSON list")

        logger.debug(f"Fetched {len(activities)} activities (page {page})")
        return activities

    def get_activity(self, credentials: StravaCredentials, activity_id: int) -> dict[str, Any]:
        activity: dict[str, Any] = self._get(f"/activities/{activity_id}", credentials)
        return activity
