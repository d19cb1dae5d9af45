"""
Client for the external stats API.

Retrieves a user's lifetime points and work units. Two requests are made per user:

    GET {base}/user/{account_name}/stats?passkey={secret_key}   -> {"earned": 1234}
    GET {base}/bonus?user={account_name}&passkey={secret_key}   -> [{"finished": 56}, ...]

The API sits behind a cache that occasionally serves a stale body, so the client keeps
the last body returned for each request URL. If a new response is identical to the
previous one, it makes exactly one repeat request and uses that response instead.
"""

import asyncio
import json
from typing import Any, Dict, Optional

import httpx

from tcbot.config import Config
from tcbot.data_models.competitors import UserRef
from tcbot.data_models.stats import SourceStats, Stats
from tcbot.utils.exceptions import ExternalConnectionError
from tcbot.utils.logger import format_with_commas, setup_logger

logger = setup_logger(__name__)

HTTP_TOO_MANY_REQUESTS = 429
HTTP_OK = 200


class ExternalStatsSource:
    """Async adapter for the external stats API."""

    def __init__(self,
                 base_url: Optional[str] = None,
                 timeout: Optional[float] = None,
                 max_attempts: Optional[int] = None,
                 retry_sleep_seconds: Optional[float] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Args:
            base_url: Root URL of the stats API, defaults to Config.STATS_API_URL
            timeout: Per-request timeout in seconds
            max_attempts: Attempts per request when the API returns 429 Too Many Requests
            retry_sleep_seconds: Wait between 429 retries
            transport: Optional httpx transport, e.g. httpx.MockTransport in tests
        """
        self.base_url = (base_url or Config.STATS_API_URL).rstrip('/')
        self.timeout = timeout if timeout is not None else Config.STATS_REQUEST_TIMEOUT_SECONDS
        self.max_attempts = max(1, max_attempts if max_attempts is not None else Config.MAXIMUM_HTTP_REQUEST_ATTEMPTS)
        self.retry_sleep_seconds = (
            retry_sleep_seconds if retry_sleep_seconds is not None
            else Config.SECONDS_BETWEEN_HTTP_REQUEST_ATTEMPTS
        )
        self._client = httpx.AsyncClient(timeout=self.timeout, transport=transport)
        self._cached_responses: Dict[str, str] = {}

    async def fetch_total_stats(self, account_name: str, secret_key: str) -> SourceStats:
        """Retrieve the lifetime points and units for an account and secret key."""
        points = await self._fetch_points(account_name, secret_key)
        units = await self._fetch_units(account_name, secret_key)
        logger.debug(
            f"Retrieved stats for '{account_name}': {format_with_commas(points)} points, "
            f"{format_with_commas(units)} units"
        )
        return SourceStats(points=points, units=units)

    async def fetch_user_total_stats(self, user: UserRef) -> Stats:
        """Retrieve a user's lifetime stats, stamped with their id and the current UTC time."""
        source_stats = await self.fetch_total_stats(user.account_name, user.secret_key)
        return Stats.create_now(user.id, source_stats.points, source_stats.units)

    async def aclose(self):
        await self._client.aclose()

    async def _fetch_points(self, account_name: str, secret_key: str) -> int:
        url = f"{self.base_url}/user/{account_name}/stats"
        params = {'passkey': secret_key}
        body = await self._get_fresh_body(url, params)
        payload = self._parse_json(url, body)

        try:
            points = int(payload['earned'])
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Unexpected points response from '{url}': {body}")
            raise ExternalConnectionError(url, f"Unable to read points from response: {e}") from e

        self._remember_body(url, params, body)
        return points

    async def _fetch_units(self, account_name: str, secret_key: str) -> int:
        url = f"{self.base_url}/bonus"
        params = {'user': account_name, 'passkey': secret_key}
        body = await self._get_fresh_body(url, params)
        payload = self._parse_json(url, body)

        if not isinstance(payload, list):
            logger.warning(f"Unexpected units response from '{url}': {body}")
            raise ExternalConnectionError(url, "Expected a list of unit entries")

        try:
            units = [int(entry['finished']) for entry in payload]
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Unexpected units response from '{url}': {body}")
            raise ExternalConnectionError(url, f"Unable to read units from response: {e}") from e

        self._remember_body(url, params, body)

        if not units:
            logger.debug(f"No units found for '{account_name}'")
            return 0

        if len(units) > 1:
            # Same account and key used on more than one team; only the lowest count is trusted
            logger.warning(f"Found {len(units)} unit entries for '{account_name}', using lowest: {units}")
        return min(units)

    @staticmethod
    def _cache_key(url: str, params: Dict[str, str]) -> str:
        return str(httpx.URL(url, params=params))

    def _remember_body(self, url: str, params: Dict[str, str], body: str):
        """Only bodies that were read successfully are kept for the staleness check."""
        self._cached_responses[self._cache_key(url, params)] = body

    async def _get_fresh_body(self, url: str, params: Dict[str, str]) -> str:
        body = await self._send_request(url, params)

        if self._cached_responses.get(self._cache_key(url, params)) == body:
            logger.debug(f"Response from '{url}' unchanged since last request, requesting again")
            body = await self._send_request(url, params)

        return body

    async def _send_request(self, url: str, params: Dict[str, str]) -> str:
        for attempt in range(1, self.max_attempts + 1):
            try:
                response = await self._client.get(url, params=params)
            except httpx.TimeoutException as e:
                raise ExternalConnectionError(url, f"Timed out after {self.timeout}s") from e
            except httpx.HTTPError as e:
                raise ExternalConnectionError(url, f"Unable to send request: {e}") from e

            if response.status_code == HTTP_TOO_MANY_REQUESTS:
                if attempt < self.max_attempts:
                    logger.warning(
                        f"Too many requests sent to '{url}' (attempt {attempt}/{self.max_attempts}), "
                        f"retrying in {self.retry_sleep_seconds}s"
                    )
                    await asyncio.sleep(self.retry_sleep_seconds)
                    continue
                raise ExternalConnectionError(url, f"Too many requests, gave up after {self.max_attempts} attempts")

            if response.status_code != HTTP_OK:
                raise ExternalConnectionError(url, f"Invalid response ({response.status_code}): {response.text}")

            if not response.text or not response.text.strip():
                raise ExternalConnectionError(url, "Response body was blank")

            return response.text

        raise ExternalConnectionError(url, f"No response after {self.max_attempts} attempts")

    @staticmethod
    def _parse_json(url: str, body: str) -> Any:
        try:
            return json.loads(body)
        except json.JSONDecodeError as e:
            logger.warning(f"Unable to parse response from '{url}': {body}")
            raise ExternalConnectionError(url, f"Invalid JSON response: {e}") from e
