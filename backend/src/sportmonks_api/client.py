"""
SportMonks Cricket API client with rate limiting, retry logic, and error handling.

Handles all communication with the SportMonks cricket data provider.
"""

import asyncio
import logging
import random
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Optional

import httpx
from asyncio_throttle import Throttler

from config import Config

logger = logging.getLogger(__name__)


class SportMonksAPIError(Exception):
    """Base exception for SportMonks API errors."""
    pass


class SportMonksAPIRateLimitError(SportMonksAPIError):
    """Raised when rate limit is exceeded."""
    pass


class SportMonksAPINonRetryableError(SportMonksAPIError):
    """Raised for non-retryable errors (4xx except 429)."""
    pass


class SportMonksClient:
    """Client for interacting with the SportMonks cricket API."""

    RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

    def __init__(self, config: Config, http_client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.base_url = config.sportmonks_api_base_url.rstrip("/")
        self.api_token = config.sportmonks_api_token
        self.max_retries = config.max_retries
        self.retry_backoff_base = config.retry_backoff_base
        self.max_retry_delay = config.max_retry_delay

        self.throttler = Throttler(
            rate_limit=config.max_requests_per_minute,
            period=60.0
        )
        self.min_interval = config.min_request_interval
        self.last_request_time = 0.0

        self.client = http_client or httpx.AsyncClient(
            timeout=config.request_timeout,
            follow_redirects=True,
            headers={"Accept": "application/json"}
        )

    async def _wait_for_rate_limit(self):
        """Wait to respect rate limiting."""
        await self.throttler.acquire()

        time_since_last = time.time() - self.last_request_time
        if time_since_last < self.min_interval:
            wait_time = self.min_interval - time_since_last
            jitter = wait_time * 0.25 * (random.random() * 2 - 1)
            await asyncio.sleep(wait_time + jitter)

        self.last_request_time = time.time()

    def _backoff(self, attempt: int) -> float:
        backoff = min(self.retry_backoff_base * (2 ** attempt), self.max_retry_delay)
        # ±25% jitter
        return backoff + backoff * 0.25 * (random.random() * 2 - 1)

    def _retry_after(self, header: Optional[str], attempt: int) -> float:
        """
        Seconds to wait from a Retry-After header (delta-seconds or HTTP-date).
        Missing or unparseable values fall back to the backoff delay.
        """
        if header:
            value = header.strip()
            try:
                return max(float(value), 0.0)
            except ValueError:
                pass
            try:
                retry_at = parsedate_to_datetime(value)
            except (TypeError, ValueError):
                retry_at = None
            if retry_at is not None:
                if retry_at.tzinfo is None:
                    retry_at = retry_at.replace(tzinfo=timezone.utc)
                return max((retry_at - datetime.now(timezone.utc)).total_seconds(), 0.0)
        return self._backoff(attempt)

    async def _request_with_retry(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None
    ) -> httpx.Response:
        """
        Make HTTP request with retry logic.

        The API token is appended to the query string; it is never logged.

        Raises:
            SportMonksAPIRateLimitError: If still rate limited after retries
            SportMonksAPINonRetryableError: If the provider answered 4xx (not 429)
            SportMonksAPIError: For other errors after retries exhausted
        """
        if not self.api_token:
            raise SportMonksAPINonRetryableError("SPORTMONKS_API_TOKEN is not configured")

        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        query = dict(params or {})
        query["api_token"] = self.api_token
        last_exception = None

        for attempt in range(self.max_retries + 1):
            try:
                await self._wait_for_rate_limit()
                response = await self.client.request(method, url, params=query)

                if response.is_success:
                    return response

                status_code = response.status_code

                if status_code == 429:
                    retry_after = self._retry_after(response.headers.get("Retry-After"), attempt)
                    logger.warning("Rate limited by SportMonks API", extra={
                        "endpoint": endpoint,
                        "retry_after": retry_after,
                        "attempt": attempt + 1
                    })
                    if attempt < self.max_retries:
                        await asyncio.sleep(min(retry_after, self.max_retry_delay))
                        continue
                    raise SportMonksAPIRateLimitError(
                        f"Rate limited after {self.max_retries} retries"
                    )

                if status_code not in self.RETRYABLE_STATUS_CODES:
                    error_text = response.text[:500]
                    logger.error("Non-retryable error from SportMonks API", extra={
                        "endpoint": endpoint,
                        "status_code": status_code,
                        "error": error_text
                    })
                    raise SportMonksAPINonRetryableError(
                        f"Non-retryable error {status_code}: {error_text}"
                    )

                if attempt < self.max_retries:
                    wait_time = self._backoff(attempt)
                    logger.warning("Retryable error from SportMonks API, retrying", extra={
                        "endpoint": endpoint,
                        "status_code": status_code,
                        "attempt": attempt + 1,
                        "wait_time": wait_time
                    })
                    await asyncio.sleep(wait_time)
                    continue

                raise SportMonksAPIError(
                    f"Request failed after {self.max_retries} retries: "
                    f"{status_code} - {response.text[:500]}"
                )

            except httpx.TimeoutException as e:
                last_exception = e
                if attempt < self.max_retries:
                    wait_time = self._backoff(attempt)
                    logger.warning("Timeout from SportMonks API, retrying", extra={
                        "endpoint": endpoint,
                        "attempt": attempt + 1,
                        "wait_time": wait_time
                    })
                    await asyncio.sleep(wait_time)
                    continue
                raise SportMonksAPIError(
                    f"Request timeout after {self.max_retries} retries"
                ) from e

            except httpx.NetworkError as e:
                last_exception = e
                if attempt < self.max_retries:
                    wait_time = self._backoff(attempt)
                    logger.warning("Network error from SportMonks API, retrying", extra={
                        "endpoint": endpoint,
                        "attempt": attempt + 1,
                        "wait_time": wait_time,
                        "error": str(e)
                    })
                    await asyncio.sleep(wait_time)
                    continue
                raise SportMonksAPIError(
                    f"Network error after {self.max_retries} retries"
                ) from e

        raise SportMonksAPIError("Request failed") from last_exception

    def _parse_data(self, response: httpx.Response, endpoint: str) -> Any:
        """Decode the JSON body and unwrap the top-level ``data`` member."""
        try:
            body = response.json()
        except ValueError as e:
            logger.error("JSON parse failed", extra={
                "endpoint": endpoint,
                "status_code": response.status_code,
                "content_type": response.headers.get("content-type", "unknown"),
                "response_preview": response.text[:500]
            })
            raise SportMonksAPIError(f"Failed to parse JSON: {e}") from e

        if not isinstance(body, dict) or "data" not in body:
            raise SportMonksAPIError(f"Invalid API response format from {endpoint}")
        return body["data"]

    async def get_fixtures(
        self,
        starts_between: str,
        include: str = "localteam,visitorteam"
    ) -> List[Dict[str, Any]]:
        """
        Get fixtures starting inside a date range.

        Args:
            starts_between: "YYYY-MM-DD,YYYY-MM-DD"
            include: Related resources to embed

        Returns:
            List of fixture dictionaries
        """
        params = {
            "filter[starts_between]": starts_between,
            "include": include,
        }
        if self.config.sportmonks_league_id:
            params["filter[league_id]"] = self.config.sportmonks_league_id

        response = await self._request_with_retry("GET", "fixtures", params=params)
        fixtures = self._parse_data(response, "fixtures")
        if not isinstance(fixtures, list):
            raise SportMonksAPIError("Fixtures response data is not a list")

        logger.debug("Fetched fixtures", extra={
            "starts_between": starts_between,
            "fixtures_count": len(fixtures)
        })

        return fixtures

    async def get_fixture(self, fixture_id: int, include: str) -> Dict[str, Any]:
        """
        Get a single fixture with embedded resources.

        Args:
            fixture_id: SportMonks fixture ID
            include: e.g. "batting.batsman" or "bowling.bowler"

        Returns:
            Fixture data dictionary
        """
        endpoint = f"fixtures/{fixture_id}"
        response = await self._request_with_retry("GET", endpoint, params={"include": include})
        data = self._parse_data(response, endpoint)
        if not isinstance(data, dict):
            raise SportMonksAPIError(f"Fixture {fixture_id} response data is not an object")
        return data

    async def get_squad(self, team_id: int, season_id: int) -> Dict[str, Any]:
        """
        Get a team's squad for a season.

        Returns:
            Full response body (the squad lives under ``data``)
        """
        endpoint = f"teams/{team_id}/squad/{season_id}"
        response = await self._request_with_retry("GET", endpoint)
        data = self._parse_data(response, endpoint)
        return {"data": data}

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
