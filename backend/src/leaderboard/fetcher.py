"""
Fixture and match-stat fetching.

Wraps the SportMonks client with the Supabase-backed fixture/squad caches and
turns per-fixture batting and bowling scorecards into player-id -> total maps.
Upstream failures do not escape the read paths: fixtures fall back to the last
snapshot (or nothing), a fixture whose scorecard cannot be read scores as
empty. ``get_fixture_start`` is the exception, since the selection lock must
not guess.
"""

import asyncio
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

import httpx

from config import Config
from database.supabase_client import SupabaseClient
from leaderboard.cache import CacheEntry, CachePolicy
from leaderboard.models import FixtureStatSnapshot, parse_timestamp
from sportmonks_api.client import SportMonksAPIError, SportMonksClient

logger = logging.getLogger(__name__)

BATTING_INCLUDE = "batting.batsman"
BOWLING_INCLUDE = "bowling.bowler"
FIXTURE_INCLUDE = "localteam,visitorteam"

# Anything the provider can throw at us for a single request
UPSTREAM_ERRORS = (SportMonksAPIError, httpx.HTTPError, ValueError, TypeError, KeyError)


def starts_between(today: date, days_back: int, days_ahead: int) -> str:
    """Provider date-range filter, e.g. "2024-04-09,2024-04-12"."""
    start = today - timedelta(days=days_back)
    end = today + timedelta(days=days_ahead)
    return f"{start.isoformat()},{end.isoformat()}"


def _to_int(value: Any) -> int:
    if value is None or value == "":
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return 0


def normalize_stat_entries(container: Any, stat_field: str) -> Dict[int, int]:
    """
    Sum one numeric field per player across scorecard entries.

    The provider embeds includes either as a bare list or wrapped as
    ``{"data": [...]}``. A player can appear more than once (e.g. two innings)
    and their values are added together. Missing numbers count as zero and
    entries without a player id are skipped.

    Args:
        container: The ``batting`` or ``bowling`` member of a fixture
        stat_field: "score" for runs, "wickets" for wickets

    Returns:
        Mapping of player_id -> total
    """
    if isinstance(container, dict):
        container = container.get("data")
    if not isinstance(container, list):
        return {}

    totals: Dict[int, int] = {}
    for entry in container:
        if not isinstance(entry, dict) or entry.get("player_id") is None:
            continue
        player_id = _to_int(entry["player_id"])
        totals[player_id] = totals.get(player_id, 0) + _to_int(entry.get(stat_field))
    return totals


class FixtureStatFetcher:
    """Reads fixtures, squads and per-fixture stats through the caches."""

    def __init__(
        self,
        config: Config,
        api_client: SportMonksClient,
        db_client: SupabaseClient,
        cache_policy: Optional[CachePolicy] = None
    ):
        self.config = config
        self.api_client = api_client
        self.db_client = db_client
        self.cache_policy = cache_policy or CachePolicy()
        self.fixtures_cache_ceiling = timedelta(seconds=config.fixtures_cache_ttl)
        self.squad_cache_ttl = timedelta(seconds=config.squad_cache_ttl)

    # Fixtures

    def _cached_fixtures_entry(self, now: datetime) -> Optional[CacheEntry]:
        row = self.db_client.get_latest_fixture_cache()
        entry = CacheEntry.from_row(row, "fixtures", self.fixtures_cache_ceiling)
        if entry is None:
            return None
        fixtures = (entry.payload or {}).get("data") or []
        entry.ttl = self.cache_policy.ttl_for_fixtures(fixtures, self.fixtures_cache_ceiling, now)
        return entry

    async def refresh_fixtures(
        self,
        days_back: Optional[int] = None,
        days_ahead: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        """
        Fetch fixtures from the provider and overwrite the cache.

        Raises:
            SportMonksAPIError: When the provider cannot be read
        """
        now = now or datetime.now(timezone.utc)
        days_back = self.config.fixtures_days_back if days_back is None else days_back
        days_ahead = self.config.fixtures_days_ahead if days_ahead is None else days_ahead
        date_range = starts_between(now.date(), days_back, days_ahead)

        fixtures = await self.api_client.get_fixtures(date_range)
        self.db_client.insert_fixture_cache(
            {"data": fixtures, "starts_between": date_range},
            fetched_at=now
        )

        logger.info("Fixtures refreshed", extra={
            "starts_between": date_range,
            "fixtures_count": len(fixtures)
        })
        return fixtures

    async def get_fixtures(
        self,
        days_back: Optional[int] = None,
        days_ahead: Optional[int] = None,
        force_refresh: bool = False,
        now: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        """
        Get fixtures in the configured window, served from cache while fresh.

        A snapshot is reused only if it covers the same date range and is
        younger than its policy TTL. If the provider then fails, the stale
        snapshot is returned; with no snapshot at all, an empty list.

        Returns:
            Provider fixture dicts
        """
        now = now or datetime.now(timezone.utc)
        days_back = self.config.fixtures_days_back if days_back is None else days_back
        days_ahead = self.config.fixtures_days_ahead if days_ahead is None else days_ahead
        date_range = starts_between(now.date(), days_back, days_ahead)

        entry = self._cached_fixtures_entry(now)
        cached_fixtures = None
        if entry is not None:
            cached_fixtures = (entry.payload or {}).get("data") or []

        if entry is not None and not force_refresh:
            same_range = (entry.payload or {}).get("starts_between") in (None, date_range)
            if same_range and entry.is_fresh(now):
                logger.debug("Using cached fixtures", extra={
                    "cache_age_seconds": entry.age(now).total_seconds(),
                    "ttl_seconds": entry.ttl.total_seconds()
                })
                return cached_fixtures

        try:
            return await self.refresh_fixtures(days_back, days_ahead, now)
        except UPSTREAM_ERRORS as e:
            logger.warning("Fixture fetch failed, serving cached snapshot", extra={
                "error": str(e),
                "error_type": type(e).__name__,
                "has_cache": cached_fixtures is not None
            })
            return cached_fixtures or []

    def get_fixture_start_times(self) -> Dict[int, datetime]:
        """
        Fixture id -> start time from the latest cached snapshot, stale or not.
        No provider call is made.
        """
        row = self.db_client.get_latest_fixture_cache()
        if not row:
            return {}
        fixtures = (row.get("fixtures") or {}).get("data") or []
        start_times: Dict[int, datetime] = {}
        for fixture in fixtures:
            try:
                starting_at = parse_timestamp(fixture.get("starting_at"))
                fixture_id = int(fixture["id"])
            except (KeyError, TypeError, ValueError):
                continue
            if starting_at is not None:
                start_times[fixture_id] = starting_at
        return start_times

    async def get_fixture_start(self, fixture_id: int) -> Optional[datetime]:
        """
        Authoritative start time for one fixture: the cached snapshot, else
        the provider's fixture record.

        Raises:
            SportMonksAPIError: When the fixture is not cached and the
                provider cannot be read
        """
        starting_at = self.get_fixture_start_times().get(fixture_id)
        if starting_at is not None:
            return starting_at

        try:
            fixture = await self.api_client.get_fixture(fixture_id, FIXTURE_INCLUDE)
            return parse_timestamp(fixture.get("starting_at"))
        except SportMonksAPIError:
            raise
        except UPSTREAM_ERRORS as e:
            raise SportMonksAPIError(f"Fixture {fixture_id} start time unavailable: {e}") from e

    # Match stats

    async def get_fixture_stats(self, fixture_id: int) -> FixtureStatSnapshot:
        """
        Runs and wickets per player for one fixture.

        Issues one batting-inclusive and one bowling-inclusive call. Each
        call that fails leaves its map empty and marks the snapshot failed;
        this method never raises.
        """
        snapshot = FixtureStatSnapshot(fixture_id=fixture_id)

        try:
            batting = await self.api_client.get_fixture(fixture_id, BATTING_INCLUDE)
            snapshot.runs = normalize_stat_entries(batting.get("batting"), "score")
            snapshot.starting_at = parse_timestamp(batting.get("starting_at"))
        except UPSTREAM_ERRORS as e:
            snapshot.failed = True
            logger.warning("Batting fetch failed", extra={
                "fixture_id": fixture_id,
                "error": str(e),
                "error_type": type(e).__name__
            })

        try:
            bowling = await self.api_client.get_fixture(fixture_id, BOWLING_INCLUDE)
            snapshot.wickets = normalize_stat_entries(bowling.get("bowling"), "wickets")
            if snapshot.starting_at is None:
                snapshot.starting_at = parse_timestamp(bowling.get("starting_at"))
        except UPSTREAM_ERRORS as e:
            snapshot.failed = True
            logger.warning("Bowling fetch failed", extra={
                "fixture_id": fixture_id,
                "error": str(e),
                "error_type": type(e).__name__
            })

        return snapshot

    async def fetch_stats(self, fixture_ids: Iterable[int]) -> Dict[int, FixtureStatSnapshot]:
        """
        Fetch stats for many fixtures with a bounded number in flight.

        Returns:
            fixture_id -> snapshot for every requested fixture
        """
        fixture_ids = list(dict.fromkeys(fixture_ids))
        semaphore = asyncio.Semaphore(self.config.stats_fetch_concurrency)

        async def fetch_one(fixture_id: int) -> FixtureStatSnapshot:
            async with semaphore:
                return await self.get_fixture_stats(fixture_id)

        results = await asyncio.gather(
            *(fetch_one(fid) for fid in fixture_ids),
            return_exceptions=True
        )

        snapshots: Dict[int, FixtureStatSnapshot] = {}
        for fixture_id, result in zip(fixture_ids, results):
            if isinstance(result, Exception):
                logger.error("Stats fetch crashed", extra={
                    "fixture_id": fixture_id,
                    "error": str(result),
                    "error_type": type(result).__name__
                })
                snapshots[fixture_id] = FixtureStatSnapshot.empty(fixture_id)
            else:
                snapshots[fixture_id] = result
        return snapshots

    # Squads

    async def get_squad(
        self,
        team_id: int,
        season_id: int,
        now: Optional[datetime] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Get a team's squad for a season, cached for ``squad_cache_ttl``.

        Returns:
            Squad response body, the stale cached one if the provider fails,
            or None when nothing is available
        """
        now = now or datetime.now(timezone.utc)
        entry = CacheEntry.from_row(
            self.db_client.get_squad_cache(team_id, season_id),
            "squad",
            self.squad_cache_ttl
        )
        if entry is not None and entry.is_fresh(now):
            logger.debug("Using cached squad", extra={"team_id": team_id, "season_id": season_id})
            return entry.payload

        try:
            squad = await self.api_client.get_squad(team_id, season_id)
        except UPSTREAM_ERRORS as e:
            logger.warning("Squad fetch failed", extra={
                "team_id": team_id,
                "season_id": season_id,
                "error": str(e)
            })
            return entry.payload if entry is not None else None

        self.db_client.upsert_squad_cache(team_id, season_id, squad, fetched_at=now)
        return squad

    async def refresh_squads(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """
        Refetch every cached squad.

        Returns:
            One status dict per (team_id, season_id)
        """
        now = now or datetime.now(timezone.utc)
        results = []
        for key in self.db_client.get_squad_cache_keys():
            team_id, season_id = key["team_id"], key["season_id"]
            try:
                squad = await self.api_client.get_squad(team_id, season_id)
            except UPSTREAM_ERRORS as e:
                results.append({"team_id": team_id, "season_id": season_id, "status": "failed", "error": str(e)})
                continue
            self.db_client.upsert_squad_cache(team_id, season_id, squad, fetched_at=now)
            results.append({"team_id": team_id, "season_id": season_id, "status": "updated"})

        logger.info("Squads refreshed", extra={
            "squads_count": len(results),
            "failed_count": sum(1 for r in results if r["status"] == "failed")
        })
        return results
