"""
Pytest configuration and fixtures.

Provides in-memory stand-ins for the Supabase wrapper and the SportMonks
client so the leaderboard job, lock gate and submission path can be tested
without network or database access.
"""

from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest

from config import Config
from sportmonks_api.client import SportMonksAPIError

# Wednesday; the week containing it starts Sunday 2024-04-07
NOW = datetime(2024, 4, 10, 12, 0, tzinfo=timezone.utc)


class FakeSupabaseClient:
    """Dict-backed implementation of the SupabaseClient methods the service uses."""

    def __init__(self):
        self.fixture_cache: List[Dict[str, Any]] = []
        self.squad_cache: Dict[tuple, Dict[str, Any]] = {}
        self.selections: List[Dict[str, Any]] = []
        self.override: Optional[Dict[str, Any]] = None
        self.users: Dict[str, Dict[str, Any]] = {}
        self.leaderboards: Dict[str, Dict[tuple, Dict[str, Any]]] = defaultdict(dict)
        self.upsert_calls: List[List[str]] = []
        self.fail_upsert_tables = set()
        self.fail_override_read = False
        self.override_reads = 0

    # fixture cache
    def get_latest_fixture_cache(self):
        if not self.fixture_cache:
            return None
        return max(self.fixture_cache, key=lambda r: r["fetched_at"])

    def insert_fixture_cache(self, fixtures, fetched_at):
        row = {"fixtures": fixtures, "fetched_at": fetched_at.isoformat()}
        self.fixture_cache.append(row)
        return [row]

    # squad cache
    def get_squad_cache(self, team_id, season_id):
        return self.squad_cache.get((team_id, season_id))

    def get_squad_cache_keys(self):
        return [{"team_id": t, "season_id": s} for (t, s) in self.squad_cache]

    def upsert_squad_cache(self, team_id, season_id, squad, fetched_at):
        self.squad_cache[(team_id, season_id)] = {"squad": squad, "fetched_at": fetched_at.isoformat()}

    # selections
    def get_all_selections(self):
        return [dict(row) for row in self.selections]

    def get_selection(self, user_id, fixture_id):
        for row in self.selections:
            if row["user_id"] == user_id and row["fixture_id"] == fixture_id:
                return dict(row)
        return None

    def insert_selection(self, selection_data):
        row = {"id": len(self.selections) + 1, **selection_data}
        self.selections.append(row)
        return dict(row)

    def add_selection(self, user_id, fixture_id, team_a_ids, team_b_ids, created_at=NOW):
        return self.insert_selection({
            "user_id": user_id,
            "fixture_id": fixture_id,
            "team_a_ids": list(team_a_ids),
            "team_a_names": [f"A{pid}" for pid in team_a_ids],
            "team_b_ids": list(team_b_ids),
            "team_b_names": [f"B{pid}" for pid in team_b_ids],
            "created_at": created_at.isoformat(),
        })

    # lock override
    def get_selection_lock_override(self):
        self.override_reads += 1
        if self.fail_override_read:
            raise RuntimeError("store unavailable")
        return dict(self.override) if self.override else None

    def set_selection_lock_override(self, enabled, updated_at):
        self.override = {"id": True, "enabled": enabled, "updated_at": updated_at.isoformat()}
        return dict(self.override)

    # users
    def get_user_profiles(self, user_ids):
        return [self.users[uid] for uid in user_ids if uid in self.users]

    # leaderboards
    def upsert_leaderboards(self, league, weekly, daily):
        # All or nothing, like the database function
        batch = {
            "league_leaderboard": (league, ("user_id",)),
            "weekly_leaderboard": (weekly, ("week_start", "user_id")),
            "daily_leaderboard": (daily, ("day", "user_id")),
        }
        tables = [table for table, (rows, _) in batch.items() if rows]
        self.upsert_calls.append(tables)
        for table in tables:
            if table in self.fail_upsert_tables:
                raise RuntimeError(f"write to {table} failed")
        for table, (rows, columns) in batch.items():
            for row in rows:
                self.leaderboards[table][tuple(row[c] for c in columns)] = dict(row)
        return sum(len(rows) for rows, _ in batch.values())

    def get_leaderboard(self, table, score_column, key_column=None, key=None):
        rows = list(self.leaderboards[table].values())
        if key_column is not None:
            rows = [r for r in rows if r[key_column] == key]
        return sorted(rows, key=lambda r: (-r[score_column], r["user_id"]))


class FakeSportMonksClient:
    """Serves canned fixtures, scorecards and squads; can fail per fixture."""

    def __init__(self, fixtures=None, scorecards=None, squads=None):
        self.fixtures = fixtures or []
        self.scorecards = scorecards or {}
        self.squads = squads or {}
        self.failing_fixtures = set()
        self.fail_fixture_list = False
        self.fail_squads = False
        self.calls: List[tuple] = []

    async def get_fixtures(self, starts_between, include="localteam,visitorteam"):
        self.calls.append(("fixtures", starts_between))
        if self.fail_fixture_list:
            raise SportMonksAPIError("provider down")
        return list(self.fixtures)

    async def get_fixture(self, fixture_id, include):
        self.calls.append(("fixture", fixture_id, include))
        if fixture_id in self.failing_fixtures:
            raise SportMonksAPIError(f"fixture {fixture_id} unavailable")
        card = self.scorecards.get(fixture_id, {})
        member = "batting" if include.startswith("batting") else "bowling"
        return {"id": fixture_id, "starting_at": card.get("starting_at"), member: card.get(member, [])}

    async def get_squad(self, team_id, season_id):
        self.calls.append(("squad", team_id, season_id))
        if self.fail_squads:
            raise SportMonksAPIError("squad unavailable")
        return self.squads.get((team_id, season_id), {"data": {"id": team_id, "squad": []}})

    async def close(self):
        pass


def make_config(**overrides) -> Config:
    values = dict(
        supabase_url="http://localhost:54321",
        supabase_key="test-key",
        supabase_service_key=None,
        sportmonks_api_base_url="https://cricket.example.test/api/v2.0",
        sportmonks_api_token="test-token",
        sportmonks_league_id=None,
        min_request_interval=0.0,
        max_requests_per_minute=1000,
        max_retries=2,
        retry_backoff_base=0.0,
        max_retry_delay=0,
        fixtures_cache_ttl=360,
        squad_cache_ttl=86400,
        lock_status_cache_ttl=5,
        stats_fetch_concurrency=2,
        include_inactive_users=True,
    )
    values.update(overrides)
    return Config(**values)


def provider_fixture(fixture_id, starting_at, status="NS", live=False):
    return {
        "id": fixture_id,
        "season_id": 1484,
        "localteam_id": 2,
        "visitorteam_id": 7,
        "starting_at": starting_at,
        "status": status,
        "live": live,
        "localteam": {"id": 2, "name": "Chennai Super Kings"},
        "visitorteam": {"id": 7, "name": "Mumbai Indians"},
    }


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def fake_db():
    return FakeSupabaseClient()


@pytest.fixture
def fake_api():
    return FakeSportMonksClient()


def iso(moment: datetime) -> str:
    """Provider-style timestamp, e.g. 2024-04-10T14:00:00.000000Z."""
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
