"""
Supabase client for database operations.

Every table the service touches is reached through a named method here so
column selection and conflict targets live in one place.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from supabase import create_client, Client

from config import Config

logger = logging.getLogger(__name__)

# PostgREST caps a single response at 1000 rows by default
PAGE_SIZE = 1000

SELECTION_COLUMNS = (
    "id, user_id, fixture_id, team_a_ids, team_a_names, "
    "team_b_ids, team_b_names, created_at"
)


class SupabaseClient:
    """Client for interacting with Supabase database."""

    def __init__(self, config: Config):
        self.config = config
        self.client: Optional[Client] = None
        self._initialize_client()

    def _initialize_client(self):
        """Initialize Supabase client."""
        key = self.config.supabase_service_key or self.config.supabase_key
        if not self.config.supabase_url or not key:
            raise ValueError("Supabase URL and key are required")

        # Service role key bypasses RLS so the job can write every leaderboard table
        self.client = create_client(self.config.supabase_url, key)

        logger.info("Initialized Supabase client", extra={
            "url": self.config.supabase_url,
            "using_service_key": bool(self.config.supabase_service_key)
        })

    def _select_all(self, table: str, columns: str) -> List[Dict[str, Any]]:
        """Read every row of a table, paging past the PostgREST row cap."""
        rows: List[Dict[str, Any]] = []
        start = 0
        while True:
            result = self.client.table(table).select(columns).order("id").range(
                start, start + PAGE_SIZE - 1
            ).execute()
            page = result.data or []
            rows.extend(page)
            if len(page) < PAGE_SIZE:
                return rows
            start += PAGE_SIZE

    # Fixture cache

    def get_latest_fixture_cache(self) -> Optional[Dict[str, Any]]:
        """
        Get the most recently fetched fixtures snapshot.

        Returns:
            Row dict with ``fixtures`` and ``fetched_at``, or None
        """
        result = self.client.table("fixture_cache").select(
            "fixtures, fetched_at"
        ).order("fetched_at", desc=True).limit(1).execute()
        rows = result.data or []
        return rows[0] if rows else None

    def insert_fixture_cache(self, fixtures: Dict[str, Any], fetched_at: datetime):
        """
        Store a fresh fixtures snapshot. Older rows are left in place; readers
        always take the newest by ``fetched_at``.
        """
        result = self.client.table("fixture_cache").insert({
            "fixtures": fixtures,
            "fetched_at": fetched_at.isoformat(),
        }).execute()
        return result.data

    # Squad cache

    def get_squad_cache(self, team_id: int, season_id: int) -> Optional[Dict[str, Any]]:
        """Get the cached squad for a team/season, or None."""
        result = self.client.table("squad_cache").select(
            "squad, fetched_at"
        ).eq("team_id", team_id).eq("season_id", season_id).maybe_single().execute()
        return result.data if result is not None else None

    def get_squad_cache_keys(self) -> List[Dict[str, Any]]:
        """List every cached (team_id, season_id) pair."""
        result = self.client.table("squad_cache").select("team_id, season_id").execute()
        return result.data or []

    def upsert_squad_cache(
        self,
        team_id: int,
        season_id: int,
        squad: Dict[str, Any],
        fetched_at: datetime
    ):
        """Upsert a squad snapshot keyed by (team_id, season_id)."""
        result = self.client.table("squad_cache").upsert(
            {
                "team_id": team_id,
                "season_id": season_id,
                "squad": squad,
                "fetched_at": fetched_at.isoformat(),
            },
            on_conflict="team_id,season_id"
        ).execute()
        return result.data

    # Player selections

    def get_all_selections(self) -> List[Dict[str, Any]]:
        """Read every stored player selection."""
        return self._select_all("player_selections", SELECTION_COLUMNS)

    def get_selection(self, user_id: str, fixture_id: int) -> Optional[Dict[str, Any]]:
        """
        Get a user's selection for one fixture.

        Returns:
            Selection row, or None when the user has not picked yet
        """
        result = self.client.table("player_selections").select(
            SELECTION_COLUMNS
        ).eq("user_id", user_id).eq("fixture_id", fixture_id).limit(1).execute()
        rows = result.data or []
        return rows[0] if rows else None

    def insert_selection(self, selection_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert a new selection. Selections are write-once: there is no upsert.

        Returns:
            The stored row
        """
        result = self.client.table("player_selections").insert(selection_data).execute()
        rows = result.data or []
        return rows[0] if rows else selection_data

    # Selection lock override (singleton row, id = true)

    def get_selection_lock_override(self) -> Optional[Dict[str, Any]]:
        """Read the singleton override row, or None if it has never been written."""
        result = self.client.table("selection_lock_override").select(
            "enabled, updated_at"
        ).eq("id", True).maybe_single().execute()
        return result.data if result is not None else None

    def set_selection_lock_override(self, enabled: bool, updated_at: datetime) -> Dict[str, Any]:
        """Write the singleton override row."""
        row = {"id": True, "enabled": enabled, "updated_at": updated_at.isoformat()}
        result = self.client.table("selection_lock_override").upsert(
            row,
            on_conflict="id"
        ).execute()
        rows = result.data or []
        return rows[0] if rows else row

    # Users

    def get_user_profiles(self, user_ids: List[str]) -> List[Dict[str, Any]]:
        """
        Get profile rows (id, first_name, last_name, email) for a set of users.
        """
        if not user_ids:
            return []
        profiles: List[Dict[str, Any]] = []
        for start in range(0, len(user_ids), PAGE_SIZE):
            chunk = user_ids[start:start + PAGE_SIZE]
            result = self.client.table("users").select(
                "id, first_name, last_name, email"
            ).in_("id", chunk).execute()
            profiles.extend(result.data or [])
        return profiles

    # Leaderboards

    def upsert_leaderboards(
        self,
        league: List[Dict[str, Any]],
        weekly: List[Dict[str, Any]],
        daily: List[Dict[str, Any]]
    ) -> int:
        """
        Upsert every leaderboard table in one transaction.

        Runs the ``upsert_leaderboards`` database function
        (migrations/001_upsert_leaderboards.sql): rows overwrite on each
        table's unique key, and a failure leaves all three tables untouched.

        Returns:
            Rows written, as reported by the function
        """
        result = self.client.rpc("upsert_leaderboards", {
            "p_league": league,
            "p_weekly": weekly,
            "p_daily": daily,
        }).execute()
        return result.data or 0

    def get_leaderboard(
        self,
        table: str,
        score_column: str,
        key_column: Optional[str] = None,
        key: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        Get leaderboard rows for one window, highest score first.

        Args:
            table: Leaderboard table
            score_column: Column to order by
            key_column: Window key column (None for the league table)
            key: Window key value
        """
        query = self.client.table(table).select("*")
        if key_column is not None:
            query = query.eq(key_column, key)
        result = query.order(score_column, desc=True).order("user_id").execute()
        return result.data or []
