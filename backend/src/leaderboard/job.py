"""
Leaderboard job - computes and stores league, weekly and daily standings.

One run: snapshot every stored selection, fetch scorecards for the fixtures
they reference, score each selection once, sum per user per window and upsert
the rows. All rows are built in memory and written in one transaction, so a
store failure leaves every leaderboard table as it was.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from config import Config
from database.supabase_client import SupabaseClient
from leaderboard.fetcher import FixtureStatFetcher
from leaderboard.models import FixtureStatSnapshot, LeaderboardRow, PlayerSelection, WindowKind
from leaderboard.windows import aggregate_scores, partition_selections, resolve_start_times
from leaderboard.writer import LeaderboardWriter
from utils.points_calculator import PointsCalculator

logger = logging.getLogger(__name__)

WINDOW_ORDER = {kind: index for index, kind in enumerate(WindowKind)}


def display_name(user_id: str, profile: Optional[Dict[str, Any]]) -> str:
    """'First Last' from the profile, else the email, else the raw user id."""
    if profile:
        first = (profile.get("first_name") or "").strip()
        last = (profile.get("last_name") or "").strip()
        if first and last:
            return f"{first} {last}"
        if profile.get("email"):
            return profile["email"]
    return user_id


@dataclass
class RunSummary:
    """What a run processed, with a per-player audit trail."""
    started_at: datetime
    fixtures_processed: int = 0
    fixtures_failed: List[int] = field(default_factory=list)
    selections_processed: int = 0
    selections_skipped: int = 0
    users_processed: int = 0
    rows_upserted: Dict[str, int] = field(default_factory=dict)
    windows: List[Dict[str, str]] = field(default_factory=list)
    debug: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)

    def to_dict(self, include_debug: bool = True) -> Dict[str, Any]:
        data = {
            "success": True,
            "started_at": self.started_at.isoformat(),
            "fixtures_processed": self.fixtures_processed,
            "fixtures_failed": self.fixtures_failed,
            "selections_processed": self.selections_processed,
            "selections_skipped": self.selections_skipped,
            "users_processed": self.users_processed,
            "rows_upserted": self.rows_upserted,
            "windows": self.windows,
        }
        if include_debug:
            data["debug"] = self.debug
        return data


class LeaderboardJob:
    """Runs the scoring aggregation and writes leaderboard rows."""

    def __init__(
        self,
        config: Config,
        fetcher: FixtureStatFetcher,
        db_client: SupabaseClient,
        writer: Optional[LeaderboardWriter] = None
    ):
        self.config = config
        self.fetcher = fetcher
        self.db_client = db_client
        self.writer = writer or LeaderboardWriter(db_client)
        self.calculator = PointsCalculator()

    def _load_selections(self, summary: RunSummary) -> Tuple[PlayerSelection, ...]:
        selections = []
        for row in self.db_client.get_all_selections():
            try:
                selections.append(PlayerSelection.from_row(row))
            except (KeyError, TypeError, ValueError) as e:
                summary.selections_skipped += 1
                logger.warning("Skipping malformed selection row", extra={
                    "selection_id": row.get("id"),
                    "error": str(e)
                })
        return tuple(selections)

    def _resolve_names(self, user_ids: List[str]) -> Dict[str, str]:
        try:
            profiles = self.db_client.get_user_profiles(user_ids)
        except Exception as e:
            logger.warning("User profile lookup failed, using raw ids", extra={
                "users": len(user_ids),
                "error": str(e)
            })
            profiles = []
        by_id = {str(p.get("id")): p for p in profiles}
        return {uid: display_name(uid, by_id.get(uid)) for uid in user_ids}

    def build_rows(
        self,
        selections: Tuple[PlayerSelection, ...],
        snapshots: Dict[int, FixtureStatSnapshot],
        cached_start_times: Dict[int, datetime],
        summary: RunSummary
    ) -> List[Tuple[WindowKind, str, List[LeaderboardRow]]]:
        """
        Score, partition and aggregate in memory.

        Returns:
            (window, key, rows) per window, league first
        """
        fixture_ids = sorted({s.fixture_id for s in selections})
        start_times = resolve_start_times(fixture_ids, cached_start_times, snapshots)

        selection_scores: Dict[Tuple[str, int], int] = {}
        debug: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        for selection in selections:
            snapshot = snapshots.get(selection.fixture_id) or FixtureStatSnapshot.empty(selection.fixture_id)
            selection_scores[(selection.user_id, selection.fixture_id)] = (
                self.calculator.selection_points(selection, snapshot)
            )
            debug[selection.user_id].extend(self.calculator.selection_breakdown(selection, snapshot))

        missing_start = [fid for fid in fixture_ids if fid not in start_times]
        if missing_start:
            logger.warning("Fixtures without a start time count for the league only", extra={
                "fixture_ids": missing_start
            })

        totals = aggregate_scores(partition_selections(selections, start_times), selection_scores)

        participants = sorted({s.user_id for s in selections})
        names = self._resolve_names(participants)

        planned = []
        for (window, key) in sorted(totals, key=lambda w: (WINDOW_ORDER[w[0]], w[1])):
            user_scores = totals[(window, key)]
            user_ids = participants if self.config.include_inactive_users else list(user_scores)
            rows = self.writer.build_rows(window, key, user_scores, user_ids, names)
            planned.append((window, key, rows))

        summary.users_processed = len(participants)
        summary.debug = dict(debug)
        return planned

    async def run(self, now: Optional[datetime] = None) -> RunSummary:
        """
        Run the aggregation once.

        Raises:
            LeaderboardWriteError: If the store rejects the batch; no table is changed
        """
        now = now or datetime.now(timezone.utc)
        summary = RunSummary(started_at=now)

        logger.info("Leaderboard run started")

        selections = self._load_selections(summary)
        summary.selections_processed = len(selections)

        fixture_ids = sorted({s.fixture_id for s in selections})
        cached_start_times = self.fetcher.get_fixture_start_times()
        snapshots = await self.fetcher.fetch_stats(fixture_ids)
        summary.fixtures_processed = len(fixture_ids)
        summary.fixtures_failed = sorted(fid for fid, snap in snapshots.items() if snap.failed)

        planned = self.build_rows(selections, snapshots, cached_start_times, summary)

        summary.rows_upserted = self.writer.write_all(planned)
        summary.windows = [{"window": window.value, "key": key} for window, key, rows in planned if rows]

        logger.info("Leaderboard run complete", extra={
            "fixtures_processed": summary.fixtures_processed,
            "fixtures_failed": len(summary.fixtures_failed),
            "selections_processed": summary.selections_processed,
            "users_processed": summary.users_processed,
            "windows_written": len(summary.windows),
            "rows_upserted": summary.rows_upserted
        })
        return summary
