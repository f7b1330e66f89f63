"""
Leaderboard persistence.

Rows are overwritten on (window, user), never incremented and never deleted,
so re-running the job over the same data leaves the tables unchanged. All
windows go to the store in one transactional call: either every table is
updated or none is.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

from database.supabase_client import SupabaseClient
from leaderboard.models import LeaderboardRow, WindowKind

logger = logging.getLogger(__name__)


class LeaderboardWriteError(Exception):
    """Raised when the store rejects a leaderboard batch."""

    def __init__(self, windows: List[Tuple[WindowKind, str]], cause: Exception):
        super().__init__(f"Failed to write {len(windows)} leaderboard windows: {cause}")
        self.windows = windows


class LeaderboardWriter:
    """Builds leaderboard rows and writes them as one batch."""

    def __init__(self, db_client: SupabaseClient):
        self.db_client = db_client

    @staticmethod
    def build_rows(
        window: WindowKind,
        window_key: str,
        scores: Mapping[str, int],
        user_ids: Iterable[str],
        user_names: Mapping[str, str]
    ) -> List[LeaderboardRow]:
        """
        One row per user in ``user_ids``; users without a score get 0.
        Rank is left unset and worked out when the board is read.
        """
        return [
            LeaderboardRow(
                window=window,
                window_key=window_key,
                user_id=user_id,
                user_name=user_names.get(user_id, user_id),
                score=scores.get(user_id, 0),
            )
            for user_id in sorted(user_ids)
        ]

    def upsert_window(
        self,
        window: WindowKind,
        window_key: str,
        rows: List[LeaderboardRow]
    ) -> int:
        """
        Replace or insert the rows of one window.

        Returns:
            Number of rows written

        Raises:
            LeaderboardWriteError: If the store rejects the upsert
        """
        return self.write_all([(window, window_key, rows)]).get(window.value, 0)

    def write_all(
        self,
        planned: Sequence[Tuple[WindowKind, str, List[LeaderboardRow]]]
    ) -> Dict[str, int]:
        """
        Write every planned window in a single store call.

        Args:
            planned: (window, key, rows) per window

        Returns:
            Rows written per window kind; kinds with no rows are left out

        Raises:
            LeaderboardWriteError: If the store rejects the batch (nothing is written)
        """
        records: Dict[WindowKind, List[Dict[str, Any]]] = {kind: [] for kind in WindowKind}
        for window, _, rows in planned:
            records[window].extend(row.to_record() for row in rows)

        counts = {kind.value: len(rows) for kind, rows in records.items() if rows}
        if not counts:
            return {}

        windows = [(window, key) for window, key, rows in planned if rows]
        try:
            self.db_client.upsert_leaderboards(
                league=records[WindowKind.LEAGUE],
                weekly=records[WindowKind.WEEKLY],
                daily=records[WindowKind.DAILY],
            )
        except Exception as e:
            logger.error("Leaderboard upsert failed", extra={
                "windows": len(windows),
                "rows": counts,
                "error": str(e)
            }, exc_info=True)
            raise LeaderboardWriteError(windows, e) from e

        logger.debug("Leaderboards written", extra={
            "windows": len(windows),
            "rows": counts
        })
        return counts
