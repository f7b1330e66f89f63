"""
Window partitioning and per-user aggregation.

Every selection counts toward the all-time league window. It also counts
toward exactly one weekly window (Sunday 00:00 UTC to the next Sunday,
exclusive) and one daily window (UTC date), both taken from the fixture's
start time rather than when the selection was made.
"""

from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from leaderboard.models import (
    LEAGUE_WINDOW_KEY,
    FixtureStatSnapshot,
    PlayerSelection,
    WindowKind,
)

WindowId = Tuple[WindowKind, str]


def week_start(moment: datetime) -> datetime:
    """Sunday 00:00 UTC on or before ``moment``."""
    moment = moment.astimezone(timezone.utc)
    # weekday(): Monday=0 .. Sunday=6
    days_since_sunday = (moment.weekday() + 1) % 7
    sunday = moment - timedelta(days=days_since_sunday)
    return sunday.replace(hour=0, minute=0, second=0, microsecond=0)


def window_keys(starting_at: Optional[datetime]) -> Dict[WindowKind, str]:
    """
    Window memberships for a fixture start time.

    Without a start time only the league window applies.
    """
    keys = {WindowKind.LEAGUE: LEAGUE_WINDOW_KEY}
    if starting_at is not None:
        keys[WindowKind.WEEKLY] = week_start(starting_at).date().isoformat()
        keys[WindowKind.DAILY] = starting_at.astimezone(timezone.utc).date().isoformat()
    return keys


def current_window_key(kind: WindowKind, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return window_keys(now)[kind]


def resolve_start_times(
    fixture_ids: Iterable[int],
    cached_start_times: Mapping[int, datetime],
    snapshots: Mapping[int, FixtureStatSnapshot]
) -> Dict[int, datetime]:
    """
    Start time per fixture: the cached fixtures snapshot first, then the
    start time the scorecard call reported. Unknown fixtures are left out.
    """
    resolved: Dict[int, datetime] = {}
    for fixture_id in fixture_ids:
        starting_at = cached_start_times.get(fixture_id)
        if starting_at is None and fixture_id in snapshots:
            starting_at = snapshots[fixture_id].starting_at
        if starting_at is not None:
            resolved[fixture_id] = starting_at
    return resolved


def partition_selections(
    selections: Iterable[PlayerSelection],
    start_times: Mapping[int, datetime]
) -> Dict[WindowId, List[PlayerSelection]]:
    """Group selections by every window they belong to."""
    partitions: Dict[WindowId, List[PlayerSelection]] = defaultdict(list)
    for selection in selections:
        for kind, key in window_keys(start_times.get(selection.fixture_id)).items():
            partitions[(kind, key)].append(selection)
    return dict(partitions)


def aggregate_scores(
    partitions: Mapping[WindowId, List[PlayerSelection]],
    selection_scores: Mapping[Tuple[str, int], int]
) -> Dict[WindowId, Dict[str, int]]:
    """
    Sum per-user scores inside each window.

    Args:
        partitions: Output of partition_selections
        selection_scores: (user_id, fixture_id) -> points
    """
    totals: Dict[WindowId, Dict[str, int]] = {}
    for window_id, selections in partitions.items():
        user_totals: Dict[str, int] = defaultdict(int)
        for selection in selections:
            user_totals[selection.user_id] += selection_scores.get(
                (selection.user_id, selection.fixture_id), 0
            )
        totals[window_id] = dict(user_totals)
    return totals


def rank_rows(rows: List[Dict], score_column: str) -> List[Dict]:
    """
    Order rows by score (highest first, ties by user id) and attach ranks.

    Tied scores share a rank and the next rank skips ahead (1, 2, 2, 4).
    """
    ordered = sorted(rows, key=lambda r: (-(r.get(score_column) or 0), str(r.get("user_id"))))
    ranked = []
    previous_score = None
    rank = 0
    for position, row in enumerate(ordered, start=1):
        score = row.get(score_column) or 0
        if score != previous_score:
            rank = position
            previous_score = score
        ranked.append({**row, "rank": rank})
    return ranked
