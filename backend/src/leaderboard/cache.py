"""
Cache entries and freshness policy for provider data.

A cache entry is (payload, fetched_at, ttl). How long a fixtures snapshot
stays fresh depends on the state of the matches inside it: a live innings
goes stale in minutes, a finished match not for a day.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Optional

from leaderboard.models import parse_timestamp

FINISHED_STATUSES = frozenset({"Finished", "Aban.", "Cancl.", "Postp."})
IN_PLAY_STATUSES = frozenset({
    "1st Innings", "2nd Innings", "3rd Innings", "4th Innings", "Innings Break",
})
BREAK_STATUSES = frozenset({"Tea Break", "Lunch", "Dinner"})
STUMPS_STATUSES = frozenset({"Stump Day 1", "Stump Day 2", "Stump Day 3", "Stump Day 4"})
DELAYED_STATUSES = frozenset({"Delayed", "Int."})


@dataclass
class CacheEntry:
    """A cached payload with the time it was fetched and how long it stays fresh."""
    payload: Any
    fetched_at: datetime
    ttl: timedelta

    def age(self, now: Optional[datetime] = None) -> timedelta:
        now = now or datetime.now(timezone.utc)
        return now - self.fetched_at

    def is_fresh(self, now: Optional[datetime] = None) -> bool:
        return self.age(now) < self.ttl

    @classmethod
    def from_row(
        cls,
        row: Optional[Dict[str, Any]],
        payload_key: str,
        ttl: timedelta
    ) -> Optional["CacheEntry"]:
        """Build an entry from a ``*_cache`` table row; None if absent or unparseable."""
        if not row or row.get(payload_key) is None:
            return None
        fetched_at = parse_timestamp(row.get("fetched_at"))
        if fetched_at is None:
            return None
        return cls(payload=row[payload_key], fetched_at=fetched_at, ttl=ttl)


class CachePolicy:
    """Maps a fixture's provider status to how long data about it stays fresh."""

    def __init__(
        self,
        live: timedelta = timedelta(minutes=2),
        break_: timedelta = timedelta(minutes=30),
        stumps: timedelta = timedelta(hours=5),
        starting_soon: timedelta = timedelta(minutes=15),
        upcoming: timedelta = timedelta(minutes=60),
        finished: timedelta = timedelta(hours=24),
    ):
        self.live = live
        self.break_ = break_
        self.stumps = stumps
        self.starting_soon = starting_soon
        self.upcoming = upcoming
        self.finished = finished

    def ttl_for(self, fixture: Dict[str, Any], now: Optional[datetime] = None) -> timedelta:
        """
        Freshness duration for one provider fixture dict.

        An ``NS`` (not started) fixture whose start is near, or only just
        passed, is polled as 'starting soon'; one more than an hour overdue is
        treated as finished.
        """
        now = now or datetime.now(timezone.utc)
        status = fixture.get("status")
        starting_at = parse_timestamp(fixture.get("starting_at"))
        minutes_to_start = None
        if starting_at is not None:
            minutes_to_start = (starting_at - now).total_seconds() / 60

        if status in FINISHED_STATUSES:
            return self.finished
        if status in IN_PLAY_STATUSES:
            return self.live
        if status in BREAK_STATUSES:
            return self.break_
        if status in STUMPS_STATUSES:
            return self.stumps
        if status in DELAYED_STATUSES:
            return self.starting_soon
        if status == "NS" and minutes_to_start is not None:
            if -60 < minutes_to_start <= 30:
                return self.starting_soon
            if minutes_to_start <= -60:
                return self.finished
        if fixture.get("live"):
            return self.live
        return self.upcoming

    def ttl_for_fixtures(
        self,
        fixtures: Iterable[Dict[str, Any]],
        ceiling: timedelta,
        now: Optional[datetime] = None
    ) -> timedelta:
        """The shortest freshness of any fixture in a snapshot, capped at ``ceiling``."""
        ttl = ceiling
        for fixture in fixtures:
            ttl = min(ttl, self.ttl_for(fixture, now))
        return ttl
