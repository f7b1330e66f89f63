"""
Data types shared by the leaderboard job and the selection boundary.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a provider or database timestamp into an aware UTC datetime.

    Accepts datetimes, ISO strings (with ``Z`` or an offset) and None.
    Naive values are taken to be UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class WindowKind(Enum):
    """Leaderboard aggregation scopes and the table each one is stored in."""
    LEAGUE = "league"
    WEEKLY = "weekly"
    DAILY = "daily"

    @property
    def table(self) -> str:
        return f"{self.value}_leaderboard"

    @property
    def key_column(self) -> Optional[str]:
        """Window column in the table; the league table has one row per user."""
        return {
            WindowKind.LEAGUE: None,
            WindowKind.WEEKLY: "week_start",
            WindowKind.DAILY: "day",
        }[self]

    @property
    def score_column(self) -> str:
        return {
            WindowKind.LEAGUE: "total_score",
            WindowKind.WEEKLY: "weekly_score",
            WindowKind.DAILY: "daily_score",
        }[self]


LEAGUE_WINDOW_KEY = "all-time"


@dataclass(frozen=True)
class Fixture:
    """A scheduled match as reported by the provider."""
    fixture_id: int
    starting_at: Optional[datetime]
    localteam_id: Optional[int] = None
    visitorteam_id: Optional[int] = None
    season_id: Optional[int] = None
    status: Optional[str] = None
    live: bool = False
    localteam_name: Optional[str] = None
    visitorteam_name: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Fixture":
        localteam = data.get("localteam") or {}
        visitorteam = data.get("visitorteam") or {}
        return cls(
            fixture_id=int(data["id"]),
            starting_at=parse_timestamp(data.get("starting_at")),
            localteam_id=data.get("localteam_id"),
            visitorteam_id=data.get("visitorteam_id"),
            season_id=data.get("season_id"),
            status=data.get("status"),
            live=bool(data.get("live")),
            localteam_name=localteam.get("name"),
            visitorteam_name=visitorteam.get("name"),
        )


@dataclass(frozen=True)
class PlayerSelection:
    """A user's write-once pick of four players per side for one fixture."""
    user_id: str
    fixture_id: int
    team_a_ids: Tuple[int, ...]
    team_b_ids: Tuple[int, ...]
    team_a_names: Tuple[str, ...] = ()
    team_b_names: Tuple[str, ...] = ()
    created_at: Optional[datetime] = None

    @property
    def player_ids(self) -> Tuple[int, ...]:
        return self.team_a_ids + self.team_b_ids

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "PlayerSelection":
        return cls(
            user_id=str(row["user_id"]),
            fixture_id=int(row["fixture_id"]),
            team_a_ids=tuple(int(pid) for pid in (row.get("team_a_ids") or [])),
            team_b_ids=tuple(int(pid) for pid in (row.get("team_b_ids") or [])),
            team_a_names=tuple(row.get("team_a_names") or ()),
            team_b_names=tuple(row.get("team_b_names") or ()),
            created_at=parse_timestamp(row.get("created_at")),
        )


@dataclass
class FixtureStatSnapshot:
    """Per-fixture runs and wickets by player id, rebuilt on every run."""
    fixture_id: int
    runs: Dict[int, int] = field(default_factory=dict)
    wickets: Dict[int, int] = field(default_factory=dict)
    starting_at: Optional[datetime] = None
    failed: bool = False

    @classmethod
    def empty(cls, fixture_id: int, failed: bool = True) -> "FixtureStatSnapshot":
        return cls(fixture_id=fixture_id, failed=failed)


@dataclass
class LeaderboardRow:
    """One user's aggregate score inside one window."""
    window: WindowKind
    window_key: str
    user_id: str
    user_name: str
    score: int
    rank: Optional[int] = None

    def to_record(self) -> Dict[str, Any]:
        record = {
            "user_id": self.user_id,
            "user_name": self.user_name,
            self.window.score_column: self.score,
            "rank": self.rank,
        }
        if self.window.key_column is not None:
            record[self.window.key_column] = self.window_key
        return record


@dataclass(frozen=True)
class SelectionLockOverride:
    """Global 'selections open regardless of start time' flag."""
    enabled: bool
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Optional[Dict[str, Any]]) -> "SelectionLockOverride":
        if not row:
            return cls(enabled=False)
        return cls(
            enabled=bool(row.get("enabled")),
            updated_at=parse_timestamp(row.get("updated_at")),
        )
