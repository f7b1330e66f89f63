"""
Points calculation utilities.

Scoring rules for a selection:
- batting: 150 points for a century (100+ runs), otherwise 50 for a
  half-century (50+ runs). Only the highest tier counts.
- bowling: 30 points per wicket, independent of runs.

A selection scores the sum over its eight players. A player with no
recorded stats in the fixture scores 0.
"""

from typing import Dict, List

from leaderboard.models import FixtureStatSnapshot, PlayerSelection


CENTURY_RUNS = 100
CENTURY_POINTS = 150
HALF_CENTURY_RUNS = 50
HALF_CENTURY_POINTS = 50
POINTS_PER_WICKET = 30


class PointsCalculator:
    """Calculates selection points from per-fixture batting and bowling totals."""

    @staticmethod
    def batting_points(runs: int) -> int:
        if runs >= CENTURY_RUNS:
            return CENTURY_POINTS
        if runs >= HALF_CENTURY_RUNS:
            return HALF_CENTURY_POINTS
        return 0

    @staticmethod
    def bowling_points(wickets: int) -> int:
        return max(wickets, 0) * POINTS_PER_WICKET

    @classmethod
    def player_points(cls, player_id: int, snapshot: FixtureStatSnapshot) -> int:
        """Batting plus bowling points for one player in one fixture."""
        runs = snapshot.runs.get(player_id, 0)
        wickets = snapshot.wickets.get(player_id, 0)
        return cls.batting_points(runs) + cls.bowling_points(wickets)

    @classmethod
    def selection_points(cls, selection: PlayerSelection, snapshot: FixtureStatSnapshot) -> int:
        """
        Total points for a selection.

        Args:
            selection: The user's picks for the fixture
            snapshot: Stats for the same fixture

        Returns:
            Sum of player points across both squads
        """
        return sum(cls.player_points(pid, snapshot) for pid in selection.player_ids)

    @classmethod
    def selection_breakdown(
        cls,
        selection: PlayerSelection,
        snapshot: FixtureStatSnapshot
    ) -> List[Dict]:
        """Per-player runs, wickets and points, for auditing a run."""
        breakdown = []
        for player_id in selection.player_ids:
            breakdown.append({
                "fixture_id": selection.fixture_id,
                "player_id": player_id,
                "runs": snapshot.runs.get(player_id, 0),
                "wickets": snapshot.wickets.get(player_id, 0),
                "points": cls.player_points(player_id, snapshot),
            })
        return breakdown
