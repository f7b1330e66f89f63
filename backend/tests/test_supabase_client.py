"""Tests for the Supabase wrapper's leaderboard batch write."""

from types import SimpleNamespace

import pytest

from database.supabase_client import SupabaseClient


class RecordingRpcClient:
    """Stands in for supabase.Client; records rpc calls."""

    def __init__(self, result=None, error=None):
        self.calls = []
        self.result = result
        self.error = error

    def rpc(self, name, params):
        self.calls.append((name, params))
        return self

    def execute(self):
        if self.error is not None:
            raise self.error
        return SimpleNamespace(data=self.result)


def _db(rpc_client):
    db = SupabaseClient.__new__(SupabaseClient)
    db.client = rpc_client
    return db


def test_upsert_leaderboards_is_one_rpc_call():
    rpc_client = RecordingRpcClient(result=3)
    league = [{"user_id": "u1", "user_name": "u1", "total_score": 5, "rank": None}]
    weekly = [{"week_start": "2024-04-07", "user_id": "u1", "user_name": "u1", "weekly_score": 5, "rank": None}]
    daily = [{"day": "2024-04-10", "user_id": "u1", "user_name": "u1", "daily_score": 5, "rank": None}]

    written = _db(rpc_client).upsert_leaderboards(league, weekly, daily)

    assert written == 3
    assert rpc_client.calls == [
        ("upsert_leaderboards", {"p_league": league, "p_weekly": weekly, "p_daily": daily})
    ]


def test_upsert_leaderboards_propagates_store_errors():
    rpc_client = RecordingRpcClient(error=RuntimeError("transaction rolled back"))

    with pytest.raises(RuntimeError):
        _db(rpc_client).upsert_leaderboards([], [], [{"day": "2024-04-10", "user_id": "u1"}])
