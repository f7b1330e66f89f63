"""Tests for the leaderboard job end to end over the in-memory fakes."""

import asyncio
from datetime import timedelta

import pytest

from conftest import make_config, provider_fixture
from leaderboard.fetcher import FixtureStatFetcher
from leaderboard.job import LeaderboardJob, display_name
from leaderboard.models import WindowKind
from leaderboard.writer import LeaderboardWriteError

TEAM_A = (1, 2, 3, 4)
TEAM_B = (5, 6, 7, 8)


def _job(config, fake_api, fake_db):
    return LeaderboardJob(config, FixtureStatFetcher(config, fake_api, fake_db), fake_db)


def _cache_fixtures(fake_db, fixtures, fetched_at):
    fake_db.insert_fixture_cache({"data": fixtures, "starts_between": "2024-04-09,2024-04-12"}, fetched_at)


@pytest.fixture
def seeded(fake_api, fake_db, now):
    """One fixture on 2024-04-10 14:00 UTC; u1 scores 110, u2 scores 0."""
    _cache_fixtures(fake_db, [provider_fixture(100, "2024-04-10T14:00:00.000000Z")], now)
    fake_api.scorecards[100] = {
        "batting": [{"player_id": 2, "score": 55}, {"player_id": 5, "score": 12}],
        "bowling": [{"player_id": 7, "wickets": 2}],
    }
    fake_db.add_selection("u1", 100, TEAM_A, TEAM_B)
    fake_db.add_selection("u2", 100, (11, 12, 13, 14), (15, 16, 17, 18))
    fake_db.users["u1"] = {"id": "u1", "first_name": "Asha", "last_name": "Rao", "email": "asha@example.com"}
    return fake_db


def test_example_selection_feeds_league_week_and_day(config, fake_api, seeded, now):
    summary = asyncio.run(_job(config, fake_api, seeded).run(now=now))

    league = seeded.leaderboards["league_leaderboard"]
    weekly = seeded.leaderboards["weekly_leaderboard"]
    daily = seeded.leaderboards["daily_leaderboard"]

    assert league[("u1",)]["total_score"] == 110
    assert weekly[("2024-04-07", "u1")]["weekly_score"] == 110
    assert daily[("2024-04-10", "u1")]["daily_score"] == 110
    assert league[("u2",)]["total_score"] == 0
    assert league[("u1",)]["user_name"] == "Asha Rao"
    assert league[("u2",)]["user_name"] == "u2"
    assert league[("u1",)]["rank"] is None

    assert summary.fixtures_processed == 1
    assert summary.fixtures_failed == []
    assert summary.users_processed == 2
    assert summary.rows_upserted == {"league": 2, "weekly": 2, "daily": 2}


def test_summary_debug_breakdown(config, fake_api, seeded, now):
    summary = asyncio.run(_job(config, fake_api, seeded).run(now=now))

    u1 = summary.debug["u1"]
    assert len(u1) == 8
    assert {"fixture_id": 100, "player_id": 2, "runs": 55, "wickets": 0, "points": 50} in u1
    assert {"fixture_id": 100, "player_id": 7, "runs": 0, "wickets": 2, "points": 60} in u1

    payload = summary.to_dict()
    assert payload["success"] is True
    assert "debug" in payload
    assert "debug" not in summary.to_dict(include_debug=False)


def test_rerun_is_idempotent(config, fake_api, seeded, now):
    job = _job(config, fake_api, seeded)
    asyncio.run(job.run(now=now))
    first = {table: dict(rows) for table, rows in seeded.leaderboards.items()}

    asyncio.run(job.run(now=now))

    assert {table: dict(rows) for table, rows in seeded.leaderboards.items()} == first


def test_weekly_window_follows_fixture_start_not_creation_time(config, fake_api, fake_db, now):
    # Picked on Saturday 2024-04-06, fixture plays Monday 2024-04-08
    _cache_fixtures(fake_db, [provider_fixture(200, "2024-04-08T10:00:00.000000Z")], now)
    fake_api.scorecards[200] = {"batting": [{"player_id": 1, "score": 100}], "bowling": []}
    fake_db.add_selection("u1", 200, TEAM_A, TEAM_B, created_at=now - timedelta(days=4))

    asyncio.run(_job(config, fake_api, fake_db).run(now=now))

    weekly = fake_db.leaderboards["weekly_leaderboard"]
    assert weekly[("2024-04-07", "u1")]["weekly_score"] == 150
    assert ("2024-03-31", "u1") not in weekly


def test_selections_in_different_weeks_stay_apart(config, fake_api, fake_db, now):
    _cache_fixtures(fake_db, [
        provider_fixture(300, "2024-04-05T14:00:00.000000Z"),
        provider_fixture(301, "2024-04-10T14:00:00.000000Z"),
    ], now)
    fake_api.scorecards[300] = {"batting": [{"player_id": 1, "score": 50}], "bowling": []}
    fake_api.scorecards[301] = {"batting": [{"player_id": 1, "score": 100}], "bowling": []}
    fake_db.add_selection("u1", 300, TEAM_A, TEAM_B)
    fake_db.add_selection("u1", 301, TEAM_A, TEAM_B)

    asyncio.run(_job(config, fake_api, fake_db).run(now=now))

    weekly = fake_db.leaderboards["weekly_leaderboard"]
    assert weekly[("2024-03-31", "u1")]["weekly_score"] == 50
    assert weekly[("2024-04-07", "u1")]["weekly_score"] == 150
    assert fake_db.leaderboards["league_leaderboard"][("u1",)]["total_score"] == 200


def test_start_time_falls_back_to_scorecard(config, fake_api, fake_db, now):
    # Old fixture no longer in the cached window
    fake_api.scorecards[400] = {
        "starting_at": "2024-03-20T09:30:00.000000Z",
        "batting": [],
        "bowling": [{"player_id": 5, "wickets": 1}],
    }
    fake_db.add_selection("u1", 400, TEAM_A, TEAM_B)

    asyncio.run(_job(config, fake_api, fake_db).run(now=now))

    assert fake_db.leaderboards["daily_leaderboard"][("2024-03-20", "u1")]["daily_score"] == 30
    assert fake_db.leaderboards["weekly_leaderboard"][("2024-03-17", "u1")]["weekly_score"] == 30


def test_fixture_with_unknown_start_counts_for_league_only(config, fake_api, fake_db, now):
    fake_api.scorecards[500] = {"batting": [{"player_id": 1, "score": 70}], "bowling": []}
    fake_db.add_selection("u1", 500, TEAM_A, TEAM_B)

    summary = asyncio.run(_job(config, fake_api, fake_db).run(now=now))

    assert fake_db.leaderboards["league_leaderboard"][("u1",)]["total_score"] == 50
    assert fake_db.leaderboards["weekly_leaderboard"] == {}
    assert summary.windows == [{"window": "league", "key": "all-time"}]


def test_one_failed_fixture_of_three_does_not_block_the_others(config, fake_api, fake_db, now):
    _cache_fixtures(fake_db, [
        provider_fixture(fid, "2024-04-10T14:00:00.000000Z") for fid in (601, 602, 603)
    ], now)
    for fid in (601, 602, 603):
        fake_api.scorecards[fid] = {"batting": [{"player_id": 1, "score": 100}], "bowling": []}
        fake_db.add_selection(f"user{fid}", fid, TEAM_A, TEAM_B)
    fake_api.failing_fixtures.add(602)

    summary = asyncio.run(_job(config, fake_api, fake_db).run(now=now))

    league = fake_db.leaderboards["league_leaderboard"]
    assert league[("user601",)]["total_score"] == 150
    assert league[("user602",)]["total_score"] == 0
    assert league[("user603",)]["total_score"] == 150
    assert summary.fixtures_failed == [602]


def test_inactive_users_get_zero_rows_by_default(config, fake_api, fake_db, now):
    _cache_fixtures(fake_db, [
        provider_fixture(700, "2024-04-08T14:00:00.000000Z"),
        provider_fixture(701, "2024-04-09T14:00:00.000000Z"),
    ], now)
    fake_db.add_selection("u1", 700, TEAM_A, TEAM_B)
    fake_db.add_selection("u2", 701, TEAM_A, TEAM_B)

    asyncio.run(_job(config, fake_api, fake_db).run(now=now))

    daily = fake_db.leaderboards["daily_leaderboard"]
    assert daily[("2024-04-08", "u2")]["daily_score"] == 0
    assert daily[("2024-04-09", "u1")]["daily_score"] == 0


def test_inactive_users_can_be_left_out(fake_api, fake_db, now):
    config = make_config(include_inactive_users=False)
    _cache_fixtures(fake_db, [
        provider_fixture(700, "2024-04-08T14:00:00.000000Z"),
        provider_fixture(701, "2024-04-09T14:00:00.000000Z"),
    ], now)
    fake_db.add_selection("u1", 700, TEAM_A, TEAM_B)
    fake_db.add_selection("u2", 701, TEAM_A, TEAM_B)

    asyncio.run(_job(config, fake_api, fake_db).run(now=now))

    daily = fake_db.leaderboards["daily_leaderboard"]
    assert set(daily) == {("2024-04-08", "u1"), ("2024-04-09", "u2")}
    assert len(fake_db.leaderboards["league_leaderboard"]) == 2


def test_write_failure_leaves_every_table_unchanged(config, fake_api, seeded, now):
    asyncio.run(_job(config, fake_api, seeded).run(now=now))
    before = {table: dict(rows) for table, rows in seeded.leaderboards.items()}

    fake_api.scorecards[100]["batting"].append({"player_id": 1, "score": 90})
    seeded.fail_upsert_tables.add("weekly_leaderboard")

    with pytest.raises(LeaderboardWriteError) as excinfo:
        asyncio.run(_job(config, fake_api, seeded).run(now=now))

    # One batch per run; the failed one touched no table
    assert len(seeded.upsert_calls) == 2
    assert seeded.upsert_calls[1] == ["league_leaderboard", "weekly_leaderboard", "daily_leaderboard"]
    assert {table: dict(rows) for table, rows in seeded.leaderboards.items()} == before
    assert seeded.leaderboards["league_leaderboard"][("u1",)]["total_score"] == 110
    assert (WindowKind.WEEKLY, "2024-04-07") in excinfo.value.windows


def test_malformed_selection_rows_are_skipped(config, fake_api, seeded, now):
    seeded.selections.append({"id": 99, "user_id": "u3", "fixture_id": None, "team_a_ids": [], "team_b_ids": []})

    summary = asyncio.run(_job(config, fake_api, seeded).run(now=now))

    assert summary.selections_skipped == 1
    assert summary.selections_processed == 2


def test_empty_store_writes_nothing(config, fake_api, fake_db, now):
    summary = asyncio.run(_job(config, fake_api, fake_db).run(now=now))

    assert summary.fixtures_processed == 0
    assert summary.rows_upserted == {}
    assert fake_db.upsert_calls == []


def test_display_name_fallbacks():
    assert display_name("u1", {"first_name": "Asha", "last_name": "Rao"}) == "Asha Rao"
    assert display_name("u1", {"first_name": "Asha", "last_name": None, "email": "a@x.io"}) == "a@x.io"
    assert display_name("u1", None) == "u1"
