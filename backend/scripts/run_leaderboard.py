#!/usr/bin/env python3
"""
Run the leaderboard aggregation once and print what it did.

Usage:
    python3 scripts/run_leaderboard.py           # summary only
    python3 scripts/run_leaderboard.py --debug   # plus per-player runs/wickets/points
"""

import argparse
import asyncio
import sys
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv(Path(__file__).parent.parent / ".env")

# Add src directory to path
backend_dir = Path(__file__).parent.parent
src_dir = backend_dir / "src"
sys.path.insert(0, str(src_dir))

from config import Config
from database.supabase_client import SupabaseClient
from leaderboard.fetcher import FixtureStatFetcher
from leaderboard.job import LeaderboardJob
from leaderboard.writer import LeaderboardWriteError
from sportmonks_api.client import SportMonksClient
from utils.logger import setup_logging


async def run_leaderboard(debug: bool = False) -> int:
    config = Config()
    setup_logging(config)

    db_client = SupabaseClient(config)
    async with SportMonksClient(config) as api_client:
        fetcher = FixtureStatFetcher(config, api_client, db_client)
        job = LeaderboardJob(config, fetcher, db_client)

        print("🔄 Running leaderboard aggregation...\n")
        try:
            summary = await job.run()
        except LeaderboardWriteError as e:
            print(f"\n❌ Leaderboard write failed: {e}")
            return 1

    print(f"{'='*70}")
    print(f"Fixtures processed:   {summary.fixtures_processed}")
    print(f"Fixtures failed:      {len(summary.fixtures_failed)} {summary.fixtures_failed or ''}")
    print(f"Selections processed: {summary.selections_processed}")
    print(f"Users processed:      {summary.users_processed}")
    for window, count in summary.rows_upserted.items():
        print(f"Rows upserted ({window}): {count}")
    print(f"{'='*70}")

    if debug:
        for user_id, entries in summary.debug.items():
            print(f"\n👤 {user_id}")
            for entry in entries:
                print(
                    f"   fixture {entry['fixture_id']:>8}  player {entry['player_id']:>8}  "
                    f"runs {entry['runs']:>4}  wkts {entry['wickets']:>2}  pts {entry['points']:>4}"
                )

    print("\n✅ Leaderboards updated")
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the leaderboard aggregation once")
    parser.add_argument("--debug", action="store_true", help="Print the per-player breakdown")
    args = parser.parse_args()
    sys.exit(asyncio.run(run_leaderboard(debug=args.debug)))
