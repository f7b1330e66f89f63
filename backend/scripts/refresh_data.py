#!/usr/bin/env python3
"""
Force a refresh of the cached fixtures and every cached squad.

Usage:
    python3 scripts/refresh_data.py
"""

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
from sportmonks_api.client import SportMonksAPIError, SportMonksClient
from utils.logger import setup_logging


async def refresh_data() -> int:
    config = Config()
    setup_logging(config)

    db_client = SupabaseClient(config)
    async with SportMonksClient(config) as api_client:
        fetcher = FixtureStatFetcher(config, api_client, db_client)

        print("🔄 Refreshing fixtures...")
        try:
            fixtures = await fetcher.refresh_fixtures()
        except SportMonksAPIError as e:
            print(f"❌ Fixture refresh failed: {e}")
            return 1
        print(f"✅ {len(fixtures)} fixtures cached\n")

        print("🔄 Refreshing squads...")
        results = await fetcher.refresh_squads()
        for result in results:
            mark = "✅" if result["status"] == "updated" else "❌"
            print(f"   {mark} team {result['team_id']} season {result['season_id']}: {result['status']}")

    failed = sum(1 for r in results if r["status"] != "updated")
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(refresh_data()))
