#!/usr/bin/env python3
"""
Cricket Fantasy Leaderboard Service - Main Entry Point

Runs the leaderboard aggregation once, or every LEADERBOARD_INTERVAL seconds
until stopped, writing league, weekly and daily standings to Supabase.
"""

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

# Load .env from backend directory before Config() is used
from dotenv import load_dotenv
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from config import Config
from database.supabase_client import SupabaseClient
from leaderboard.fetcher import FixtureStatFetcher
from leaderboard.job import LeaderboardJob
from sportmonks_api.client import SportMonksClient
from utils.logger import setup_logging

logger = logging.getLogger(__name__)


class LeaderboardService:
    """Main service class for leaderboard computation."""

    def __init__(self, config: Config, job: Optional[LeaderboardJob] = None):
        self.config = config
        self.api_client = None
        self.job = job
        self.running = False
        self.runs_failed = 0
        self._stop = asyncio.Event()

    def _initialize(self):
        if self.job is not None:
            return
        db_client = SupabaseClient(self.config)
        self.api_client = SportMonksClient(self.config)
        fetcher = FixtureStatFetcher(self.config, self.api_client, db_client)
        self.job = LeaderboardJob(self.config, fetcher, db_client)

    async def start(self):
        """Start the service."""
        logger.info("Starting Leaderboard Service", extra={
            "version": "1.0.0",
            "environment": self.config.environment,
            "interval": self.config.leaderboard_interval
        })

        try:
            self._initialize()

            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, self._handle_shutdown, sig)

            self.running = True
            while self.running:
                if self.config.leaderboard_interval <= 0:
                    await self.job.run()
                    break
                try:
                    await self.job.run()
                except Exception as e:
                    # Next cycle rewrites every window
                    self.runs_failed += 1
                    logger.error("Leaderboard run failed", extra={
                        "error": str(e),
                        "error_type": type(e).__name__,
                        "runs_failed": self.runs_failed
                    }, exc_info=True)
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self.config.leaderboard_interval)
                except asyncio.TimeoutError:
                    pass

        except Exception as e:
            logger.error("Fatal error in leaderboard service", extra={
                "error": str(e),
                "error_type": type(e).__name__
            }, exc_info=True)
            raise
        finally:
            if self.api_client:
                await self.api_client.close()

    def _handle_shutdown(self, signum):
        """Handle shutdown signals gracefully."""
        logger.info("Received shutdown signal", extra={"signal": signum})
        self.running = False
        self._stop.set()


async def main():
    """Main entry point."""
    config = Config()
    setup_logging(config)

    service = LeaderboardService(config)
    try:
        await service.start()
    except KeyboardInterrupt:
        logger.info("Service interrupted by user")
    except Exception as e:
        logger.error("Service crashed", extra={"error": str(e)}, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
