#!/usr/bin/env python3
"""
Serve the selections, lock and leaderboard API.

Usage:
    python3 scripts/run_api.py
    API_PORT=9000 python3 scripts/run_api.py
"""
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

backend = Path(__file__).resolve().parent.parent
load_dotenv(backend / ".env")
sys.path.insert(0, str(backend / "src"))

import uvicorn

from config import Config
from utils.logger import setup_logging

if __name__ == "__main__":
    config = Config()
    setup_logging(config)
    uvicorn.run(
        "api.main:app",
        app_dir=str(backend / "src"),
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=int(os.getenv("API_PORT", "8000")),
        reload=config.environment == "development",
        log_level=config.log_level.lower(),
        log_config=None,
    )
