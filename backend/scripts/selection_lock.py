#!/usr/bin/env python3
"""
Show or change the selection lock override.

Usage:
    python3 scripts/selection_lock.py status
    python3 scripts/selection_lock.py unlock   # keep selections open past start time
    python3 scripts/selection_lock.py lock     # back to start-time locking
"""

import argparse
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
from selections.lock_gate import SelectionLockGate


def main():
    parser = argparse.ArgumentParser(description="Selection lock override")
    parser.add_argument("action", choices=["status", "lock", "unlock"])
    args = parser.parse_args()

    gate = SelectionLockGate(SupabaseClient(Config()))

    if args.action == "lock":
        override = gate.force_lock()
    elif args.action == "unlock":
        override = gate.force_unlock()
    else:
        override = gate.read_override()

    state = "ON (selections open)" if override.enabled else "OFF (start-time locking)"
    updated = override.updated_at.isoformat() if override.updated_at else "never"
    print(f"Override: {state}, last updated {updated}")


if __name__ == "__main__":
    main()
