"""
Selection lock gate.

A fixture locks for new selections once its start time has passed. An
administrative override, stored as a single row so every service instance
sees the same value, holds selections open regardless of start time.
"""

import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from database.supabase_client import SupabaseClient
from leaderboard.models import SelectionLockOverride

logger = logging.getLogger(__name__)


class LockState(Enum):
    UNLOCKED = "unlocked"
    LOCKED = "locked"


def derived_lock_state(fixture_start: datetime, now: Optional[datetime] = None) -> LockState:
    """Lock state from the clock alone: locked from the start time onwards."""
    now = now or datetime.now(timezone.utc)
    return LockState.LOCKED if now >= fixture_start else LockState.UNLOCKED


class SelectionLockGate:
    """Reads and toggles the selection lock override."""

    def __init__(self, db_client: SupabaseClient, status_cache_ttl: float = 0.0):
        self.db_client = db_client
        self.status_cache_ttl = status_cache_ttl
        self._cached: Optional[SelectionLockOverride] = None
        self._cached_at: float = 0.0

    def read_override(self) -> SelectionLockOverride:
        """
        Read the override row from the store.

        A missing row or a failed read counts as 'not overridden' so the gate
        falls back to the start-time rule.
        """
        try:
            row = self.db_client.get_selection_lock_override()
        except Exception as e:
            logger.warning("Override read failed, treating as disabled", extra={
                "error": str(e),
                "error_type": type(e).__name__
            })
            row = None
        override = SelectionLockOverride.from_row(row)
        self._cached = override
        self._cached_at = time.monotonic()
        return override

    def is_override_enabled(self, fresh: bool = True) -> bool:
        """
        Args:
            fresh: Re-read the store. Pass False for display-only checks that
                may use a value up to ``status_cache_ttl`` seconds old.
        """
        if not fresh and self._cached is not None:
            if time.monotonic() - self._cached_at < self.status_cache_ttl:
                return self._cached.enabled
        return self.read_override().enabled

    def effective_state(
        self,
        fixture_start: datetime,
        now: Optional[datetime] = None,
        fresh: bool = True
    ) -> LockState:
        if self.is_override_enabled(fresh=fresh):
            return LockState.UNLOCKED
        return derived_lock_state(fixture_start, now)

    def _set_override(self, enabled: bool) -> SelectionLockOverride:
        updated_at = datetime.now(timezone.utc)
        row = self.db_client.set_selection_lock_override(enabled, updated_at)
        override = SelectionLockOverride.from_row(row)
        self._cached = override
        self._cached_at = time.monotonic()
        logger.info("Selection lock override updated", extra={"enabled": enabled})
        return override

    def force_unlock(self) -> SelectionLockOverride:
        """Hold selections open past fixture start times."""
        return self._set_override(True)

    def force_lock(self) -> SelectionLockOverride:
        """Drop the override; fixtures that have started read as locked again."""
        return self._set_override(False)
