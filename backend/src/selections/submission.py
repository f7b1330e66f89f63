"""
Selection submission - the persistence gate for player picks.

A selection is accepted only when it names exactly four distinct players per
side, the user has not already picked for the fixture, and the fixture is
open (before its start time, or the override is on). The first accepted
submission is final.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from postgrest.exceptions import APIError

from database.supabase_client import SupabaseClient
from leaderboard.fetcher import FixtureStatFetcher
from leaderboard.models import parse_timestamp
from selections.lock_gate import LockState, SelectionLockGate
from sportmonks_api.client import SportMonksAPIError

logger = logging.getLogger(__name__)

PLAYERS_PER_SIDE = 4
UNIQUE_VIOLATION = "23505"


class SelectionError(Exception):
    """Base class for rejected submissions; ``message`` is shown to the user."""
    message = "Selection rejected"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.message
        super().__init__(self.message)


class InvalidSelectionError(SelectionError):
    message = "Missing or invalid parameters"


class SelectionLockedError(SelectionError):
    message = "Match has already started. Selections are closed."


class DuplicateSelectionError(SelectionError):
    message = "Selection already submitted. Selections cannot be changed."


class FixtureUnavailableError(SelectionError):
    message = "Fixture start time could not be verified. Please try again."


@dataclass(frozen=True)
class SelectionRequest:
    """A validated submission payload."""
    user_id: str
    fixture_id: int
    team_a_ids: List[int]
    team_b_ids: List[int]
    team_a_names: List[str]
    team_b_names: List[str]
    fixture_starting_at: Optional[datetime] = None


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _validate_side(label: str, ids: Any, names: Any) -> None:
    if not isinstance(ids, list) or len(ids) != PLAYERS_PER_SIDE:
        raise InvalidSelectionError(f"{label} must contain exactly {PLAYERS_PER_SIDE} players")
    if not all(_is_int(pid) for pid in ids):
        raise InvalidSelectionError(f"{label} player ids must be integers")
    if len(set(ids)) != PLAYERS_PER_SIDE:
        raise InvalidSelectionError(f"{label} players must be distinct")
    if names is not None:
        if (not isinstance(names, list) or len(names) != PLAYERS_PER_SIDE
                or not all(isinstance(n, str) for n in names)):
            raise InvalidSelectionError(f"{label} names must list {PLAYERS_PER_SIDE} player names")


def validate_payload(payload: Dict[str, Any]) -> SelectionRequest:
    """
    Check a raw submission payload.

    Raises:
        InvalidSelectionError: With a message naming the first problem found
    """
    if not isinstance(payload, dict):
        raise InvalidSelectionError()

    user_id = payload.get("user_id")
    fixture_id = payload.get("fixture_id")
    if not isinstance(user_id, str) or not user_id.strip() or not _is_int(fixture_id):
        raise InvalidSelectionError()

    _validate_side("Team A", payload.get("team_a_ids"), payload.get("team_a_names"))
    _validate_side("Team B", payload.get("team_b_ids"), payload.get("team_b_names"))

    try:
        starting_at = parse_timestamp(payload.get("fixture_starting_at"))
    except (TypeError, ValueError):
        raise InvalidSelectionError("fixture_starting_at is not a valid timestamp")

    return SelectionRequest(
        user_id=user_id,
        fixture_id=fixture_id,
        team_a_ids=list(payload["team_a_ids"]),
        team_b_ids=list(payload["team_b_ids"]),
        team_a_names=list(payload.get("team_a_names") or []),
        team_b_names=list(payload.get("team_b_names") or []),
        fixture_starting_at=starting_at,
    )


class SelectionService:
    """Accepts and reads player selections."""

    def __init__(
        self,
        db_client: SupabaseClient,
        lock_gate: SelectionLockGate,
        fetcher: FixtureStatFetcher
    ):
        self.db_client = db_client
        self.lock_gate = lock_gate
        self.fetcher = fetcher

    async def resolve_fixture_start(self, request: SelectionRequest) -> datetime:
        """
        Start time from the cached fixtures snapshot, else from the provider.

        The client's ``fixture_starting_at`` never decides the lock; it is
        only compared against the authoritative time and logged on mismatch.

        Raises:
            FixtureUnavailableError: The start time cannot be verified
        """
        try:
            starting_at = await self.fetcher.get_fixture_start(request.fixture_id)
        except SportMonksAPIError as e:
            logger.warning("Fixture start lookup failed", extra={
                "fixture_id": request.fixture_id,
                "error": str(e)
            })
            raise FixtureUnavailableError() from e
        if starting_at is None:
            raise FixtureUnavailableError()

        if request.fixture_starting_at is not None and request.fixture_starting_at != starting_at:
            logger.info("Client fixture start differs from provider", extra={
                "fixture_id": request.fixture_id,
                "client_starting_at": request.fixture_starting_at.isoformat(),
                "starting_at": starting_at.isoformat()
            })
        return starting_at

    def get_selection(self, user_id: str, fixture_id: int) -> Optional[Dict[str, Any]]:
        return self.db_client.get_selection(user_id, fixture_id)

    async def submit(self, payload: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Validate and store a selection.

        Returns:
            The stored selection row

        Raises:
            InvalidSelectionError: Malformed payload or wrong squad size
            DuplicateSelectionError: The user already picked for this fixture
            SelectionLockedError: The fixture has started and no override is on
            FixtureUnavailableError: The start time could not be verified
        """
        request = validate_payload(payload)
        fixture_start = await self.resolve_fixture_start(request)

        if self.db_client.get_selection(request.user_id, request.fixture_id):
            raise DuplicateSelectionError()

        # Re-read the override right before committing; never trust a cached copy here
        now = now or datetime.now(timezone.utc)
        if self.lock_gate.effective_state(fixture_start, now, fresh=True) is LockState.LOCKED:
            logger.info("Selection rejected, fixture locked", extra={
                "user_id": request.user_id,
                "fixture_id": request.fixture_id
            })
            raise SelectionLockedError()

        try:
            stored = self.db_client.insert_selection({
                "user_id": request.user_id,
                "fixture_id": request.fixture_id,
                "team_a_ids": request.team_a_ids,
                "team_a_names": request.team_a_names,
                "team_b_ids": request.team_b_ids,
                "team_b_names": request.team_b_names,
                "created_at": now.isoformat(),
            })
        except APIError as e:
            # A concurrent submission won the race for the (user_id, fixture_id) unique key
            if getattr(e, "code", None) == UNIQUE_VIOLATION:
                raise DuplicateSelectionError() from e
            raise

        logger.info("Selection stored", extra={
            "user_id": request.user_id,
            "fixture_id": request.fixture_id
        })
        return stored

