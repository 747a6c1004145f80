from typing import Dict, Optional
from unittest.mock import AsyncMock

import pytest

from timeguessr.models.game import (
    EventDetail, GeoPoint, RoundAttempt, StartGameResponse, SubmitAnswerResponse
)
from timeguessr.services.backend import TimeGuessrClient
from timeguessr.services.coordinator import GameCoordinator
from timeguessr.services.session import GameSessionSnapshot

CALGARY = GeoPoint(lat=51.05, lng=-114.07)
NEAR_CALGARY = GeoPoint(lat=51.06, lng=-114.08)
NULL_ISLAND = GeoPoint(lat=0.0, lng=0.0)


class InMemorySnapshotStore:
    """Snapshot store double keeping serialized snapshots in a dict."""

    def __init__(self):
        self.saved: Dict[str, str] = {}

    async def save(self, snapshot: GameSessionSnapshot) -> None:
        self.saved[snapshot.game_session_id] = snapshot.model_dump_json()

    async def load(self, game_session_id: str) -> Optional[GameSessionSnapshot]:
        payload = self.saved.get(game_session_id)
        if payload is None:
            return None
        return GameSessionSnapshot.model_validate_json(payload)

    async def delete(self, game_session_id: str) -> bool:
        return self.saved.pop(game_session_id, None) is not None


def make_attempt(
    year_off: int = 0,
    guessed_location: GeoPoint = CALGARY,
    actual_location: GeoPoint = CALGARY,
    answer_time: int = 120,
    streak: int = 0
) -> RoundAttempt:
    return RoundAttempt(
        guessed_year=1990 + year_off,
        actual_year=1990,
        guessed_location=guessed_location,
        actual_location=actual_location,
        answer_time_seconds=answer_time,
        streak_count=streak
    )


@pytest.fixture
def perfect_attempt():
    """Exact year and place, no speed bonus: scores 1500 plus streak bonus."""
    return make_attempt()


@pytest.fixture
def poor_attempt():
    """Fifty years and thousands of km off: only the streak bonus can score."""
    return make_attempt(year_off=50, guessed_location=NULL_ISLAND)


@pytest.fixture
def store():
    return InMemorySnapshotStore()


@pytest.fixture
def backend_client():
    client = AsyncMock(spec=TimeGuessrClient)
    client.start_game.return_value = StartGameResponse(
        game_session_id="game-1",
        event_ids=["e1", "e2", "e3"],
        total_questions=3
    )
    client.get_event.side_effect = lambda event_id: EventDetail(
        id=event_id, year=1990, latitude=CALGARY.lat, longitude=CALGARY.lng
    )
    counter = {"n": 0}

    async def submit(request):
        counter["n"] += 1
        return SubmitAnswerResponse(
            question_session_id=f"q{counter['n']}",
            game_session_id=request.game_session_id,
            status="submitted"
        )

    client.submit_answer.side_effect = submit
    return client


@pytest.fixture
def coordinator(backend_client, store):
    return GameCoordinator(backend_client, store, rounds_per_game=5, good_threshold=700)
