import asyncio
from typing import Dict, Optional

import structlog
from fastapi import HTTPException, status

from ..database.store import SnapshotStore
from ..models.game import (
    GeoPoint, RoundAttempt, StartGameRequest, StartGameResponse,
    SubmitAnswerRequest, SubmitGuessResponse, ScoreValidationResponse
)
from .backend import TimeGuessrClient
from .scoring import distance_km, year_difference, score_attempt, format_distance, format_time
from .session import GameSession, SessionCompletedError, DEFAULT_GOOD_THRESHOLD, DEFAULT_TOTAL_ROUNDS

logger = structlog.get_logger()


class SessionNotFoundError(Exception):
    """No live or stored game with the given id."""


class DuplicateSubmissionError(Exception):
    """The event of this round was already answered."""


class WrongEventError(Exception):
    """The answer is for an event other than the current round's."""


def antipode(point: GeoPoint) -> GeoPoint:
    """The point on the opposite side of the Earth."""
    lng = point.lng + 180 if point.lng <= 0 else point.lng - 180
    return GeoPoint(lat=-point.lat, lng=lng)


class GameCoordinator:
    """
    Single owner of all live game sessions.

    Submissions to the same game are serialized, checked for duplicates,
    scored optimistically and rolled back if the backend does not confirm
    them. Every confirmed change is written to the snapshot store.
    """

    def __init__(
        self,
        client: TimeGuessrClient,
        store: SnapshotStore,
        rounds_per_game: int = DEFAULT_TOTAL_ROUNDS,
        good_threshold: int = DEFAULT_GOOD_THRESHOLD
    ):
        self.client = client
        self.store = store
        self.rounds_per_game = rounds_per_game
        self.good_threshold = good_threshold
        self._sessions: Dict[str, GameSession] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, game_session_id: str) -> asyncio.Lock:
        if game_session_id not in self._locks:
            self._locks[game_session_id] = asyncio.Lock()
        return self._locks[game_session_id]

    async def start_game(self, request: StartGameRequest) -> StartGameResponse:
        """Create the game on the backend and start tracking it locally."""
        response = await self.client.start_game(request)
        session = GameSession.start(
            response.game_session_id,
            total_rounds=response.total_questions or len(response.event_ids) or self.rounds_per_game,
            event_ids=response.event_ids,
            good_threshold=self.good_threshold
        )
        self._sessions[session.game_session_id] = session
        await self.store.save(session.to_snapshot())
        return response

    async def get_session(self, game_session_id: str) -> GameSession:
        """Live session, restored from its snapshot if necessary."""
        session = self._sessions.get(game_session_id)
        if session is not None:
            return session

        snapshot = await self.store.load(game_session_id)
        if snapshot is None:
            raise SessionNotFoundError(f"Game {game_session_id} not found")
        session = GameSession.from_snapshot(snapshot)
        # finished games are served from their snapshot and never kept live
        if not session.is_completed:
            self._sessions[game_session_id] = session
        logger.info(
            "restored game", game_session_id=game_session_id, round_number=session.current_round
        )
        return session

    def _evict(self, game_session_id: str) -> None:
        """Stop tracking a finished game; its snapshot still restores it."""
        self._sessions.pop(game_session_id, None)
        self._locks.pop(game_session_id, None)

    async def submit_answer(self, request: SubmitAnswerRequest) -> SubmitGuessResponse:
        """Score a guess locally and record it on the backend."""
        async with self._lock_for(request.game_session_id):
            session = await self.get_session(request.game_session_id)
            if session.is_completed:
                raise SessionCompletedError(f"Game {session.game_session_id} is already completed")
            if session.has_answered(request.event_id):
                raise DuplicateSubmissionError(
                    f"Event {request.event_id} was already answered in game {session.game_session_id}"
                )
            expected_event_id = session.current_event_id
            if expected_event_id is not None and request.event_id != expected_event_id:
                raise WrongEventError(
                    f"Round {session.current_round} of game {session.game_session_id} "
                    f"is about event {expected_event_id}, not {request.event_id}"
                )

            event = await self.client.get_event(request.event_id)
            if event.year is None or event.location is None:
                logger.error("event has no year or location", event_id=request.event_id)
                raise HTTPException(
                    status_code=status.HTTP_502_BAD_GATEWAY,
                    detail=f"Event {request.event_id} is missing its year or location"
                )

            # A missing location guess counts as the farthest possible one
            guessed_location = request.guessed_location or antipode(event.location)
            attempt = RoundAttempt(
                guessed_year=request.guessed_year,
                actual_year=event.year,
                guessed_location=guessed_location,
                actual_location=event.location,
                answer_time_seconds=request.answer_time or 0
            )

            round_number = session.current_round
            score = session.submit_answer(attempt, event_id=request.event_id)
            # BaseException: a cancelled request was never confirmed either
            try:
                confirmation = await self.client.submit_answer(request)
            except BaseException:
                session.rollback_last()
                raise

            await self.store.save(session.to_snapshot())
            if session.is_completed:
                self._evict(session.game_session_id)

        logger.info(
            "round scored",
            game_session_id=session.game_session_id,
            round_number=round_number,
            final_score=score.final_score,
            time_rank=score.time_rank,
            location_rank=score.location_rank
        )
        distance: Optional[float] = None
        if request.guessed_location is not None:
            distance = distance_km(request.guessed_location, event.location)
        return SubmitGuessResponse(
            question_session_id=confirmation.question_session_id,
            game_session_id=session.game_session_id,
            round_number=round_number,
            score=score,
            year_difference=year_difference(request.guessed_year, event.year),
            distance_km=distance,
            distance_text=format_distance(distance) if distance is not None else None,
            answer_time_text=format_time(attempt.answer_time_seconds),
            actual_year=event.year,
            actual_location=event.location,
            game_completed=session.is_completed
        )

    async def validate_against_backend(self, question_session_id: str) -> ScoreValidationResponse:
        """Recompute a backend-scored question and compare final scores."""
        result = await self.client.get_question_result(question_session_id)
        details = result.scoring_details
        attempt = RoundAttempt(
            guessed_year=result.guessed_year,
            actual_year=result.actual_year,
            guessed_location=result.guessed_location or antipode(result.actual_location),
            actual_location=result.actual_location,
            answer_time_seconds=max(0, result.answer_time),
            streak_count=max(0, details.streak) if details else 0
        )
        local = score_attempt(attempt)
        backend_final = details.final_score if details else None
        matches = backend_final is not None and backend_final == local.final_score
        if backend_final is not None and not matches:
            logger.warning(
                "score mismatch",
                question_session_id=question_session_id,
                local_final_score=local.final_score,
                backend_final_score=backend_final
            )
        return ScoreValidationResponse(
            question_session_id=question_session_id,
            local=local,
            backend_final_score=backend_final,
            matches=matches
        )
