from enum import Enum
from typing import List, Optional, Sequence

import structlog
from pydantic import BaseModel, Field

from ..models.game import RoundAttempt, ScoreBreakdown
from .scoring import score_attempt

logger = structlog.get_logger()

DEFAULT_TOTAL_ROUNDS = 5
DEFAULT_GOOD_THRESHOLD = 700


class SessionState(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class SessionCompletedError(Exception):
    """Raised when an answer is submitted to a finished game."""


class GameSessionSnapshot(BaseModel):
    """Serializable state of a game session."""
    game_session_id: str
    total_rounds: int = Field(ge=1)
    current_round: int = Field(ge=1)
    state: SessionState
    streak_count: int = 0
    good_threshold: int = DEFAULT_GOOD_THRESHOLD
    scores: List[ScoreBreakdown] = []
    round_streaks: List[int] = []
    event_ids: List[str] = []
    answered_event_ids: List[Optional[str]] = []


class GameSession:
    """
    Round state machine of a single game.

    The only mutation is submit_answer(), which appends one score per round.
    Scores are never modified once appended; rollback_last() exists solely
    for undoing an optimistic append the backend never confirmed.
    """

    def __init__(
        self,
        game_session_id: str,
        total_rounds: int = DEFAULT_TOTAL_ROUNDS,
        event_ids: Sequence[str] = (),
        good_threshold: int = DEFAULT_GOOD_THRESHOLD
    ):
        if total_rounds < 1:
            raise ValueError("total_rounds must be at least 1")
        self.game_session_id = game_session_id
        self.total_rounds = total_rounds
        self.event_ids = list(event_ids)
        self.good_threshold = good_threshold
        self.current_round = 1
        self.state = SessionState.IN_PROGRESS
        self.streak_count = 0
        self._scores: List[ScoreBreakdown] = []
        # streak each round was scored with, needed to undo a round
        self._round_streaks: List[int] = []
        self._answered_event_ids: List[Optional[str]] = []

    @classmethod
    def start(
        cls,
        game_session_id: str,
        total_rounds: int = DEFAULT_TOTAL_ROUNDS,
        event_ids: Sequence[str] = (),
        good_threshold: int = DEFAULT_GOOD_THRESHOLD
    ) -> "GameSession":
        logger.info("starting game", game_session_id=game_session_id, total_rounds=total_rounds)
        return cls(game_session_id, total_rounds, event_ids, good_threshold)

    @property
    def scores(self) -> tuple:
        return tuple(self._scores)

    @property
    def is_completed(self) -> bool:
        return self.state == SessionState.COMPLETED

    @property
    def total_score(self) -> int:
        return sum(s.final_score for s in self._scores)

    @property
    def average_score(self) -> float:
        return self.total_score / self.total_rounds

    @property
    def current_event_id(self) -> Optional[str]:
        """Event the current round is about, when the backend listed them."""
        if self.is_completed or self.current_round > len(self.event_ids):
            return None
        return self.event_ids[self.current_round - 1]

    def has_answered(self, event_id: str) -> bool:
        return event_id in self._answered_event_ids

    def is_good_round(self, score: ScoreBreakdown) -> bool:
        """A round keeps the streak alive when its accuracy score is high enough."""
        return score.base_score >= self.good_threshold

    def submit_answer(self, attempt: RoundAttempt, event_id: Optional[str] = None) -> ScoreBreakdown:
        """
        Score the current round and advance the game.

        The attempt is scored with the session's own streak, whatever
        streak_count the attempt carries.
        """
        if self.is_completed:
            raise SessionCompletedError(f"Game {self.game_session_id} is already completed")

        attempt = attempt.model_copy(update={"streak_count": self.streak_count})
        score = score_attempt(attempt)

        self._scores.append(score)
        self._round_streaks.append(self.streak_count)
        self._answered_event_ids.append(event_id)

        if self.is_good_round(score):
            self.streak_count += 1
        else:
            self.streak_count = 0

        if self.current_round >= self.total_rounds:
            self.state = SessionState.COMPLETED
            logger.info(
                "game completed", game_session_id=self.game_session_id, total_score=self.total_score
            )
        else:
            self.current_round += 1

        return score

    def rollback_last(self) -> ScoreBreakdown:
        """Undo the most recent submit_answer()."""
        if not self._scores:
            raise ValueError("No round to roll back")
        score = self._scores.pop()
        self.streak_count = self._round_streaks.pop()
        self._answered_event_ids.pop()
        if self.is_completed:
            self.state = SessionState.IN_PROGRESS
        else:
            self.current_round -= 1
        logger.warning(
            "rolled back round", game_session_id=self.game_session_id, round_number=self.current_round
        )
        return score

    def to_snapshot(self) -> GameSessionSnapshot:
        return GameSessionSnapshot(
            game_session_id=self.game_session_id,
            total_rounds=self.total_rounds,
            current_round=self.current_round,
            state=self.state,
            streak_count=self.streak_count,
            good_threshold=self.good_threshold,
            scores=list(self._scores),
            round_streaks=list(self._round_streaks),
            event_ids=list(self.event_ids),
            answered_event_ids=list(self._answered_event_ids)
        )

    @classmethod
    def from_snapshot(cls, snapshot: GameSessionSnapshot) -> "GameSession":
        session = cls(
            snapshot.game_session_id,
            snapshot.total_rounds,
            snapshot.event_ids,
            snapshot.good_threshold
        )
        session.current_round = snapshot.current_round
        session.state = snapshot.state
        session.streak_count = snapshot.streak_count
        session._scores = list(snapshot.scores)
        session._round_streaks = list(snapshot.round_streaks)
        session._answered_event_ids = list(snapshot.answered_event_ids)
        return session
