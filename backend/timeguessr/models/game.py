from enum import Enum
from pydantic import BaseModel, Field, model_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List, Literal, Tuple
from datetime import datetime


class GeoPoint(BaseModel):
    """Latitude/longitude pair in degrees."""
    lat: float
    lng: float

    class Config:
        frozen = True


class BoundedGeoPoint(GeoPoint):
    """GeoPoint with coordinate ranges checked, used for player input."""
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class Rank(str, Enum):
    """Qualitative accuracy label, best first."""
    PERFECT = "Perfect"
    EXCELLENT = "Excellent"
    VERY_GOOD = "Very Good"
    GOOD = "Good"
    AVERAGE = "Average"
    POOR = "Poor"
    VERY_POOR = "Very Poor"


class RoundAttempt(BaseModel):
    """A single submitted guess, ready to be scored."""
    guessed_year: int
    actual_year: int
    guessed_location: GeoPoint
    actual_location: GeoPoint
    answer_time_seconds: int = Field(default=0, ge=0)
    streak_count: int = Field(default=0, ge=0)

    class Config:
        frozen = True


class ScorePreviewRequest(RoundAttempt):
    """A RoundAttempt sent over HTTP, with both locations range-checked."""
    guessed_location: BoundedGeoPoint
    actual_location: BoundedGeoPoint


class BonusBreakdown(BaseModel):
    """Sub-bonuses of a round and the achievements they unlock."""
    speed_bonus: int
    perfect_bonus: int
    streak_bonus: int
    achievements: Tuple[str, ...] = ()

    class Config:
        frozen = True

    @property
    def total(self) -> int:
        return self.speed_bonus + self.perfect_bonus + self.streak_bonus


class ScoreBreakdown(BaseModel):
    """Fully decomposed score of one round."""
    time_score: int
    location_score: int
    bonus_score: int
    speed_bonus: int = 0
    perfect_bonus: int = 0
    streak_bonus: int = 0
    final_score: int
    time_rank: Rank
    location_rank: Rank
    achievements: Tuple[str, ...] = ()

    class Config:
        frozen = True

    @property
    def base_score(self) -> int:
        """Weighted accuracy score without bonuses."""
        return self.final_score - self.bonus_score


# Backend (third-party API) shapes. The backend speaks camelCase JSON.

class BackendModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True


class StartGameRequest(BackendModel):
    """Request to start a game on the backend."""
    game_mode: Literal["timed", "untimed"] = "untimed"
    question_count: int = Field(default=5, ge=1, le=20)
    time_limit: Optional[int] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def check_time_limit(self):
        if self.game_mode == "timed" and self.time_limit is None:
            raise ValueError("time_limit is required when game_mode is 'timed'")
        return self


class StartGameResponse(BackendModel):
    """Backend response after a game was created."""
    game_session_id: str
    event_ids: List[str]
    current_question: int = 1
    total_questions: Optional[int] = None
    game_mode: Literal["timed", "untimed"] = "untimed"
    time_limit: Optional[int] = None


class EventDetail(BackendModel):
    """Historical event a round is about."""
    id: str
    description: Optional[str] = None
    detail: Optional[str] = None
    image_url: Optional[str] = None
    difficulty: Optional[str] = None
    city: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    year: Optional[int] = None

    @property
    def location(self) -> Optional[GeoPoint]:
        if self.latitude is None or self.longitude is None:
            return None
        return GeoPoint(lat=self.latitude, lng=self.longitude)


class SubmitAnswerRequest(BackendModel):
    """A player's answer for one event."""
    game_session_id: str
    event_id: str
    guessed_year: int
    guessed_location: Optional[BoundedGeoPoint] = None
    answer_time: Optional[int] = Field(default=None, ge=0)


class SubmitAnswerResponse(BackendModel):
    """Backend acknowledgement of a submitted answer."""
    question_session_id: str
    game_session_id: str
    status: Literal["submitted", "completed"] = "submitted"


class ScoringDetails(BackendModel):
    """Score breakdown as computed by the backend."""
    time_score: int = 0
    location_score: int = 0
    bonus_score: int = 0
    final_score: int
    rank: Optional[str] = None
    achievements: List[str] = []
    streak: int = 0
    speed_bonus: int = 0
    perfect_bonus: int = 0
    streak_bonus: int = 0
    time_accuracy: Optional[str] = None
    location_accuracy: Optional[str] = None


class QuestionResult(BackendModel):
    """Backend result of a single answered question."""
    question_session_id: str
    game_session_id: str
    question_number: Optional[int] = None
    event_id: str
    guessed_year: int
    actual_year: int
    guessed_location: Optional[GeoPoint] = None
    actual_location: GeoPoint
    answer_time: int = 0
    score: int = 0
    scoring_details: Optional[ScoringDetails] = None
    event: Optional[EventDetail] = None


class QuestionSessionSummary(BackendModel):
    question_session_id: str
    event_id: str
    guessed_year: Optional[int] = None
    score: int = 0


class GameResult(BackendModel):
    """Aggregate result of a whole game, as stored by the backend."""
    game_session_id: str
    total_score: int
    average_score: float
    questions_completed: int = 0
    total_questions: int
    game_mode: Optional[str] = None
    time_limit: Optional[int] = None
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    question_sessions: List[QuestionSessionSummary] = []


# Responses of this service.

class SubmitGuessResponse(BaseModel):
    """Response after submitting a guess."""
    question_session_id: str
    game_session_id: str
    round_number: int
    score: ScoreBreakdown
    year_difference: int
    distance_km: Optional[float] = None
    distance_text: Optional[str] = None
    answer_time_text: str
    actual_year: int
    actual_location: GeoPoint
    game_completed: bool


class GameSessionResponse(BaseModel):
    """Local state of a game session."""
    game_session_id: str
    state: str
    current_round: int
    total_rounds: int
    streak_count: int
    total_score: int
    average_score: float
    rounds: List[ScoreBreakdown]


class ScoreValidationResponse(BaseModel):
    """Locally recomputed score compared with the backend's."""
    question_session_id: str
    local: ScoreBreakdown
    backend_final_score: Optional[int] = None
    matches: bool
