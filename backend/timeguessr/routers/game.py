from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..models.game import (
    StartGameRequest, StartGameResponse, EventDetail,
    SubmitAnswerRequest, SubmitGuessResponse, QuestionResult, GameResult,
    ScorePreviewRequest, ScoreBreakdown, GameSessionResponse, ScoreValidationResponse
)
from ..services.coordinator import (
    GameCoordinator, SessionNotFoundError, DuplicateSubmissionError, WrongEventError
)
from ..services.scoring import score_attempt
from ..services.session import GameSession, SessionCompletedError

router = APIRouter(tags=["Game"])


def get_coordinator(request: Request) -> GameCoordinator:
    """The coordinator created at application startup."""
    return request.app.state.coordinator


def _session_response(session: GameSession) -> GameSessionResponse:
    return GameSessionResponse(
        game_session_id=session.game_session_id,
        state=session.state.value,
        current_round=session.current_round,
        total_rounds=session.total_rounds,
        streak_count=session.streak_count,
        total_score=session.total_score,
        average_score=session.average_score,
        rounds=list(session.scores)
    )


@router.post("/game/start", response_model=StartGameResponse, status_code=status.HTTP_201_CREATED)
async def start_game(
    game_data: StartGameRequest,
    coordinator: GameCoordinator = Depends(get_coordinator)
):
    """Start a new game session."""
    return await coordinator.start_game(game_data)


@router.get("/events/{event_id}", response_model=EventDetail)
async def get_event(
    event_id: str,
    coordinator: GameCoordinator = Depends(get_coordinator)
):
    """Get details of a historical event."""
    return await coordinator.client.get_event(event_id)


@router.post("/game/submit", response_model=SubmitGuessResponse)
async def submit_answer(
    answer: SubmitAnswerRequest,
    coordinator: GameCoordinator = Depends(get_coordinator)
):
    """Submit a guess for the current round."""
    try:
        return await coordinator.submit_answer(answer)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except (DuplicateSubmissionError, WrongEventError, SessionCompletedError) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@router.get("/game/question-result/{question_session_id}", response_model=QuestionResult)
async def get_question_result(
    question_session_id: str,
    coordinator: GameCoordinator = Depends(get_coordinator)
):
    """Get the backend's result for one answered question."""
    return await coordinator.client.get_question_result(question_session_id)


@router.get("/game/question-result/{question_session_id}/validate", response_model=ScoreValidationResponse)
async def validate_question_result(
    question_session_id: str,
    coordinator: GameCoordinator = Depends(get_coordinator)
):
    """Compare the backend's score of a question with the local one."""
    return await coordinator.validate_against_backend(question_session_id)


@router.get("/game/result/{game_session_id}", response_model=GameResult)
async def get_game_result(
    game_session_id: str,
    coordinator: GameCoordinator = Depends(get_coordinator)
):
    """Get the aggregate result of a game."""
    return await coordinator.client.get_game_result(game_session_id)


@router.get("/game/session/{game_session_id}", response_model=GameSessionResponse)
async def get_session(
    game_session_id: str,
    coordinator: GameCoordinator = Depends(get_coordinator)
):
    """Get the local state of a game, restoring it from its snapshot if needed."""
    try:
        session = await coordinator.get_session(game_session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return _session_response(session)


@router.post("/game/score", response_model=ScoreBreakdown)
async def preview_score(attempt: ScorePreviewRequest):
    """Score an attempt without recording it."""
    return score_attempt(attempt)
