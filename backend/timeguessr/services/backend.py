from typing import Any, Dict, Optional

import httpx
import structlog
from fastapi import HTTPException, status
from pydantic import ValidationError

from ..models.game import (
    StartGameRequest, StartGameResponse, EventDetail,
    SubmitAnswerRequest, SubmitAnswerResponse, QuestionResult, GameResult
)
from .retry import RetryPolicy, is_retryable, is_unsent

logger = structlog.get_logger()


class MalformedResponseError(Exception):
    """The backend answered with a payload of an unknown shape."""


def unwrap(payload: Any) -> Dict[str, Any]:
    """
    Strip the optional {"success": ..., "data": ...} envelope.

    Older backend versions return the object bare, newer ones wrap it.
    """
    if not isinstance(payload, dict):
        raise MalformedResponseError(f"Expected a JSON object, got {type(payload).__name__}")
    if "success" not in payload:
        return payload
    if not payload["success"]:
        error = payload.get("error") or {}
        raise MalformedResponseError(error.get("message", "Backend reported failure"))
    data = payload.get("data")
    if not isinstance(data, dict):
        raise MalformedResponseError("Envelope has no data object")
    return data


def normalize_event(payload: Any) -> EventDetail:
    data = unwrap(payload)
    # Some versions nest the event one level deeper
    for key in ("event", "eventDetail"):
        if isinstance(data.get(key), dict):
            data = data[key]
            break
    try:
        return EventDetail.model_validate(data)
    except ValidationError as e:
        raise MalformedResponseError(f"Invalid event payload: {e}") from e


def normalize_question_result(payload: Any) -> QuestionResult:
    """
    Map every known question-result shape onto QuestionResult.

    The event may come as "event" or "eventDetail", and when actualYear or
    actualLocation are missing they are taken from the event itself.
    """
    data = dict(unwrap(payload))
    if "eventDetail" in data and "event" not in data:
        data["event"] = data.pop("eventDetail")

    event = data.get("event")
    if isinstance(event, dict):
        if data.get("actualYear") is None and event.get("year") is not None:
            data["actualYear"] = event["year"]
        if data.get("actualLocation") is None and event.get("latitude") is not None:
            data["actualLocation"] = {"lat": event["latitude"], "lng": event.get("longitude")}

    try:
        return QuestionResult.model_validate(data)
    except ValidationError as e:
        raise MalformedResponseError(f"Invalid question result payload: {e}") from e


def _validate(model, payload: Any, what: str):
    try:
        return model.model_validate(unwrap(payload))
    except ValidationError as e:
        raise MalformedResponseError(f"Invalid {what} payload: {e}") from e


class TimeGuessrClient:
    """Client for the TimeGuessr game backend."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: float = 10.0
    ):
        self.api_url = api_url.rstrip('/')
        self.api_key = api_key
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = timeout
        self.headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json"
        }

    async def _request(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        idempotent: bool = True
    ) -> Any:
        """
        Send a request with retries and return the decoded JSON body.

        Non-idempotent requests are only resent when the previous attempt
        never reached the backend.

        Backend failures are translated to HTTP errors for our own callers:
        404 is passed through, other HTTP errors become 502 and unreachable
        backends 503.
        """
        url = f"{self.api_url}{path}"

        async def attempt():
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(method, url, headers=self.headers, json=body)
                response.raise_for_status()
                return response.json()

        try:
            return await self.retry_policy.run(
                attempt, retry_if=is_retryable if idempotent else is_unsent
            )
        except httpx.HTTPStatusError as e:
            if e.response.status_code == status.HTTP_404_NOT_FOUND:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail=f"Not found on TimeGuessr backend: {path}"
                )
            logger.error("backend request failed", method=method, path=path, error=str(e))
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=f"Error from TimeGuessr backend: {str(e)}"
            )
        except httpx.RequestError as e:
            logger.error("backend unreachable", method=method, path=path, error=str(e))
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=f"Cannot reach TimeGuessr backend: {str(e)}"
            )
        except ValueError as e:
            # JSON decode errors from non-JSON bodies
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=f"Invalid response from TimeGuessr backend: {str(e)}"
            )

    @staticmethod
    def _malformed(e: MalformedResponseError) -> HTTPException:
        logger.error("malformed backend response", error=str(e))
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Unexpected response from TimeGuessr backend"
        )

    async def start_game(self, request: StartGameRequest) -> StartGameResponse:
        """Create a game session on the backend."""
        payload = await self._request(
            "POST", "/game/start",
            request.model_dump(by_alias=True, exclude_none=True, mode="json")
        )
        try:
            return _validate(StartGameResponse, payload, "start game")
        except MalformedResponseError as e:
            raise self._malformed(e)

    async def get_event(self, event_id: str) -> EventDetail:
        """Fetch details (including actual year and location) of an event."""
        payload = await self._request("GET", f"/events/{event_id}")
        try:
            return normalize_event(payload)
        except MalformedResponseError as e:
            raise self._malformed(e)

    async def submit_answer(self, request: SubmitAnswerRequest) -> SubmitAnswerResponse:
        """Submit a player's answer for one event."""
        payload = await self._request(
            "POST", "/game/submit",
            request.model_dump(by_alias=True, exclude_none=True, mode="json"),
            idempotent=False
        )
        try:
            return _validate(SubmitAnswerResponse, payload, "submit")
        except MalformedResponseError as e:
            raise self._malformed(e)

    async def get_question_result(self, question_session_id: str) -> QuestionResult:
        """Fetch the backend's scoring of one answered question."""
        payload = await self._request("GET", f"/game/question-result/{question_session_id}")
        try:
            return normalize_question_result(payload)
        except MalformedResponseError as e:
            raise self._malformed(e)

    async def get_game_result(self, game_session_id: str) -> GameResult:
        """Fetch the aggregate result of a game."""
        payload = await self._request("GET", f"/game/result/{game_session_id}")
        try:
            return _validate(GameResult, payload, "game result")
        except MalformedResponseError as e:
            raise self._malformed(e)
