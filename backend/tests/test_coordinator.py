import asyncio

import pytest
from fastapi import HTTPException

from timeguessr.models.game import (
    EventDetail, GeoPoint, QuestionResult, ScoringDetails, StartGameRequest,
    SubmitAnswerRequest
)
from timeguessr.services.coordinator import (
    GameCoordinator, SessionNotFoundError, DuplicateSubmissionError, WrongEventError, antipode
)
from timeguessr.services.session import SessionCompletedError

from conftest import CALGARY, NEAR_CALGARY


def answer(event_id: str, guessed_year: int = 1990, location: GeoPoint = CALGARY, answer_time: int = 120):
    return SubmitAnswerRequest(
        game_session_id="game-1",
        event_id=event_id,
        guessed_year=guessed_year,
        guessed_location=location.model_dump(),
        answer_time=answer_time
    )


def test_antipode():
    point = antipode(GeoPoint(lat=10, lng=30))
    assert point == GeoPoint(lat=-10, lng=-150)
    assert antipode(GeoPoint(lat=0, lng=0)) == GeoPoint(lat=0, lng=180)


class TestStartGame:
    @pytest.mark.asyncio
    async def test_start_tracks_and_snapshots(self, coordinator, backend_client, store):
        response = await coordinator.start_game(StartGameRequest(question_count=3))

        assert response.game_session_id == "game-1"
        backend_client.start_game.assert_awaited_once()
        session = await coordinator.get_session("game-1")
        assert session.total_rounds == 3
        assert session.event_ids == ["e1", "e2", "e3"]
        assert "game-1" in store.saved

    @pytest.mark.asyncio
    async def test_round_count_falls_back_to_event_ids(self, coordinator, backend_client):
        backend_client.start_game.return_value = backend_client.start_game.return_value.model_copy(
            update={"total_questions": None}
        )
        await coordinator.start_game(StartGameRequest())
        assert (await coordinator.get_session("game-1")).total_rounds == 3


class TestSubmitAnswer:
    @pytest.mark.asyncio
    async def test_full_game(self, coordinator, store):
        await coordinator.start_game(StartGameRequest(question_count=3))

        first = await coordinator.submit_answer(answer("e1"))
        assert first.round_number == 1
        assert first.question_session_id == "q1"
        assert first.score.final_score == 1500
        assert first.year_difference == 0
        assert first.distance_km == 0
        assert first.actual_year == 1990
        assert not first.game_completed

        second = await coordinator.submit_answer(answer("e2"))
        assert second.score.streak_bonus == 50

        third = await coordinator.submit_answer(answer("e3", guessed_year=1988, location=NEAR_CALGARY, answer_time=45))
        assert third.game_completed
        assert third.year_difference == 2

        session = await coordinator.get_session("game-1")
        assert session.is_completed
        assert session.total_score == first.score.final_score + second.score.final_score + third.score.final_score
        assert len(store.saved) == 1
        assert '"completed"' in store.saved["game-1"]

    @pytest.mark.asyncio
    async def test_unknown_game(self, coordinator):
        with pytest.raises(SessionNotFoundError):
            await coordinator.submit_answer(answer("e1"))

    @pytest.mark.asyncio
    async def test_duplicate_submission(self, coordinator, backend_client):
        await coordinator.start_game(StartGameRequest(question_count=3))
        await coordinator.submit_answer(answer("e1"))

        with pytest.raises(DuplicateSubmissionError):
            await coordinator.submit_answer(answer("e1"))
        assert backend_client.submit_answer.await_count == 1

    @pytest.mark.asyncio
    async def test_completed_game_rejects_answers(self, coordinator):
        await coordinator.start_game(StartGameRequest(question_count=3))
        for event_id in ("e1", "e2", "e3"):
            await coordinator.submit_answer(answer(event_id))

        with pytest.raises(SessionCompletedError):
            await coordinator.submit_answer(answer("e4"))

    @pytest.mark.asyncio
    async def test_backend_failure_rolls_back(self, coordinator, backend_client, store):
        await coordinator.start_game(StartGameRequest(question_count=3))
        await coordinator.submit_answer(answer("e1"))
        saved_before = store.saved["game-1"]

        failing = HTTPException(status_code=503, detail="down")
        original = backend_client.submit_answer.side_effect
        backend_client.submit_answer.side_effect = failing
        with pytest.raises(HTTPException):
            await coordinator.submit_answer(answer("e2"))

        session = await coordinator.get_session("game-1")
        assert session.current_round == 2
        assert len(session.scores) == 1
        assert session.streak_count == 1
        assert not session.has_answered("e2")
        assert store.saved["game-1"] == saved_before

        # the same round can be retried once the backend is back
        backend_client.submit_answer.side_effect = original
        retried = await coordinator.submit_answer(answer("e2"))
        assert retried.round_number == 2
        assert retried.score.streak_bonus == 50

    @pytest.mark.asyncio
    async def test_event_without_location(self, coordinator, backend_client):
        await coordinator.start_game(StartGameRequest(question_count=3))
        backend_client.get_event.side_effect = lambda event_id: EventDetail(id=event_id, year=1990)

        with pytest.raises(HTTPException) as exc_info:
            await coordinator.submit_answer(answer("e1"))
        assert exc_info.value.status_code == 502
        assert (await coordinator.get_session("game-1")).scores == ()

    @pytest.mark.asyncio
    async def test_missing_location_guess_scores_zero_location(self, coordinator):
        await coordinator.start_game(StartGameRequest(question_count=3))
        request = SubmitAnswerRequest(game_session_id="game-1", event_id="e1", guessed_year=1990)

        response = await coordinator.submit_answer(request)
        assert response.distance_km is None
        assert response.score.location_score == 0
        assert response.score.time_score == 1000

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_are_serialized(self, coordinator, backend_client):
        await coordinator.start_game(StartGameRequest(question_count=3))

        results = await asyncio.gather(
            coordinator.submit_answer(answer("e1")),
            coordinator.submit_answer(answer("e1")),
            return_exceptions=True
        )
        assert sum(isinstance(r, DuplicateSubmissionError) for r in results) == 1
        assert backend_client.submit_answer.await_count == 1

    @pytest.mark.asyncio
    async def test_cancelled_submit_rolls_back(self, coordinator, backend_client, store):
        await coordinator.start_game(StartGameRequest(question_count=3))
        saved_before = store.saved["game-1"]
        sent = asyncio.Event()

        async def hang(request):
            sent.set()
            await asyncio.Event().wait()

        backend_client.submit_answer.side_effect = hang
        task = asyncio.create_task(coordinator.submit_answer(answer("e1")))
        await sent.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        session = await coordinator.get_session("game-1")
        assert session.scores == ()
        assert session.current_round == 1
        assert not session.has_answered("e1")
        assert store.saved["game-1"] == saved_before

    @pytest.mark.asyncio
    async def test_answer_for_another_round_is_rejected(self, coordinator, backend_client):
        await coordinator.start_game(StartGameRequest(question_count=3))

        with pytest.raises(WrongEventError):
            await coordinator.submit_answer(answer("e2"))
        with pytest.raises(WrongEventError):
            await coordinator.submit_answer(answer("not-in-game"))
        backend_client.submit_answer.assert_not_awaited()
        assert (await coordinator.get_session("game-1")).scores == ()

        assert (await coordinator.submit_answer(answer("e1"))).round_number == 1

    @pytest.mark.asyncio
    async def test_any_event_accepted_without_event_list(self, coordinator, backend_client):
        backend_client.start_game.return_value = backend_client.start_game.return_value.model_copy(
            update={"event_ids": []}
        )
        await coordinator.start_game(StartGameRequest(question_count=3))
        assert (await coordinator.submit_answer(answer("e9"))).round_number == 1

    @pytest.mark.asyncio
    async def test_response_carries_display_text(self, coordinator):
        await coordinator.start_game(StartGameRequest(question_count=3))
        response = await coordinator.submit_answer(answer("e1", location=NEAR_CALGARY, answer_time=125))
        assert response.distance_text == "1.3km"
        assert response.answer_time_text == "2m5s"

    @pytest.mark.asyncio
    async def test_completed_game_is_no_longer_tracked(self, coordinator, store):
        await coordinator.start_game(StartGameRequest(question_count=3))
        for event_id in ("e1", "e2"):
            await coordinator.submit_answer(answer(event_id))
        assert "game-1" in coordinator._sessions
        assert "game-1" in coordinator._locks

        await coordinator.submit_answer(answer("e3"))
        assert coordinator._sessions == {}
        assert coordinator._locks == {}

        session = await coordinator.get_session("game-1")
        assert session.is_completed
        assert len(session.scores) == 3
        assert coordinator._sessions == {}


class TestRestore:
    @pytest.mark.asyncio
    async def test_new_coordinator_restores_from_snapshot(self, coordinator, backend_client, store):
        await coordinator.start_game(StartGameRequest(question_count=3))
        await coordinator.submit_answer(answer("e1"))

        fresh = GameCoordinator(backend_client, store)
        session = await fresh.get_session("game-1")
        assert session.current_round == 2
        assert session.streak_count == 1

        response = await fresh.submit_answer(answer("e2"))
        assert response.score.streak_bonus == 50

    @pytest.mark.asyncio
    async def test_missing_snapshot(self, coordinator):
        with pytest.raises(SessionNotFoundError):
            await coordinator.get_session("nope")


class TestValidateAgainstBackend:
    def _result(self, final_score):
        return QuestionResult(
            question_session_id="q1",
            game_session_id="game-1",
            event_id="e1",
            guessed_year=2008,
            actual_year=2010,
            guessed_location=CALGARY,
            actual_location=NEAR_CALGARY,
            answer_time=45,
            scoring_details=ScoringDetails(final_score=final_score)
        )

    @pytest.mark.asyncio
    async def test_matching_score(self, coordinator, backend_client):
        backend_client.get_question_result.return_value = self._result(1352)

        validation = await coordinator.validate_against_backend("q1")
        assert validation.matches
        assert validation.local.final_score == 1352
        assert validation.backend_final_score == 1352

    @pytest.mark.asyncio
    async def test_mismatching_score(self, coordinator, backend_client):
        backend_client.get_question_result.return_value = self._result(1000)

        validation = await coordinator.validate_against_backend("q1")
        assert not validation.matches
        assert validation.local.final_score == 1352
