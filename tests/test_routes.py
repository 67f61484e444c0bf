"""HTTP-level tests for the calls, performance, roleplay and auth routes.

Uses a fresh FastAPI app with only the API routers, a real SQLite session,
and doubles for the scheduler and scoring engine.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from callcoach.app.config import get_settings
from callcoach.domain.models import SalesCall
from callcoach.services.analysis_orchestrator import schedule_call_analysis
from callcoach.services.errors import (
    CREDIT_EXHAUSTED_MESSAGE,
    CreditExhaustedError,
    ScoringEngineError,
)

TRANSCRIPT = "[Speaker A] Thanks for hopping on.\n[Speaker B] Happy to chat."


def _bearer_token(user_id: str) -> str:
    settings = get_settings()
    payload = {"sub": user_id, "exp": datetime.now(timezone.utc) + timedelta(hours=1)}
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def _build_app_client(db_session: AsyncSession, user=None, scheduler=None, scorer=None):
    """Build an HTTPX AsyncClient wired to a test FastAPI app.

    When *user* is given, authentication is bypassed and every request
    runs as that user.
    """
    from fastapi import FastAPI

    from callcoach.app.dependencies import get_call_scheduler, get_scoring_engine
    from callcoach.app.routes.auth import get_current_user_dep, router as auth_router
    from callcoach.app.routes.calls import router as calls_router
    from callcoach.app.routes.performance import router as performance_router
    from callcoach.app.routes.roleplay import router as roleplay_router
    from callcoach.infra.database import get_db

    test_app = FastAPI()
    test_app.include_router(auth_router)
    test_app.include_router(calls_router)
    test_app.include_router(performance_router)
    test_app.include_router(roleplay_router)

    async def _override_get_db():
        yield db_session

    test_app.dependency_overrides[get_db] = _override_get_db
    test_app.dependency_overrides[get_call_scheduler] = lambda: scheduler or MagicMock()
    if scorer is not None:
        test_app.dependency_overrides[get_scoring_engine] = lambda: scorer
    if user is not None:
        test_app.dependency_overrides[get_current_user_dep] = lambda: user

    return AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://testserver",
    )


# ===========================================================================
# Auth
# ===========================================================================


class TestAuth:
    async def test_missing_token(self, db_session):
        async with _build_app_client(db_session) as client:
            resp = await client.get("/api/performance/figures?month=2024-03")
        assert resp.status_code == 401

    async def test_invalid_token(self, db_session):
        async with _build_app_client(db_session) as client:
            resp = await client.get("/api/auth/me", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401

    async def test_valid_token(self, db_session, make_user):
        user = await make_user()
        token = _bearer_token(user.id)

        async with _build_app_client(db_session) as client:
            resp = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})

        assert resp.status_code == 200
        assert resp.json()["id"] == user.id

    async def test_inactive_user(self, db_session, make_user):
        user = await make_user(is_active=False)
        token = _bearer_token(user.id)

        async with _build_app_client(db_session) as client:
            resp = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})

        assert resp.status_code == 401


# ===========================================================================
# Calls
# ===========================================================================


class TestTranscriptRoute:
    async def test_json_body_creates_call(self, db_session, make_user):
        user = await make_user()
        scheduler = MagicMock()

        async with _build_app_client(db_session, user=user, scheduler=scheduler) as client:
            resp = await client.post(
                "/api/calls/transcript",
                json={"transcript": TRANSCRIPT, "addToFigures": False},
            )

        assert resp.status_code == 201
        body = resp.json()
        assert body["status"] == "analyzing"
        call = await db_session.get(SalesCall, body["callId"])
        assert call.analysis_intent == "analysis_only"
        scheduler.assert_called_once()

    async def test_multipart_txt_upload(self, db_session, make_user):
        user = await make_user()

        async with _build_app_client(db_session, user=user) as client:
            resp = await client.post(
                "/api/calls/transcript",
                files={"file": ("call.txt", TRANSCRIPT.encode(), "text/plain")},
                data={"metadata": '{"addToFigures": true}'},
            )

        assert resp.status_code == 201
        call = await db_session.get(SalesCall, resp.json()["callId"])
        assert call.file_name == "call.txt"
        assert len(call.transcript_json["utterances"]) == 2

    async def test_unsupported_document(self, db_session, make_user):
        user = await make_user()

        async with _build_app_client(db_session, user=user) as client:
            resp = await client.post(
                "/api/calls/transcript",
                files={"file": ("call.rtf", b"{\\rtf1}", "application/rtf")},
            )

        assert resp.status_code == 400
        assert "Unsupported file type" in resp.json()["detail"]

    @pytest.mark.parametrize("payload", [{}, {"transcript": "   "}, {"transcript": 5}])
    async def test_missing_transcript(self, db_session, make_user, payload):
        user = await make_user()

        async with _build_app_client(db_session, user=user) as client:
            resp = await client.post("/api/calls/transcript", json=payload)

        assert resp.status_code == 400
        assert await db_session.scalar(select(func.count()).select_from(SalesCall)) == 0

    async def test_invalid_json(self, db_session, make_user):
        user = await make_user()

        async with _build_app_client(db_session, user=user) as client:
            resp = await client.post(
                "/api/calls/transcript",
                content=b"{not json",
                headers={"Content-Type": "application/json"},
            )

        assert resp.status_code == 400

    async def test_admission_denied(self, db_session, make_user):
        user = await make_user(plan="free")

        async with _build_app_client(db_session, user=user) as client:
            for _ in range(5):
                assert (await client.post("/api/calls/transcript", json={"transcript": TRANSCRIPT})).status_code == 201
            resp = await client.post("/api/calls/transcript", json={"transcript": TRANSCRIPT})

        assert resp.status_code == 403
        assert "Monthly limit" in resp.json()["detail"]


class TestUploadRoute:
    async def test_unsupported_audio_type(self, db_session, make_user):
        user = await make_user()

        async with _build_app_client(db_session, user=user) as client:
            resp = await client.post(
                "/api/calls/upload",
                files={"file": ("notes.txt", b"hello", "text/plain")},
            )

        assert resp.status_code == 400
        assert "Invalid file type" in resp.json()["detail"]

    async def test_missing_file(self, db_session, make_user):
        user = await make_user()

        async with _build_app_client(db_session, user=user) as client:
            resp = await client.post("/api/calls/upload", data={"metadata": "{}"})

        assert resp.status_code == 400


class TestManualRoute:
    async def test_logs_call(self, db_session, make_user):
        user = await make_user()
        scheduler = MagicMock()

        async with _build_app_client(db_session, user=user, scheduler=scheduler) as client:
            resp = await client.post(
                "/api/calls/manual",
                json={
                    "date": "2024-03-12",
                    "result": "deposit",
                    "cashCollected": 500,
                    "revenueGenerated": 2500,
                    "reasonForOutcome": "Needs spouse sign-off for the balance",
                },
            )
            figures = await client.get("/api/performance/figures", params={"month": "2024-03"})

        assert resp.status_code == 201
        assert resp.json()["message"] == "Call logged successfully (figures updated)"
        scheduler.assert_not_called()
        assert figures.json()["salesMade"] == 1
        assert figures.json()["cashCollectedPct"] == 20.0

    async def test_missing_reason(self, db_session, make_user):
        user = await make_user()

        async with _build_app_client(db_session, user=user) as client:
            resp = await client.post("/api/calls/manual", json={"result": "lost"})

        assert resp.status_code == 400
        assert resp.json()["detail"] == "Missing required fields: result, reasonForOutcome"


class TestGetCallRoute:
    async def test_end_to_end_analysis_is_visible_by_polling(
        self, db_session, session_factory, make_user, fake_scorer
    ):
        user = await make_user()
        await db_session.commit()
        tasks = []

        def _scheduler(call_id, transcript, transcript_json):
            tasks.append(
                schedule_call_analysis(
                    call_id, transcript, transcript_json,
                    scorer=fake_scorer, session_factory=session_factory,
                )
            )

        async with _build_app_client(db_session, user=user, scheduler=_scheduler) as client:
            created = await client.post("/api/calls/transcript", json={"transcript": TRANSCRIPT})
            call_id = created.json()["callId"]
            await tasks[0]
            db_session.expire(await db_session.get(SalesCall, call_id))
            resp = await client.get(f"/api/calls/{call_id}")

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "completed"
        assert body["analysis"]["overallScore"] == 72.5

    async def test_other_organizations_call_is_hidden(self, db_session, make_user, make_call):
        owner = await make_user()
        outsider = await make_user()
        call = await make_call(owner)

        async with _build_app_client(db_session, user=outsider) as client:
            resp = await client.get(f"/api/calls/{call.id}")

        assert resp.status_code == 404

    async def test_polling_does_not_build_intake_collaborators(
        self, db_session, make_user, make_call
    ):
        user = await make_user()
        call = await make_call(user, status="analyzing")

        with patch("callcoach.app.dependencies.DeepgramTranscriber") as transcriber, \
                patch("callcoach.app.dependencies.TranscriptExtractor") as extractor:
            async with _build_app_client(db_session, user=user) as client:
                resp = await client.get(f"/api/calls/{call.id}")

        assert resp.status_code == 200
        assert resp.json()["status"] == "analyzing"
        transcriber.assert_not_called()
        extractor.assert_not_called()


# ===========================================================================
# Performance
# ===========================================================================


class TestFiguresRoute:
    async def test_month_required(self, db_session, make_user):
        user = await make_user()

        async with _build_app_client(db_session, user=user) as client:
            resp = await client.get("/api/performance/figures")

        assert resp.status_code == 400
        assert "month=YYYY-MM" in resp.json()["detail"]

    async def test_camel_case_summary(self, db_session, make_user, make_call):
        user = await make_user()
        await make_call(user, result="closed", qualified=True, revenue_generated=5000)

        async with _build_app_client(db_session, user=user) as client:
            resp = await client.get("/api/performance/figures", params={"month": "2024-03"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["month"] == "2024-03"
        assert body["callsBooked"] == 1
        assert body["closeRate"] == 100.0
        assert body["revenueGenerated"] == 5000


# ===========================================================================
# Roleplay
# ===========================================================================


class TestRoleplayScoreRoute:
    async def test_scores_session(self, db_session, make_user, make_roleplay, fake_scorer):
        user = await make_user()
        session = await make_roleplay(user)

        async with _build_app_client(db_session, user=user, scorer=fake_scorer) as client:
            resp = await client.post(f"/api/roleplay/{session.id}/score")

        assert resp.status_code == 200
        body = resp.json()
        assert body["overallScore"] == 72.5
        assert body["analysis"]["overallScore"] == 72.5

    async def test_credit_exhaustion_is_payment_required(
        self, db_session, make_user, make_roleplay, fake_scorer
    ):
        user = await make_user()
        session = await make_roleplay(user)
        fake_scorer.analyze.side_effect = CreditExhaustedError("credit balance is too low")

        async with _build_app_client(db_session, user=user, scorer=fake_scorer) as client:
            resp = await client.post(f"/api/roleplay/{session.id}/score")

        assert resp.status_code == 402
        assert resp.json()["detail"] == CREDIT_EXHAUSTED_MESSAGE

    async def test_generic_engine_failure(self, db_session, make_user, make_roleplay, fake_scorer):
        user = await make_user()
        session = await make_roleplay(user)
        fake_scorer.analyze.side_effect = ScoringEngineError("")

        async with _build_app_client(db_session, user=user, scorer=fake_scorer) as client:
            resp = await client.post(f"/api/roleplay/{session.id}/score")

        assert resp.status_code == 500
        assert resp.json()["detail"] == "Analysis failed: Unknown error"

    @pytest.mark.parametrize("status,expected", [("in_progress", 409), ("completed", 409)])
    async def test_not_scorable(self, db_session, make_user, make_roleplay, fake_scorer, status, expected):
        user = await make_user()
        session = await make_roleplay(user, status=status)

        async with _build_app_client(db_session, user=user, scorer=fake_scorer) as client:
            resp = await client.post(f"/api/roleplay/{session.id}/score")

        assert resp.status_code == expected

    async def test_unknown_session(self, db_session, make_user, fake_scorer):
        user = await make_user()

        async with _build_app_client(db_session, user=user, scorer=fake_scorer) as client:
            resp = await client.post("/api/roleplay/does-not-exist/score")

        assert resp.status_code == 404
