"""Shared test infrastructure for the call coach test suite.

Provides:
- db_session: async SQLite session with all tables created
- session_factory: sessionmaker on the same database, for code that opens its own sessions
- make_org / make_user / make_call / make_roleplay: row factories
- make_analysis_result: factory for scoring-engine results
- fake_scorer: scoring engine double with an AsyncMock ``analyze``
"""

import uuid
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Import Base first, then models to register all tables
from callcoach.infra.database import Base

import callcoach.domain.models  # noqa: F401

from callcoach.domain.models import (
    Organization,
    RoleplayMessage,
    RoleplaySession,
    SalesCall,
    User,
)
from callcoach.domain.schemas import (
    AnalysisResult,
    CategoryScore,
    CoachingRecommendation,
    OutcomeExtraction,
    ProspectDifficulty,
    SkillScore,
)


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
async def session_factory(tmp_path):
    """Sessionmaker on a fresh file-backed SQLite database.

    File-backed so sessions opened by background analysis see rows the
    test committed through ``db_session``.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def db_session(session_factory):
    """Async session with all tables created; rolled back after the test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ---------------------------------------------------------------------------
# Row factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_org(db_session):
    """Factory that creates an Organization.

    Usage:
        org = await make_org(plan="pro")
    """
    async def _factory(name: str = "Test Org", plan: str = "free") -> Organization:
        org = Organization(id=str(uuid.uuid4()), name=name, plan=plan)
        db_session.add(org)
        await db_session.flush()
        return org

    return _factory


@pytest.fixture
def make_user(db_session, make_org):
    """Factory that creates a User, with a fresh organization unless one is given."""
    async def _factory(
        organization: Organization | None = None,
        email: str | None = None,
        name: str = "Test Rep",
        is_active: bool = True,
        plan: str = "free",
    ) -> User:
        if organization is None:
            organization = await make_org(plan=plan)
        user = User(
            id=str(uuid.uuid4()),
            email=email or f"rep-{uuid.uuid4().hex[:8]}@test.com",
            name=name,
            organization_id=organization.id,
            is_active=is_active,
        )
        db_session.add(user)
        await db_session.flush()
        return user

    return _factory


@pytest.fixture
def make_call(db_session):
    """Factory that creates a SalesCall owned by *user*.

    Usage:
        call = await make_call(user, status="completed", result="closed")
    """
    async def _factory(
        user: User,
        status: str = "completed",
        analysis_intent: str | None = "update_figures",
        origin: str = "transcript",
        created_at: datetime | None = None,
        **fields,
    ) -> SalesCall:
        call = SalesCall(
            id=str(uuid.uuid4()),
            organization_id=user.organization_id,
            user_id=user.id,
            origin=origin,
            file_name=fields.pop("file_name", "test-call.txt"),
            status=status,
            analysis_intent=analysis_intent,
            created_at=created_at or datetime(2024, 3, 15, 12, 0),
            **fields,
        )
        db_session.add(call)
        await db_session.flush()
        return call

    return _factory


@pytest.fixture
def make_roleplay(db_session):
    """Factory that creates a RoleplaySession with (role, content, timestamp) messages."""
    async def _factory(
        user: User,
        status: str = "ended",
        messages: list[tuple[str, str, int | None]] | None = None,
    ) -> RoleplaySession:
        session = RoleplaySession(
            id=str(uuid.uuid4()),
            organization_id=user.organization_id,
            user_id=user.id,
            status=status,
        )
        db_session.add(session)
        await db_session.flush()

        if messages is None:
            messages = [
                ("rep", "Hi, thanks for taking the call.", 0),
                ("prospect", "Sure, I have ten minutes.", 4000),
            ]
        for index, (role, content, timestamp) in enumerate(messages):
            db_session.add(
                RoleplayMessage(
                    id=str(uuid.uuid4()),
                    session_id=session.id,
                    role=role,
                    content=content,
                    timestamp=timestamp,
                    created_at=datetime(2024, 3, 1, 10, 0, index),
                )
            )
        await db_session.flush()
        return session

    return _factory


# ---------------------------------------------------------------------------
# Scoring engine doubles
# ---------------------------------------------------------------------------

@pytest.fixture
def make_analysis_result():
    """Factory for a valid AnalysisResult.

    Usage:
        result = make_analysis_result(resistance=3, outcome=OutcomeExtraction(result="closed"))
    """
    def _factory(
        overall_score: float = 72.5,
        resistance: int | None = 9,
        outcome: OutcomeExtraction | None = None,
    ) -> AnalysisResult:
        return AnalysisResult(
            overall_score=overall_score,
            value=CategoryScore(score=18, summary="Clear value case"),
            trust=CategoryScore(score=17),
            fit=CategoryScore(score=19),
            logistics=CategoryScore(score=18.5),
            skill_scores=[SkillScore(skill="discovery", score=7), SkillScore(skill="closing", score=6)],
            coaching_recommendations=[
                CoachingRecommendation(
                    priority="high",
                    category="Closing",
                    issue="Did not ask for the sale",
                    explanation="The call ended without a clear next step.",
                    action="Ask a direct closing question once objections are handled.",
                )
            ],
            prospect_difficulty=(
                ProspectDifficulty(execution_resistance=resistance)
                if resistance is not None
                else None
            ),
            outcome=outcome,
        )

    return _factory


@pytest.fixture
def fake_scorer(make_analysis_result):
    """Scoring engine whose ``analyze`` returns a default result."""
    scorer = MagicMock()
    scorer.analyze = AsyncMock(return_value=make_analysis_result())
    return scorer
