"""Background analysis of sales calls.

Intake handlers create a call at ``analyzing``, commit, and hand it to
``schedule_call_analysis``. The request returns immediately; the outcome is
visible only through the persisted call status (``completed`` / ``failed``).

Nothing here is retried. A failed analysis is recovered by the user
submitting the call again.
"""

import asyncio
import logging
from typing import Any, Callable, Optional, Protocol

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from callcoach.domain.enums import AnalysisIntent, CallStatus, RecommendationPriority
from callcoach.domain.models import CallAnalysis, SalesCall, utcnow
from callcoach.domain.schemas import (
    AnalysisResult,
    CoachingRecommendation,
    OutcomeExtraction,
    TranscriptJson,
)
from callcoach.services.call_status_machine import (
    InvalidStatusTransitionError,
    validate_transition,
)
from callcoach.services.errors import CreditExhaustedError

logger = logging.getLogger(__name__)

# Prevent GC from collecting scheduled analyses before they finish
_background_tasks: set[asyncio.Task] = set()

PROSPECT_DIFFICULTY_CATEGORY = "Prospect Difficulty"


# (call_id, transcript, transcript_json) -> task handle
CallScheduler = Callable[[str, str, dict], Any]


class ScoringEngine(Protocol):
    async def analyze(
        self,
        transcript: str,
        transcript_json: TranscriptJson | dict,
        call_id: Optional[str] = None,
    ) -> AnalysisResult: ...


def _default_scorer() -> ScoringEngine:
    from callcoach.agents.call_scoring_agent import CallScoringAgent

    return CallScoringAgent()


def _default_session_factory() -> async_sessionmaker:
    from callcoach.infra.database import async_session

    return async_session


# ---------------------------------------------------------------------------
# Pure helpers (shared with roleplay scoring)
# ---------------------------------------------------------------------------


def augment_recommendations(result: AnalysisResult) -> list[CoachingRecommendation]:
    """Add a prospect-difficulty note when execution resistance was high.

    Scores are never changed, only the recommendation list:
    resistance <= 4 flags a lead-quality issue (medium), 5-7 a partial-ability
    issue (low), 8+ adds nothing.
    """
    recommendations = list(result.coaching_recommendations)
    difficulty = result.prospect_difficulty
    resistance = difficulty.execution_resistance if difficulty else None
    if resistance is None:
        return recommendations

    if resistance <= 4:
        recommendations.append(
            CoachingRecommendation(
                priority=RecommendationPriority.MEDIUM.value,
                category=PROSPECT_DIFFICULTY_CATEGORY,
                issue=(
                    f"Prospect had extreme execution resistance ({resistance}/10) - "
                    "severe money/time/authority constraints"
                ),
                explanation=(
                    "This call was difficult due to structural blockers, not just sales skill. "
                    "Execution resistance increases difficulty but does not excuse poor "
                    "performance - both should be addressed."
                ),
                action=(
                    "Flag this as a lead quality issue. Consider qualifying for execution "
                    "ability earlier in the funnel."
                ),
            )
        )
    elif resistance <= 7:
        recommendations.append(
            CoachingRecommendation(
                priority=RecommendationPriority.LOW.value,
                category=PROSPECT_DIFFICULTY_CATEGORY,
                issue=f"Prospect had partial execution ability ({resistance}/10)",
                explanation=(
                    "Prospect may need payment plans, time restructuring, or "
                    "prioritization reframing."
                ),
                action="Consider offering flexible payment options or helping prospect reprioritize.",
            )
        )
    return recommendations


def analysis_columns(
    result: AnalysisResult,
    recommendations: list[CoachingRecommendation],
) -> dict[str, Any]:
    """Column values shared by call and roleplay analysis rows."""
    return {
        "overall_score": result.overall_score,
        "value_score": result.value.score,
        "trust_score": result.trust.score,
        "fit_score": result.fit.score,
        "logistics_score": result.logistics.score,
        "value_details": result.value.model_dump(),
        "trust_details": result.trust.model_dump(),
        "fit_details": result.fit.model_dump(),
        "logistics_details": result.logistics.model_dump(),
        "skill_scores": result.skill_map(),
        "coaching_recommendations": [r.model_dump() for r in recommendations],
        "timestamped_feedback": [f.model_dump() for f in result.timestamped_feedback],
        "prospect_difficulty": (
            result.prospect_difficulty.model_dump() if result.prospect_difficulty else None
        ),
    }


def outcome_updates(outcome: Optional[OutcomeExtraction]) -> dict[str, Any]:
    """Call columns to overwrite from an extracted outcome: only non-null fields."""
    if outcome is None:
        return {}

    values: dict[str, Any] = {}
    if outcome.result and outcome.result.strip():
        values["result"] = outcome.result.strip().lower()
    if outcome.qualified is not None:
        values["qualified"] = outcome.qualified
    if outcome.cash_collected is not None:
        values["cash_collected"] = outcome.cash_collected
    if outcome.revenue_generated is not None:
        values["revenue_generated"] = outcome.revenue_generated
    if outcome.reason_for_outcome and outcome.reason_for_outcome.strip():
        values["reason_for_outcome"] = outcome.reason_for_outcome.strip()
    return values


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


async def _mark_failed(call_id: str, session_factory: async_sessionmaker) -> None:
    """Best-effort ``analyzing -> failed``. Logs instead of raising."""
    try:
        async with session_factory() as db:
            await db.execute(
                update(SalesCall)
                .where(
                    SalesCall.id == call_id,
                    SalesCall.status == CallStatus.ANALYZING.value,
                )
                .values(status=CallStatus.FAILED.value)
            )
            await db.commit()
        logger.info("Call %s marked failed", call_id)
    except Exception:
        logger.exception("Could not mark call %s as failed", call_id)


async def _commit_analysis(
    db: AsyncSession,
    call_id: str,
    result: AnalysisResult,
) -> None:
    """Persist the analysis and complete the call in one transaction.

    The call row changes in a single UPDATE guarded on ``status = analyzing``
    so readers never see a completed call with stale outcome fields.
    """
    call = await db.get(SalesCall, call_id)
    if call is None:
        raise LookupError(f"Call {call_id} not found")
    validate_transition(call.status, CallStatus.COMPLETED)

    recommendations = augment_recommendations(result)
    db.add(CallAnalysis(call_id=call_id, **analysis_columns(result, recommendations)))

    values: dict[str, Any] = {
        "status": CallStatus.COMPLETED.value,
        "completed_at": utcnow(),
    }
    if call.analysis_intent == AnalysisIntent.UPDATE_FIGURES.value:
        written = outcome_updates(result.outcome)
        if written:
            values.update(written)
            logger.info("Call %s: writing outcome fields %s", call_id, sorted(written))

    updated = await db.execute(
        update(SalesCall)
        .where(
            SalesCall.id == call_id,
            SalesCall.status == CallStatus.ANALYZING.value,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if updated.rowcount != 1:
        raise InvalidStatusTransitionError(
            CallStatus.ANALYZING,
            CallStatus.COMPLETED,
            "call left analyzing while scoring was in progress",
        )
    await db.commit()


async def run_call_analysis(
    call_id: str,
    transcript: str,
    transcript_json: TranscriptJson | dict,
    scorer: Optional[ScoringEngine] = None,
    session_factory: Optional[async_sessionmaker] = None,
) -> CallStatus:
    """Score a call and commit the outcome. Never raises.

    Returns the status the call was moved to.
    """
    scorer = scorer or _default_scorer()
    session_factory = session_factory or _default_session_factory()

    try:
        result = await scorer.analyze(transcript, transcript_json, call_id=call_id)
    except CreditExhaustedError as exc:
        logger.error("Call %s: scoring refused, credit exhausted: %s", call_id, exc)
        await _mark_failed(call_id, session_factory)
        return CallStatus.FAILED
    except Exception as exc:
        logger.error("Call %s: scoring engine failed: %s", call_id, exc)
        await _mark_failed(call_id, session_factory)
        return CallStatus.FAILED

    try:
        async with session_factory() as db:
            await _commit_analysis(db, call_id, result)
    except Exception:
        logger.exception("Call %s: failed to commit analysis", call_id)
        await _mark_failed(call_id, session_factory)
        return CallStatus.FAILED

    logger.info("Call %s analysis completed (overall=%.1f)", call_id, result.overall_score)
    return CallStatus.COMPLETED


def schedule_call_analysis(
    call_id: str,
    transcript: str,
    transcript_json: TranscriptJson | dict,
    scorer: Optional[ScoringEngine] = None,
    session_factory: Optional[async_sessionmaker] = None,
) -> asyncio.Task:
    """Fire-and-forget ``run_call_analysis``; returns the task handle immediately."""
    task = asyncio.create_task(
        run_call_analysis(
            call_id,
            transcript,
            transcript_json,
            scorer=scorer,
            session_factory=session_factory,
        ),
        name=f"call-analysis-{call_id}",
    )
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    logger.info("Scheduled analysis for call %s", call_id)
    return task

