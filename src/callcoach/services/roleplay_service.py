"""Roleplay scoring: turn an ended session's messages into a transcript and score it.

Uses the same scoring engine and recommendation logic as call analysis, but
runs on the request path and attaches results to the roleplay session.
"""

import logging
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from callcoach.domain.enums import RoleplayRole, RoleplayStatus, UsageAction, UsageMetric
from callcoach.domain.models import RoleplayAnalysis, RoleplayMessage, RoleplaySession, User, utcnow
from callcoach.domain.schemas import TranscriptJson, Utterance
from callcoach.services.analysis_orchestrator import (
    ScoringEngine,
    analysis_columns,
    augment_recommendations,
)
from callcoach.services.errors import AdmissionDeniedError, IntakeValidationError
from callcoach.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

ESTIMATED_TURN_SPACING_MS = 5000
ESTIMATED_TURN_DURATION_MS = 3000


class RoleplayNotFoundError(Exception):
    """Session does not exist or belongs to another user."""


class RoleplayStateError(Exception):
    """Session is not in a state that can be scored."""


def build_roleplay_transcript(
    messages: Iterable[RoleplayMessage],
) -> tuple[str, TranscriptJson]:
    """Transcript text and utterances from ordered roleplay messages.

    Rep turns are speaker ``A``, prospect turns ``B``. Messages without a
    recorded timestamp are placed ``index * 5000`` ms in.
    """
    lines: list[str] = []
    utterances: list[Utterance] = []
    for index, msg in enumerate(messages):
        is_rep = msg.role == RoleplayRole.REP.value
        lines.append(f"[{'Rep' if is_rep else 'Prospect'}] {msg.content}")
        start = msg.timestamp or index * ESTIMATED_TURN_SPACING_MS
        utterances.append(
            Utterance(
                speaker="A" if is_rep else "B",
                start=start,
                end=start + ESTIMATED_TURN_DURATION_MS,
                text=msg.content,
            )
        )
    return "\n\n".join(lines), TranscriptJson(utterances=utterances)


async def score_roleplay_session(
    db: AsyncSession,
    session_id: str,
    user: User,
    scorer: ScoringEngine,
    subscriptions: Optional[SubscriptionService] = None,
) -> RoleplayAnalysis:
    """Score an ended roleplay session and mark it completed.

    Scoring-engine errors propagate unchanged (``CreditExhaustedError`` is
    distinct from other ``ScoringEngineError``s); the session stays ``ended``
    so the user can retry.
    """
    result = await db.execute(
        select(RoleplaySession).where(
            RoleplaySession.id == session_id,
            RoleplaySession.user_id == user.id,
        )
    )
    session = result.scalar_one_or_none()
    if session is None:
        raise RoleplayNotFoundError("Roleplay session not found")
    if session.status == RoleplayStatus.IN_PROGRESS.value:
        raise RoleplayStateError("Roleplay session has not ended yet")
    if session.status == RoleplayStatus.COMPLETED.value:
        raise RoleplayStateError("Roleplay session has already been scored")

    messages_result = await db.execute(
        select(RoleplayMessage)
        .where(RoleplayMessage.session_id == session_id)
        .order_by(RoleplayMessage.created_at)
    )
    messages = list(messages_result.scalars().all())
    if not messages:
        raise IntakeValidationError("No messages found in session")

    if subscriptions is not None:
        decision = await subscriptions.can_perform_action(
            session.organization_id, UsageAction.SCORE_ROLEPLAY
        )
        if not decision.allowed:
            raise AdmissionDeniedError(decision.reason or "Cannot score roleplay")

    transcript, transcript_json = build_roleplay_transcript(messages)
    analysis_result = await scorer.analyze(transcript, transcript_json)

    recommendations = augment_recommendations(analysis_result)
    analysis = RoleplayAnalysis(
        roleplay_session_id=session_id,
        **analysis_columns(analysis_result, recommendations),
    )
    db.add(analysis)
    await db.flush()

    session.overall_score = analysis_result.overall_score
    session.analysis_id = analysis.id
    session.status = RoleplayStatus.COMPLETED.value
    session.completed_at = utcnow()

    if subscriptions is not None:
        await subscriptions.increment_usage(session.organization_id, UsageMetric.ROLEPLAYS)
    await db.commit()

    logger.info(
        "Roleplay %s scored: overall=%.1f, messages=%d",
        session_id,
        analysis_result.overall_score,
        len(messages),
    )
    return analysis
