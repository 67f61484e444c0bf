"""Roleplay scoring route."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from callcoach.app.dependencies import get_scoring_engine, get_subscription_service
from callcoach.app.routes.auth import get_current_user_dep
from callcoach.domain.models import User
from callcoach.domain.schemas import CallAnalysisResponse, RoleplayScoreResponse
from callcoach.infra.database import get_db
from callcoach.services.analysis_orchestrator import ScoringEngine
from callcoach.services.errors import (
    CREDIT_EXHAUSTED_MESSAGE,
    AdmissionDeniedError,
    CreditExhaustedError,
    IntakeValidationError,
    ScoringEngineError,
)
from callcoach.services.roleplay_service import (
    RoleplayNotFoundError,
    RoleplayStateError,
    score_roleplay_session,
)
from callcoach.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/roleplay", tags=["roleplay"])


@router.post("/{session_id}/score", response_model=RoleplayScoreResponse)
async def score_roleplay(
    session_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
    scorer: ScoringEngine = Depends(get_scoring_engine),
    subscriptions: SubscriptionService = Depends(get_subscription_service),
):
    """Score a completed roleplay session with the call scoring engine."""
    try:
        analysis = await score_roleplay_session(
            db, session_id, user, scorer, subscriptions=subscriptions
        )
    except RoleplayNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RoleplayStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except IntakeValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except AdmissionDeniedError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.reason) from exc
    except CreditExhaustedError as exc:
        logger.error("Roleplay %s scoring refused, credit exhausted: %s", session_id, exc)
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail=CREDIT_EXHAUSTED_MESSAGE,
        ) from exc
    except ScoringEngineError as exc:
        logger.error("Roleplay %s scoring failed: %s", session_id, exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Analysis failed: {str(exc) or 'Unknown error'}",
        ) from exc

    return RoleplayScoreResponse(
        analysis=CallAnalysisResponse.model_validate(analysis),
        overall_score=analysis.overall_score,
        message="Roleplay scored successfully",
    )
