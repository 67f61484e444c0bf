"""FastAPI dependencies for intake, scoring and admission control.

Tests swap collaborators through ``app.dependency_overrides``.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from callcoach.app.config import get_settings
from callcoach.infra.database import get_db
from callcoach.services.analysis_orchestrator import (
    CallScheduler,
    ScoringEngine,
    schedule_call_analysis,
)
from callcoach.services.call_intake_service import CallIntakeService
from callcoach.services.subscription_service import SubscriptionService
from callcoach.services.transcript_extractor import TranscriptExtractor
from callcoach.services.transcription_service import DeepgramTranscriber


def get_subscription_service(db: AsyncSession = Depends(get_db)) -> SubscriptionService:
    return SubscriptionService(db, get_settings().subscription_mode)


def get_transcriber() -> DeepgramTranscriber:
    settings = get_settings()
    return DeepgramTranscriber(settings.deepgram_api_key, model=settings.deepgram_model)


def get_extractor() -> TranscriptExtractor:
    return TranscriptExtractor()


def get_call_scheduler() -> CallScheduler:
    return schedule_call_analysis


def get_scoring_engine() -> ScoringEngine:
    from callcoach.agents.call_scoring_agent import CallScoringAgent

    return CallScoringAgent()


def get_intake_service(
    db: AsyncSession = Depends(get_db),
    subscriptions: SubscriptionService = Depends(get_subscription_service),
    transcriber: DeepgramTranscriber = Depends(get_transcriber),
    extractor: TranscriptExtractor = Depends(get_extractor),
    scheduler: CallScheduler = Depends(get_call_scheduler),
) -> CallIntakeService:
    return CallIntakeService(
        db,
        subscriptions=subscriptions,
        transcriber=transcriber,
        extractor=extractor,
        scheduler=scheduler,
    )
