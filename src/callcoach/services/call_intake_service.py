"""Call intake: audio upload, transcript (pasted or document) and manual entry.

Every path validates input, resolves the organization, checks admission
control, and creates exactly one ``SalesCall`` in one transaction. Audio and
transcript calls start at ``analyzing`` and are handed to the background
analyzer after commit; manual entries start (and stay) at ``manual``.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from callcoach.app.config import Settings, get_settings
from callcoach.domain.enums import (
    AnalysisIntent,
    CallOrigin,
    CallStatus,
    UsageAction,
    UsageMetric,
)
from callcoach.domain.models import SalesCall, User, UserOrganization
from callcoach.domain.schemas import ManualCallCreate, TranscriptJson
from callcoach.services.analysis_orchestrator import CallScheduler, schedule_call_analysis
from callcoach.services.errors import (
    AdmissionDeniedError,
    IntakeValidationError,
    OrganizationNotFoundError,
    UnsupportedFileTypeError,
)
from callcoach.services.subscription_service import SubscriptionService
from callcoach.services.transcript_extractor import (
    TranscriptExtractor,
    is_allowed_transcript_file,
)
from callcoach.services.transcript_normalizer import normalize
from callcoach.services.transcription_service import DeepgramTranscriber

logger = logging.getLogger(__name__)

ALLOWED_AUDIO_TYPES = {
    "audio/mpeg",
    "audio/mp3",
    "audio/wav",
    "audio/x-wav",
    "audio/m4a",
    "audio/x-m4a",
    "audio/mp4",
    "audio/webm",
}

DEFAULT_PASTED_FILE_NAME = "pasted-transcript.txt"
MANUAL_FILE_NAME = "manual"


@dataclass
class UploadedFile:
    """A file received from the client, already read into memory."""

    file_name: str
    content_type: Optional[str]
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


def parse_call_metadata(raw: Optional[str]) -> dict[str, Any]:
    """Parse the optional ``metadata`` form field; invalid JSON is ignored."""
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.debug("Ignoring invalid call metadata: %.100s", raw)
        return {}
    return parsed if isinstance(parsed, dict) else {}


def intent_for(add_to_figures: Any) -> AnalysisIntent:
    """``addToFigures`` defaults to true; only an explicit false means analysis only."""
    if add_to_figures is False:
        return AnalysisIntent.ANALYSIS_ONLY
    return AnalysisIntent.UPDATE_FIGURES


def parse_call_date(raw: Optional[str], tz_name: str) -> datetime:
    """Parse an ISO date/datetime into naive UTC; naive input is in *tz_name*."""
    if not raw:
        return datetime.now(timezone.utc).replace(tzinfo=None)
    try:
        parsed = datetime.fromisoformat(raw.strip())
    except ValueError as exc:
        raise IntakeValidationError("Invalid date") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=ZoneInfo(tz_name))
    return parsed.astimezone(timezone.utc).replace(tzinfo=None)


async def resolve_organization_id(db: AsyncSession, user: User) -> str:
    """The user's own organization, else their first membership."""
    if user.organization_id:
        return user.organization_id
    result = await db.execute(
        select(UserOrganization.organization_id)
        .where(UserOrganization.user_id == user.id)
        .order_by(UserOrganization.created_at)
        .limit(1)
    )
    organization_id = result.scalar_one_or_none()
    if not organization_id:
        raise OrganizationNotFoundError("No organization found")
    return organization_id


class CallIntakeService:
    """Creates sales call records from the three call intake paths."""

    def __init__(
        self,
        db: AsyncSession,
        subscriptions: SubscriptionService,
        transcriber: Optional[DeepgramTranscriber] = None,
        extractor: Optional[TranscriptExtractor] = None,
        scheduler: CallScheduler = schedule_call_analysis,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.subscriptions = subscriptions
        self.settings = settings or get_settings()
        self.transcriber = transcriber or DeepgramTranscriber(
            self.settings.deepgram_api_key, model=self.settings.deepgram_model
        )
        self.extractor = extractor or TranscriptExtractor()
        self.scheduler = scheduler

    # ------------------------------------------------------------------
    # Tenant + admission
    # ------------------------------------------------------------------

    async def resolve_organization_id(self, user: User) -> str:
        return await resolve_organization_id(self.db, user)

    async def _admit(self, organization_id: str, action: UsageAction, denied: str) -> None:
        decision = await self.subscriptions.can_perform_action(organization_id, action)
        if not decision.allowed:
            logger.info("Admission denied for org %s (%s): %s", organization_id, action.value, decision.reason)
            raise AdmissionDeniedError(decision.reason or denied)

    # ------------------------------------------------------------------
    # Intake paths
    # ------------------------------------------------------------------

    async def upload_audio(
        self,
        user: User,
        upload: Optional[UploadedFile],
        metadata: Optional[str] = None,
    ) -> SalesCall:
        """Transcribe uploaded audio, create the call, and schedule analysis.

        Type and size are checked before any paid work. A transcription
        failure propagates and no record is created.
        """
        if upload is None or not upload.data:
            raise IntakeValidationError("No file provided")
        if (upload.content_type or "").lower() not in ALLOWED_AUDIO_TYPES:
            raise UnsupportedFileTypeError("Invalid file type. Supported: MP3, WAV, M4A, WebM")
        if upload.size > self.settings.max_audio_upload_bytes:
            raise IntakeValidationError(
                f"File too large. Maximum size is {self.settings.max_audio_upload_mb}MB"
            )

        organization_id = await self.resolve_organization_id(user)
        await self._admit(organization_id, UsageAction.UPLOAD_CALL, "Cannot upload call")

        transcription = await self.transcriber.transcribe(
            upload.data, upload.file_name, upload.content_type or "audio/mpeg"
        )

        call_metadata = parse_call_metadata(metadata)
        return await self._create_analyzing_call(
            user=user,
            organization_id=organization_id,
            origin=CallOrigin.UPLOAD,
            file_name=upload.file_name,
            file_size=upload.size,
            transcript=transcription.transcript,
            transcript_json=transcription.transcript_json,
            duration=transcription.duration,
            intent=intent_for(call_metadata.get("addToFigures")),
            call_metadata=call_metadata,
        )

    async def create_from_text(
        self,
        user: User,
        transcript: Any,
        add_to_figures: Any = True,
        file_name: Any = DEFAULT_PASTED_FILE_NAME,
    ) -> SalesCall:
        """Create a call from pasted transcript text."""
        if not isinstance(transcript, str) or not transcript.strip():
            raise IntakeValidationError(
                "transcript (string) is required, or upload a .txt / .pdf / .docx file"
            )
        if not isinstance(file_name, str) or not file_name.strip():
            file_name = DEFAULT_PASTED_FILE_NAME

        organization_id = await self.resolve_organization_id(user)
        await self._admit(organization_id, UsageAction.UPLOAD_CALL, "Cannot add call")

        intent = intent_for(add_to_figures)
        return await self._create_from_transcript(
            user, organization_id, transcript, file_name, None, intent
        )

    async def create_from_document(
        self,
        user: User,
        upload: Optional[UploadedFile],
        metadata: Optional[str] = None,
    ) -> SalesCall:
        """Create a call from an uploaded TXT / PDF / DOCX transcript."""
        if upload is None or not upload.data:
            raise IntakeValidationError(
                "No file provided. Upload a .txt, .pdf, or .docx transcript file."
            )
        if not is_allowed_transcript_file(upload.file_name, upload.content_type):
            raise UnsupportedFileTypeError("Unsupported file type. Use .txt, .pdf, or .docx.")

        organization_id = await self.resolve_organization_id(user)
        await self._admit(organization_id, UsageAction.UPLOAD_CALL, "Cannot add call")

        try:
            text = await self.extractor.extract(upload.data, upload.file_name, upload.content_type)
        except IntakeValidationError:
            raise
        except Exception as exc:
            logger.warning("Text extraction failed for %s: %s", upload.file_name, exc)
            raise IntakeValidationError(
                str(exc) or "Failed to extract text from file"
            ) from exc
        if not text.strip():
            raise IntakeValidationError("File appears empty or no text could be extracted.")

        call_metadata = parse_call_metadata(metadata)
        intent = intent_for(call_metadata.get("addToFigures"))
        return await self._create_from_transcript(
            user, organization_id, text, upload.file_name, upload.size, intent
        )

    async def log_manual(self, user: User, data: ManualCallCreate) -> SalesCall:
        """Record a call's outcome without a transcript. Never analyzed."""
        result = (data.result or "").strip().lower()
        reason = (data.reason_for_outcome or "").strip()
        if not result or not reason:
            raise IntakeValidationError("Missing required fields: result, reasonForOutcome")
        call_date = parse_call_date(data.date, self.settings.figures_timezone)

        organization_id = await self.resolve_organization_id(user)
        await self._admit(organization_id, UsageAction.LOG_MANUAL_CALL, "Cannot log call")

        call = SalesCall(
            organization_id=organization_id,
            user_id=user.id,
            origin=CallOrigin.MANUAL.value,
            file_name=MANUAL_FILE_NAME,
            status=CallStatus.MANUAL.value,
            analysis_intent=AnalysisIntent.UPDATE_FIGURES.value,
            offer_id=data.offer_id or None,
            offer_type=data.offer_type or None,
            call_type=data.call_type or None,
            result=result,
            qualified=data.qualified,
            cash_collected=data.cash_collected,
            revenue_generated=data.revenue_generated,
            deposit_taken=data.deposit_taken,
            reason_for_outcome=reason,
            objections=data.objections,
            call_date=call_date,
        )
        self.db.add(call)
        await self.db.flush()
        await self.subscriptions.increment_usage(organization_id, UsageMetric.MANUAL_CALLS)
        await self.db.commit()

        logger.info("Manual call %s logged for user %s (result=%s)", call.id, user.id, result)
        return call

    # ------------------------------------------------------------------
    # Shared creation
    # ------------------------------------------------------------------

    async def _create_from_transcript(
        self,
        user: User,
        organization_id: str,
        text: str,
        file_name: str,
        file_size: Optional[int],
        intent: AnalysisIntent,
    ) -> SalesCall:
        trimmed = text.strip()
        return await self._create_analyzing_call(
            user=user,
            organization_id=organization_id,
            origin=CallOrigin.TRANSCRIPT,
            file_name=file_name,
            file_size=file_size,
            transcript=trimmed,
            transcript_json=normalize(trimmed),
            duration=None,
            intent=intent,
            call_metadata={"addToFigures": intent == AnalysisIntent.UPDATE_FIGURES},
        )

    async def _create_analyzing_call(
        self,
        *,
        user: User,
        organization_id: str,
        origin: CallOrigin,
        file_name: str,
        file_size: Optional[int],
        transcript: str,
        transcript_json: TranscriptJson,
        duration: Optional[float],
        intent: AnalysisIntent,
        call_metadata: dict[str, Any],
    ) -> SalesCall:
        transcript_payload = transcript_json.model_dump()
        call = SalesCall(
            organization_id=organization_id,
            user_id=user.id,
            origin=origin.value,
            file_name=file_name,
            file_size=file_size,
            transcript=transcript,
            transcript_json=transcript_payload,
            duration=duration,
            status=CallStatus.ANALYZING.value,
            analysis_intent=intent.value,
            call_metadata=call_metadata,
        )
        self.db.add(call)
        await self.db.flush()
        await self.subscriptions.increment_usage(organization_id, UsageMetric.CALLS)
        # Commit before scheduling: the analyzer reads the row in its own session
        await self.db.commit()

        logger.info(
            "Call %s created (origin=%s, intent=%s, utterances=%d)",
            call.id,
            origin.value,
            intent.value,
            len(transcript_json.utterances),
        )
        self.scheduler(call.id, transcript, transcript_payload)
        return call
