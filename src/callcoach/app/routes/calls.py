"""Call intake routes: audio upload, transcript, manual entry, status polling."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from callcoach.app.config import get_settings
from callcoach.app.dependencies import get_intake_service
from callcoach.app.routes.auth import get_current_user_dep
from callcoach.domain.enums import CallStatus
from callcoach.domain.models import SalesCall, User
from callcoach.domain.schemas import CallAcceptedResponse, CallResponse, ManualCallCreate
from callcoach.infra.database import get_db
from callcoach.services.call_intake_service import (
    CallIntakeService,
    UploadedFile,
    resolve_organization_id,
)
from callcoach.services.errors import (
    AdmissionDeniedError,
    IntakeValidationError,
    OrganizationNotFoundError,
    TranscriptionError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/calls", tags=["calls"])


def _to_http(exc: Exception) -> HTTPException:
    """Map intake-time domain errors to HTTP errors."""
    if isinstance(exc, IntakeValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, AdmissionDeniedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.reason)
    if isinstance(exc, OrganizationNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No organization found")
    if isinstance(exc, TranscriptionError):
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Transcription failed: {exc}",
        )
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


_INTAKE_ERRORS = (
    IntakeValidationError,
    AdmissionDeniedError,
    OrganizationNotFoundError,
    TranscriptionError,
)


async def _read_upload(file: UploadFile) -> UploadedFile:
    return UploadedFile(
        file_name=file.filename or "upload",
        content_type=file.content_type,
        data=await file.read(),
    )


@router.post("/upload", response_model=CallAcceptedResponse)
async def upload_call(
    file: Optional[UploadFile] = File(None),
    metadata: Optional[str] = Form(None),
    user: User = Depends(get_current_user_dep),
    intake: CallIntakeService = Depends(get_intake_service),
):
    """Upload call audio. Transcribes now; analysis continues in the background."""
    settings = get_settings()
    if file is not None and file.size is not None and file.size > settings.max_audio_upload_bytes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"File too large. Maximum size is {settings.max_audio_upload_mb}MB",
        )

    upload = await _read_upload(file) if file is not None else None
    try:
        call = await intake.upload_audio(user, upload, metadata)
    except _INTAKE_ERRORS as exc:
        raise _to_http(exc) from exc

    return CallAcceptedResponse(
        call_id=call.id,
        status=CallStatus.ANALYZING.value,
        message="Call uploaded and transcribed. Analysis in progress...",
    )


@router.post("/transcript", status_code=status.HTTP_201_CREATED, response_model=CallAcceptedResponse)
async def create_call_from_transcript(
    request: Request,
    user: User = Depends(get_current_user_dep),
    intake: CallIntakeService = Depends(get_intake_service),
):
    """Create a call from pasted text (JSON) or a TXT / PDF / DOCX upload (multipart)."""
    content_type = request.headers.get("content-type", "")
    try:
        if "multipart/form-data" in content_type:
            form = await request.form()
            file = form.get("file")
            metadata = form.get("metadata")
            upload = await _read_upload(file) if hasattr(file, "read") else None
            call = await intake.create_from_document(
                user, upload, metadata if isinstance(metadata, str) else None
            )
        else:
            try:
                body = await request.json()
            except ValueError as exc:
                raise IntakeValidationError("Request body must be JSON or multipart/form-data") from exc
            if not isinstance(body, dict):
                raise IntakeValidationError("Request body must be a JSON object")
            call = await intake.create_from_text(
                user,
                body.get("transcript"),
                add_to_figures=body.get("addToFigures", True),
                file_name=body.get("fileName", "pasted-transcript.txt"),
            )
    except _INTAKE_ERRORS as exc:
        raise _to_http(exc) from exc

    return CallAcceptedResponse(
        call_id=call.id,
        status=CallStatus.ANALYZING.value,
        message="Transcript saved. Analysis in progress...",
    )


@router.post("/manual", status_code=status.HTTP_201_CREATED)
async def log_manual_call(
    data: ManualCallCreate,
    user: User = Depends(get_current_user_dep),
    intake: CallIntakeService = Depends(get_intake_service),
):
    """Log a call's outcome without a recording. Counts toward figures immediately."""
    try:
        call = await intake.log_manual(user, data)
    except _INTAKE_ERRORS as exc:
        raise _to_http(exc) from exc

    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content={"callId": call.id, "message": "Call logged successfully (figures updated)"},
    )


@router.get("/{call_id}", response_model=CallResponse)
async def get_call(
    call_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    """Poll a call's status; includes the analysis once completed."""
    try:
        organization_id = await resolve_organization_id(db, user)
    except OrganizationNotFoundError as exc:
        raise _to_http(exc) from exc

    result = await db.execute(
        select(SalesCall)
        .options(selectinload(SalesCall.analysis))
        .where(SalesCall.id == call_id, SalesCall.organization_id == organization_id)
    )
    call = result.scalar_one_or_none()
    if not call:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Call not found")
    return CallResponse.model_validate(call)
