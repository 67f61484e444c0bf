"""Performance figures route."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from callcoach.app.routes.auth import get_current_user_dep
from callcoach.domain.models import User
from callcoach.domain.schemas import FiguresSummary
from callcoach.infra.database import get_db
from callcoach.services.errors import IntakeValidationError
from callcoach.services.figures_service import compute_figures

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/performance", tags=["performance"])


@router.get("/figures", response_model=FiguresSummary)
async def get_figures(
    month: Optional[str] = Query(None, description="Calendar month, YYYY-MM"),
    tz: Optional[str] = Query(None, description="IANA time zone for month boundaries"),
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    """Booked / showed / qualified / closed counts and revenue for one month."""
    try:
        return await compute_figures(db, user.id, month, tz_name=tz)
    except IntakeValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
