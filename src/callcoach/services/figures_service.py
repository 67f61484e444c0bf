"""Monthly performance figures: booked / showed / qualified / closed and revenue.

Eligible calls are ``manual`` or ``completed`` calls whose analysis intent is
``update_figures`` (or unset, for rows that predate the column). Calls still
``analyzing`` or ``failed`` never count, and neither does any ``analysis_only`` call.

Derivative calls (re-analyses, ``original_call_id`` set) are left out of the
booked / showed / qualified counts but still count toward sales and money.
"""

import logging
import math
import re
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import OperationalError, ProgrammingError
from sqlalchemy.ext.asyncio import AsyncSession

from callcoach.app.config import get_settings
from callcoach.domain.enums import SALE_RESULTS, AnalysisIntent, CallResult, CallStatus
from callcoach.domain.models import SalesCall
from callcoach.domain.schemas import FiguresSummary
from callcoach.services.errors import IntakeValidationError, SchemaDriftError

logger = logging.getLogger(__name__)

MONTH_PATTERN = re.compile(r"^\d{4}-\d{2}$")

_MISSING_COLUMN_MARKERS = (
    "no such column",
    "does not exist",
    "unknown column",
    "undefined column",
    "has no column",
)


# ---------------------------------------------------------------------------
# Month / time-zone helpers
# ---------------------------------------------------------------------------


def parse_month(value: Optional[str]) -> tuple[int, int]:
    """Parse ``YYYY-MM`` into (year, month)."""
    if not value or not MONTH_PATTERN.match(value):
        raise IntakeValidationError("Query parameter month=YYYY-MM is required")
    year, month = (int(part) for part in value.split("-"))
    if not 1 <= month <= 12:
        raise IntakeValidationError("Query parameter month=YYYY-MM is required")
    return year, month


def resolve_timezone(name: Optional[str]) -> ZoneInfo:
    try:
        return ZoneInfo(name or get_settings().figures_timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise IntakeValidationError(f"Unknown time zone: {name}") from exc


def month_bounds(year: int, month: int, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """First and last instant of the month in *tz*, as naive UTC (inclusive)."""
    start_local = datetime(year, month, 1, tzinfo=tz)
    if month == 12:
        next_local = datetime(year + 1, 1, 1, tzinfo=tz)
    else:
        next_local = datetime(year, month + 1, 1, tzinfo=tz)
    start = start_local.astimezone(timezone.utc).replace(tzinfo=None)
    end = next_local.astimezone(timezone.utc).replace(tzinfo=None) - timedelta(microseconds=1)
    return start, end


def _as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def attribution_date(call) -> datetime:
    """``call_date`` if set (backdated manual entries), else ``created_at``."""
    return _as_naive_utc(call.call_date or call.created_at)


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


def rate(numerator: float, denominator: float) -> float:
    """Percentage to one decimal, rounding half up on the scaled value; 0 if no base."""
    if not denominator or denominator <= 0:
        return 0
    return math.floor(numerator / denominator * 1000 + 0.5) / 10


def summarize(rows: Iterable, month: str) -> FiguresSummary:
    """Compute figures over eligible, in-month rows."""
    rows = list(rows)
    booked = [r for r in rows if not r.original_call_id]
    showed = [r for r in booked if r.result != CallResult.NO_SHOW.value]
    qualified = [r for r in showed if r.qualified is True]
    sales_made = sum(1 for r in rows if r.result in SALE_RESULTS)

    cash_collected = sum((r.cash_collected or 0) for r in rows)
    revenue_generated = sum((r.revenue_generated or 0) for r in rows)

    return FiguresSummary(
        month=month,
        calls_booked=len(booked),
        calls_showed=len(showed),
        calls_qualified=len(qualified),
        sales_made=sales_made,
        close_rate=rate(sales_made, len(showed)),
        show_rate=rate(len(showed), len(booked)),
        qualified_rate=rate(len(qualified), len(showed)),
        cash_collected=cash_collected,
        revenue_generated=revenue_generated,
        cash_collected_pct=rate(cash_collected, revenue_generated),
    )


def eligibility_clause():
    """SQL predicate selecting calls that count toward figures."""
    return and_(
        SalesCall.status.in_((CallStatus.MANUAL.value, CallStatus.COMPLETED.value)),
        or_(
            SalesCall.analysis_intent == AnalysisIntent.UPDATE_FIGURES.value,
            SalesCall.analysis_intent.is_(None),
        ),
    )


def _is_missing_column(exc: Exception) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in _MISSING_COLUMN_MARKERS)


async def _eligible_calls(db: AsyncSession, user_id: str) -> list[SalesCall]:
    try:
        result = await db.execute(
            select(SalesCall).where(SalesCall.user_id == user_id, eligibility_clause())
        )
    except (OperationalError, ProgrammingError) as exc:
        if _is_missing_column(exc):
            raise SchemaDriftError(str(exc)) from exc
        raise
    return list(result.scalars().all())


async def compute_figures(
    db: AsyncSession,
    user_id: str,
    year_month: str,
    tz_name: Optional[str] = None,
) -> FiguresSummary:
    """Figures for one rep and calendar month. Read-only and idempotent.

    A storage schema missing an expected column yields an all-zero summary
    instead of an error.
    """
    year, month = parse_month(year_month)
    tz = resolve_timezone(tz_name)
    start, end = month_bounds(year, month, tz)

    try:
        calls = await _eligible_calls(db, user_id)
    except SchemaDriftError as exc:
        logger.warning("Figures for %s fell back to zeros, schema drift: %s", year_month, exc)
        await db.rollback()
        return FiguresSummary(month=year_month)

    in_month = [c for c in calls if start <= attribution_date(c) <= end]
    summary = summarize(in_month, year_month)
    logger.debug(
        "Figures user=%s month=%s eligible=%d in_month=%d",
        user_id,
        year_month,
        len(calls),
        len(in_month),
    )
    return summary
