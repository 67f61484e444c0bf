"""SQLAlchemy ORM models for call analysis and performance figures.

All models use SQLite-compatible types:
- String(36) for UUID primary keys
- JSON for structured data (no JSONB)
- DateTime for timestamps, stored as naive UTC
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from callcoach.infra.database import Base


def utcnow() -> datetime:
    """Current time as naive UTC, matching how DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ---------------------------------------------------------------------------
# Tenancy
# ---------------------------------------------------------------------------


class Organization(Base):
    """Sales organization that owns every call logged under it."""

    __tablename__ = "organizations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)
    plan = Column(String(20), nullable=False, default="free")  # free, pro, enterprise
    created_at = Column(DateTime, default=func.now())

    members = relationship("UserOrganization", back_populates="organization")


class User(Base):
    """Sales rep or manager. Attributed as creator of calls, not their owner."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())


class UserOrganization(Base):
    """Membership of a user in an organization."""

    __tablename__ = "user_organizations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=False)
    role = Column(String(20), default="member")  # owner, admin, member
    created_at = Column(DateTime, default=func.now())

    organization = relationship("Organization", back_populates="members")


# ---------------------------------------------------------------------------
# Calls
# ---------------------------------------------------------------------------


class SalesCall(Base):
    """One sales call (uploaded audio, transcript, or manual log entry)."""

    __tablename__ = "sales_calls"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    origin = Column(String(20), nullable=False)  # upload, transcript, manual, roleplay

    # Content
    file_name = Column(String(500), nullable=False)
    file_size = Column(Integer, nullable=True)
    transcript = Column(Text, nullable=True)
    transcript_json = Column(JSON, nullable=True)  # {"utterances": [...]}
    duration = Column(Float, nullable=True)  # seconds
    call_metadata = Column(JSON, nullable=True)

    # Immutable after creation; NULL on legacy rows counts as update_figures
    analysis_intent = Column(String(20), nullable=True)

    # Outcome
    offer_id = Column(String(36), nullable=True)
    offer_type = Column(String(50), nullable=True)
    call_type = Column(String(50), nullable=True)
    result = Column(String(20), nullable=True)  # closed, deposit, follow_up, no_show, lost, unqualified
    qualified = Column(Boolean, nullable=True)
    cash_collected = Column(Float, nullable=True)
    revenue_generated = Column(Float, nullable=True)
    deposit_taken = Column(Boolean, nullable=True)
    reason_for_outcome = Column(Text, nullable=True)
    objections = Column(JSON, nullable=True)
    call_date = Column(DateTime, nullable=True)  # attribution date; falls back to created_at

    # Lifecycle
    status = Column(String(20), nullable=False, default="analyzing", index=True)
    original_call_id = Column(String(36), ForeignKey("sales_calls.id"), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    analysis = relationship("CallAnalysis", back_populates="call", uselist=False)


class CallAnalysis(Base):
    """Scoring-engine output for a sales call. At most one per call."""

    __tablename__ = "call_analyses"
    __table_args__ = (UniqueConstraint("call_id", name="uq_call_analyses_call_id"),)

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    call_id = Column(String(36), ForeignKey("sales_calls.id"), nullable=False)
    overall_score = Column(Float, nullable=False)
    value_score = Column(Float)
    trust_score = Column(Float)
    fit_score = Column(Float)
    logistics_score = Column(Float)
    value_details = Column(JSON)
    trust_details = Column(JSON)
    fit_details = Column(JSON)
    logistics_details = Column(JSON)
    skill_scores = Column(JSON, default=dict)
    coaching_recommendations = Column(JSON, default=list)
    timestamped_feedback = Column(JSON, default=list)
    prospect_difficulty = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    call = relationship("SalesCall", back_populates="analysis")


# ---------------------------------------------------------------------------
# Roleplay
# ---------------------------------------------------------------------------


class RoleplaySession(Base):
    """A practice conversation between a rep and a simulated prospect."""

    __tablename__ = "roleplay_sessions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    offer_id = Column(String(36), nullable=True)
    status = Column(String(20), nullable=False, default="in_progress")  # in_progress, ended, completed
    overall_score = Column(Float, nullable=True)
    analysis_id = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    ended_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    messages = relationship(
        "RoleplayMessage",
        back_populates="session",
        order_by="RoleplayMessage.created_at",
    )


class RoleplayMessage(Base):
    """One turn of a roleplay conversation."""

    __tablename__ = "roleplay_messages"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    session_id = Column(String(36), ForeignKey("roleplay_sessions.id"), nullable=False, index=True)
    role = Column(String(20), nullable=False)  # rep, prospect
    content = Column(Text, nullable=False)
    timestamp = Column(Integer, nullable=True)  # ms since session start
    created_at = Column(DateTime, default=utcnow)

    session = relationship("RoleplaySession", back_populates="messages")


class RoleplayAnalysis(Base):
    """Scoring-engine output for a roleplay session."""

    __tablename__ = "roleplay_analyses"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    roleplay_session_id = Column(String(36), ForeignKey("roleplay_sessions.id"), nullable=False, index=True)
    overall_score = Column(Float, nullable=False)
    value_score = Column(Float)
    trust_score = Column(Float)
    fit_score = Column(Float)
    logistics_score = Column(Float)
    value_details = Column(JSON)
    trust_details = Column(JSON)
    fit_details = Column(JSON)
    logistics_details = Column(JSON)
    skill_scores = Column(JSON, default=dict)
    coaching_recommendations = Column(JSON, default=list)
    timestamped_feedback = Column(JSON, default=list)
    prospect_difficulty = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)


# ---------------------------------------------------------------------------
# Usage / observability
# ---------------------------------------------------------------------------


class UsageCounter(Base):
    """Monthly usage count per organization and metric."""

    __tablename__ = "usage_counters"
    __table_args__ = (
        UniqueConstraint("organization_id", "metric", "period", name="uq_usage_org_metric_period"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    metric = Column(String(30), nullable=False)  # calls, manual_calls, roleplays
    period = Column(String(7), nullable=False)  # YYYY-MM
    count = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class AgentLog(Base):
    """Activity log for AI agent calls (latency, tokens)."""

    __tablename__ = "agent_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    agent_name = Column(String(100), nullable=False)
    action = Column(String(100), nullable=False)
    input_summary = Column(Text)
    output_summary = Column(Text)
    tokens_used = Column(Integer, default=0)
    latency_ms = Column(Integer, default=0)
    related_call_id = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=utcnow)
