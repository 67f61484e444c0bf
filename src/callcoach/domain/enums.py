"""Domain enumerations for call analysis and performance figures.

All enums use the (str, Enum) pattern to ensure JSON serialization compatibility.
"""

from enum import Enum


class CallOrigin(str, Enum):
    """Which intake path produced a sales call record."""

    UPLOAD = "upload"
    TRANSCRIPT = "transcript"
    MANUAL = "manual"
    ROLEPLAY = "roleplay"


class CallStatus(str, Enum):
    """Lifecycle status of a sales call record."""

    ANALYZING = "analyzing"
    COMPLETED = "completed"
    FAILED = "failed"
    MANUAL = "manual"


class AnalysisIntent(str, Enum):
    """Whether a completed analysis may write business outcomes back to the call."""

    UPDATE_FIGURES = "update_figures"
    ANALYSIS_ONLY = "analysis_only"


class CallResult(str, Enum):
    """Business outcome of a sales call."""

    CLOSED = "closed"
    DEPOSIT = "deposit"
    FOLLOW_UP = "follow_up"
    NO_SHOW = "no_show"
    LOST = "lost"
    UNQUALIFIED = "unqualified"


# Outcomes that count as a sale in monthly figures
SALE_RESULTS: frozenset[str] = frozenset({CallResult.CLOSED.value, CallResult.DEPOSIT.value})


class RecommendationPriority(str, Enum):
    """Priority of a coaching recommendation."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RoleplayStatus(str, Enum):
    """Lifecycle status of a roleplay session."""

    IN_PROGRESS = "in_progress"
    ENDED = "ended"
    COMPLETED = "completed"


class RoleplayRole(str, Enum):
    """Who authored a roleplay message."""

    REP = "rep"
    PROSPECT = "prospect"


class SubscriptionMode(str, Enum):
    """Whether usage limits are enforced or bypassed (testing / internal use)."""

    ENFORCED = "enforced"
    BYPASSED = "bypassed"


class UsageAction(str, Enum):
    """Actions gated by admission control."""

    UPLOAD_CALL = "upload_call"
    LOG_MANUAL_CALL = "log_manual_call"
    SCORE_ROLEPLAY = "score_roleplay"


class UsageMetric(str, Enum):
    """Usage counters reported after a successful intake."""

    CALLS = "calls"
    MANUAL_CALLS = "manual_calls"
    ROLEPLAYS = "roleplays"


class PlanTier(str, Enum):
    """Subscription plan of an organization."""

    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"
