"""Admission control: per-plan monthly usage limits.

Callers pass the subscription mode explicitly. In ``bypassed`` mode every
action is allowed and usage is not recorded.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from callcoach.domain.enums import PlanTier, SubscriptionMode, UsageAction, UsageMetric
from callcoach.domain.models import Organization, UsageCounter, utcnow

logger = logging.getLogger(__name__)

# Monthly allowance per plan and metric; None means unlimited
PLAN_LIMITS: dict[PlanTier, dict[UsageMetric, Optional[int]]] = {
    PlanTier.FREE: {
        UsageMetric.CALLS: 5,
        UsageMetric.MANUAL_CALLS: None,
        UsageMetric.ROLEPLAYS: 10,
    },
    PlanTier.PRO: {
        UsageMetric.CALLS: 100,
        UsageMetric.MANUAL_CALLS: None,
        UsageMetric.ROLEPLAYS: 200,
    },
    PlanTier.ENTERPRISE: {
        UsageMetric.CALLS: None,
        UsageMetric.MANUAL_CALLS: None,
        UsageMetric.ROLEPLAYS: None,
    },
}

ACTION_METRIC: dict[UsageAction, UsageMetric] = {
    UsageAction.UPLOAD_CALL: UsageMetric.CALLS,
    UsageAction.LOG_MANUAL_CALL: UsageMetric.MANUAL_CALLS,
    UsageAction.SCORE_ROLEPLAY: UsageMetric.ROLEPLAYS,
}


@dataclass
class AdmissionDecision:
    allowed: bool
    reason: Optional[str] = None


def current_period() -> str:
    return utcnow().strftime("%Y-%m")


class SubscriptionService:
    """Admission-control collaborator backed by the usage_counters table."""

    def __init__(self, db: AsyncSession, mode: SubscriptionMode | str = SubscriptionMode.ENFORCED):
        self.db = db
        self.mode = SubscriptionMode(mode)

    @property
    def bypassed(self) -> bool:
        return self.mode == SubscriptionMode.BYPASSED

    async def _usage(self, organization_id: str, metric: UsageMetric) -> Optional[UsageCounter]:
        result = await self.db.execute(
            select(UsageCounter).where(
                UsageCounter.organization_id == organization_id,
                UsageCounter.metric == metric.value,
                UsageCounter.period == current_period(),
            )
        )
        return result.scalar_one_or_none()

    async def can_perform_action(
        self, organization_id: str, action: UsageAction | str
    ) -> AdmissionDecision:
        """Check whether the organization has allowance left for *action* this month."""
        if self.bypassed:
            return AdmissionDecision(allowed=True)

        action = UsageAction(action)
        org = await self.db.get(Organization, organization_id)
        if org is None:
            return AdmissionDecision(allowed=False, reason="Organization not found")

        try:
            plan = PlanTier(org.plan or PlanTier.FREE.value)
        except ValueError:
            logger.warning("Unknown plan %r for org %s, treating as free", org.plan, organization_id)
            plan = PlanTier.FREE

        metric = ACTION_METRIC[action]
        limit = PLAN_LIMITS[plan][metric]
        if limit is None:
            return AdmissionDecision(allowed=True)

        counter = await self._usage(organization_id, metric)
        used = counter.count if counter else 0
        if used >= limit:
            return AdmissionDecision(
                allowed=False,
                reason=(
                    f"Monthly limit of {limit} {metric.value.replace('_', ' ')} reached "
                    f"on the {plan.value} plan. Upgrade to continue."
                ),
            )
        return AdmissionDecision(allowed=True)

    async def increment_usage(self, organization_id: str, metric: UsageMetric | str) -> None:
        """Record one unit of usage. Joins the caller's transaction (no commit)."""
        if self.bypassed:
            return

        metric = UsageMetric(metric)
        counter = await self._usage(organization_id, metric)
        if counter is None:
            counter = UsageCounter(
                organization_id=organization_id,
                metric=metric.value,
                period=current_period(),
                count=0,
            )
            self.db.add(counter)
        counter.count = (counter.count or 0) + 1
        await self.db.flush()
