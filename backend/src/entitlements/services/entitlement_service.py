"""Entitlement resolver: effective entitlements and quota admission control."""
from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.config import settings
from entitlements.exceptions import FeatureNotInPlan, InvalidFeatureKind
from entitlements.holders import Holder
from entitlements.metrics import extra_allowance_granted_total, quota_consume_total
from entitlements.models.feature import EntitlementGrant, FeatureKind
from entitlements.models.plan import Plan
from entitlements.models.subscription import Subscription
from entitlements.models.usage_record import UsageRecord
from entitlements.schemas.entitlement import UNLIMITED, ConsumeResult, EffectiveEntitlement, Remaining
from entitlements.services.plan_catalog import PlanCatalog
from entitlements.services.subscription_service import SubscriptionService
from entitlements.services.usage_ledger import UsageLedger
from entitlements.utils.periods import next_period

logger = structlog.get_logger(__name__)

QUOTA_EXCEEDED = "QUOTA_EXCEEDED"


@dataclass
class ResolvedPlan:
    """The plan governing a holder right now, with the period usage is counted in."""

    plan: Plan
    subscription: Subscription | None
    period_start: datetime | None = None
    period_end: datetime | None = None


def current_period(subscription: Subscription, plan: Plan, now: datetime) -> tuple[datetime, datetime]:
    """
    The billing period containing ``now``.

    Between the end of a period and the next reconciler run the stored period
    is stale; usage then goes to the period the calendar says is current, the
    same one the reconciler will advance to. A subscription scheduled to
    cancel keeps its stored period until the reconciler cancels it.
    """
    if subscription.current_period_end > now or subscription.cancel_at_period_end:
        return subscription.current_period_start, subscription.current_period_end

    start, end, _ = next_period(subscription.billing_anchor, subscription.current_period_end, plan.interval, now)
    return start, end


def _limit(grant: EntitlementGrant, extra_allowance: int) -> int | None:
    return None if grant.monthly_cap is None else grant.monthly_cap + extra_allowance


def _remaining(limit: int | None, used: int) -> Remaining:
    return UNLIMITED if limit is None else max(limit - used, 0)


def _near_limit(limit: int | None, used: int) -> bool:
    return limit is not None and limit > 0 and used >= settings.near_limit_threshold * limit


class EntitlementService:
    """
    Answers "what can this holder do right now".

    Combines the active subscription's plan grants (or the default free plan
    of the holder's product when there is none) with current-period usage.
    """

    def __init__(self, db: AsyncSession):
        """Initialize entitlement service with database session."""
        self.db = db
        self.catalog = PlanCatalog(db)
        self.ledger = UsageLedger(db)
        self.subscriptions = SubscriptionService(db)

    async def resolve_plan(self, holder: Holder, now: datetime | None = None) -> ResolvedPlan:
        """
        Find the plan governing a holder without provisioning anything.

        Raises:
            PlanNotFound: If the subscription's plan or the default plan is missing
        """
        subscription = await self.subscriptions.get_active_subscription(holder)
        if subscription is None:
            return ResolvedPlan(plan=await self.catalog.get_default_plan(holder.default_product), subscription=None)

        plan = await self.catalog.require_plan(subscription.plan_id)
        period_start, period_end = current_period(subscription, plan, now or datetime.utcnow())
        return ResolvedPlan(plan=plan, subscription=subscription, period_start=period_start, period_end=period_end)

    async def resolve_entitlements(self, holder: Holder, now: datetime | None = None) -> list[EffectiveEntitlement]:
        """
        Compute effective entitlements, one entry per plan grant in grant order.

        Args:
            holder: Billing holder

        Returns:
            Effective entitlements for the holder's current period
        """
        resolved = await self.resolve_plan(holder, now)

        usage: dict[str, UsageRecord] = {}
        if resolved.subscription is not None:
            records = await self.ledger.list_records(holder, period_start=resolved.period_start)
            usage = {record.feature_key: record for record in records}

        return [self._effective(grant, usage.get(grant.feature_key)) for grant in resolved.plan.grants]

    def _effective(self, grant: EntitlementGrant, record: UsageRecord | None) -> EffectiveEntitlement:
        feature = grant.feature
        entitlement = EffectiveEntitlement(
            feature_key=grant.feature_key,
            feature_name=feature.name,
            kind=feature.kind,
            unit=feature.unit,
            enabled=True,
        )

        if feature.kind == FeatureKind.TOGGLE:
            entitlement.enabled = grant.enabled
        elif feature.kind == FeatureKind.QUOTA:
            used = record.used if record else 0
            limit = _limit(grant, record.extra_allowance if record else 0)
            remaining = _remaining(limit, used)
            entitlement.used = used
            entitlement.limit = limit
            entitlement.remaining = remaining
            entitlement.enabled = remaining == UNLIMITED or remaining > 0
            entitlement.near_limit = _near_limit(limit, used)

        return entitlement

    def _quota_grant(self, plan: Plan, feature_key: str) -> EntitlementGrant:
        grant = plan.grant_for(feature_key)
        if grant is None:
            raise FeatureNotInPlan(
                f"Feature {feature_key} is not part of plan {plan.name}", feature_key=feature_key, plan_id=str(plan.id)
            )
        if grant.kind != FeatureKind.QUOTA:
            raise InvalidFeatureKind(
                f"Feature {feature_key} is {grant.kind.value}, not QUOTA", feature_key=feature_key
            )
        return grant

    async def check_allowed(
        self, holder: Holder, feature_key: str, amount: int = 1, now: datetime | None = None
    ) -> ConsumeResult:
        """
        Read-only admission check: would ``try_consume`` allow this right now?

        Nothing is provisioned or incremented.
        """
        resolved = await self.resolve_plan(holder, now)
        grant = self._quota_grant(resolved.plan, feature_key)

        used, extra_allowance = 0, 0
        if resolved.subscription is not None:
            record = await self.ledger.get_record(holder, feature_key, resolved.period_start)
            if record is not None:
                used, extra_allowance = record.used, record.extra_allowance

        limit = _limit(grant, extra_allowance)
        allowed = limit is None or used + amount <= limit
        return ConsumeResult(
            allowed=allowed,
            feature_key=feature_key,
            remaining=_remaining(limit, used),
            used=used,
            limit=limit,
            reason=None if allowed else QUOTA_EXCEEDED,
        )

    async def try_consume(
        self, holder: Holder, feature_key: str, amount: int = 1, now: datetime | None = None
    ) -> ConsumeResult:
        """
        Admission control for a quota-gated action.

        Holders without a subscription are provisioned onto the free plan of
        their product first. The check and increment are one atomic ledger
        operation; a denial leaves the counter untouched.

        Args:
            holder: Billing holder
            feature_key: QUOTA feature key
            amount: Units to consume
            now: Request instant (defaults to the current UTC time)

        Returns:
            ConsumeResult with allowed=False and reason QUOTA_EXCEEDED when denied

        Raises:
            FeatureNotInPlan: If the plan does not grant the feature
            InvalidFeatureKind: If the feature is not QUOTA
        """
        if amount < 1:
            raise ValueError("amount must be at least 1")

        now = now or datetime.utcnow()
        subscription = await self.subscriptions.provision_default_subscription(holder, now=now)
        plan = await self.catalog.require_plan(subscription.plan_id)
        grant = self._quota_grant(plan, feature_key)
        period_start, period_end = current_period(subscription, plan, now)

        increment = await self.ledger.increment_if_under_cap(
            holder,
            feature_key,
            period_start,
            period_end,
            amount,
            grant.monthly_cap,
        )

        limit = _limit(grant, increment.extra_allowance)
        remaining = _remaining(limit, increment.new_count)

        if increment.allowed:
            quota_consume_total.labels(feature_key=feature_key, outcome="allowed").inc()
            logger.info(
                "usage_consumed",
                holder=str(holder),
                feature_key=feature_key,
                amount=amount,
                used=increment.new_count,
                remaining=remaining,
            )
        else:
            quota_consume_total.labels(feature_key=feature_key, outcome="denied").inc()
            logger.info(
                "usage_denied",
                holder=str(holder),
                feature_key=feature_key,
                amount=amount,
                used=increment.new_count,
                limit=limit,
            )

        return ConsumeResult(
            allowed=increment.allowed,
            feature_key=feature_key,
            remaining=remaining,
            used=increment.new_count,
            limit=limit,
            reason=None if increment.allowed else QUOTA_EXCEEDED,
        )

    async def grant_extra_allowance(
        self,
        holder: Holder,
        feature_key: str,
        amount: int,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> EffectiveEntitlement:
        """
        Add bonus quota for the holder's current period.

        Returns:
            The feature's effective entitlement after the grant
        """
        now = now or datetime.utcnow()
        subscription = await self.subscriptions.provision_default_subscription(holder, now=now)
        plan = await self.catalog.require_plan(subscription.plan_id)
        grant = self._quota_grant(plan, feature_key)
        period_start, period_end = current_period(subscription, plan, now)

        record = await self.ledger.add_extra_allowance(
            holder,
            feature_key,
            period_start,
            period_end,
            amount,
        )

        extra_allowance_granted_total.labels(feature_key=feature_key).inc(amount)
        logger.info(
            "extra_allowance_granted",
            holder=str(holder),
            feature_key=feature_key,
            amount=amount,
            extra_allowance=record.extra_allowance,
            reason=reason,
        )
        return self._effective(grant, record)
