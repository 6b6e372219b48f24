"""Subscription service for lifecycle business logic."""
from datetime import datetime
from uuid import UUID

import structlog
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from entitlements.exceptions import (
    ConcurrentModification,
    InvalidStateTransition,
    PlanNotFound,
    SubscriptionAlreadyActive,
    SubscriptionNotFound,
)
from entitlements.holders import Holder
from entitlements.metrics import subscriptions_canceled_total, subscriptions_created_total
from entitlements.models.plan import Plan
from entitlements.models.subscription import HolderKind, Subscription, SubscriptionStatus, SubscriptionHistory
from entitlements.services.plan_catalog import PlanCatalog
from entitlements.utils.periods import add_interval, next_period

logger = structlog.get_logger(__name__)


class SubscriptionService:
    """Service layer for subscription operations."""

    def __init__(self, db: AsyncSession):
        """Initialize subscription service with database session."""
        self.db = db
        self.catalog = PlanCatalog(db)

    async def create_subscription(self, holder: Holder, plan_id: UUID, now: datetime | None = None) -> Subscription:
        """
        Create a new subscription starting a fresh period now.

        Args:
            holder: Billing holder
            plan_id: Plan to subscribe to
            now: Start instant (defaults to the current UTC time)

        Returns:
            Created subscription

        Raises:
            SubscriptionAlreadyActive: If the holder already has an active subscription
            PlanNotFound: If the plan does not exist or is inactive
        """
        if await self.get_active_subscription(holder):
            raise SubscriptionAlreadyActive(
                f"Holder {holder} already has an active subscription", holder=str(holder)
            )

        plan = await self.catalog.require_plan(plan_id)
        if not plan.active:
            raise PlanNotFound(f"Plan {plan_id} is inactive", plan_id=str(plan_id))

        subscription = await self._insert_subscription(holder, plan, now or datetime.utcnow())
        if subscription is None:
            raise SubscriptionAlreadyActive(
                f"Holder {holder} already has an active subscription", holder=str(holder)
            )

        await self._create_history(subscription.id, "subscription_created", None, str(plan.id))
        await self.db.flush()
        subscriptions_created_total.labels(source="explicit").inc()

        logger.info(
            "subscription_created",
            subscription_id=str(subscription.id),
            holder=str(holder),
            plan=plan.name,
        )
        return subscription

    async def provision_default_subscription(self, holder: Holder, now: datetime | None = None) -> Subscription:
        """
        Subscribe a holder to the free monthly plan of its default product.

        Safe under concurrency: if another request provisions first, the
        winner's subscription is returned.

        Raises:
            PlanNotFound: If the catalog has no free plan for the holder's product
        """
        existing = await self.get_active_subscription(holder)
        if existing:
            return existing

        plan = await self.catalog.get_default_plan(holder.default_product)
        subscription = await self._insert_subscription(holder, plan, now or datetime.utcnow())

        if subscription is None:
            winner = await self.get_active_subscription(holder)
            if winner is None:
                raise ConcurrentModification(f"Could not provision a subscription for {holder}", holder=str(holder))
            return winner

        await self._create_history(subscription.id, "subscription_provisioned", None, str(plan.id))
        await self.db.flush()
        subscriptions_created_total.labels(source="provisioned").inc()

        logger.info(
            "subscription_provisioned",
            subscription_id=str(subscription.id),
            holder=str(holder),
            plan=plan.name,
        )
        return subscription

    async def _insert_subscription(self, holder: Holder, plan: Plan, now: datetime) -> Subscription | None:
        """Insert an active subscription; None if the one-active-per-holder index rejects it."""
        subscription = Subscription(
            holder_type=holder.kind,
            holder_id=holder.id,
            plan_id=plan.id,
            status=SubscriptionStatus.ACTIVE,
            cancel_at_period_end=False,
            current_period_start=now,
            current_period_end=add_interval(now, plan.interval),
            billing_anchor=now,
        )

        try:
            async with self.db.begin_nested():
                self.db.add(subscription)
                await self.db.flush()
        except IntegrityError:
            logger.info("subscription_insert_conflict", holder=str(holder))
            return None

        return subscription

    async def get_subscription(self, subscription_id: UUID) -> Subscription | None:
        """
        Get subscription by ID.

        Args:
            subscription_id: Subscription UUID

        Returns:
            Subscription or None if not found
        """
        result = await self.db.execute(select(Subscription).where(Subscription.id == subscription_id))
        return result.scalar_one_or_none()

    async def require_subscription(self, subscription_id: UUID, for_update: bool = False) -> Subscription:
        """Get subscription by ID (optionally row-locked) or raise SubscriptionNotFound."""
        query = select(Subscription).where(Subscription.id == subscription_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)

        result = await self.db.execute(query)
        subscription = result.scalar_one_or_none()
        if not subscription:
            raise SubscriptionNotFound(
                f"Subscription {subscription_id} not found", subscription_id=str(subscription_id)
            )
        return subscription

    async def get_active_subscription(self, holder: Holder) -> Subscription | None:
        """Get the holder's active subscription, if any."""
        result = await self.db.execute(
            select(Subscription).where(
                Subscription.holder_type == holder.kind,
                Subscription.holder_id == holder.id,
                Subscription.status == SubscriptionStatus.ACTIVE,
            )
        )
        return result.scalar_one_or_none()

    async def list_subscriptions(
        self,
        holder_type: HolderKind | None = None,
        holder_id: UUID | None = None,
        status: SubscriptionStatus | None = None,
        page: int = 1,
        page_size: int = 100,
    ) -> tuple[list[Subscription], int]:
        """
        List subscriptions with optional filters and pagination.

        Returns:
            Tuple of (subscriptions, total_count)
        """
        query = select(Subscription)

        if holder_type is not None:
            query = query.where(Subscription.holder_type == holder_type)
        if holder_id is not None:
            query = query.where(Subscription.holder_id == holder_id)
        if status is not None:
            query = query.where(Subscription.status == status)

        count_query = select(func.count()).select_from(query.subquery())
        total = await self.db.scalar(count_query)

        query = query.order_by(Subscription.created_at.desc())
        query = query.offset((page - 1) * page_size).limit(page_size)

        result = await self.db.execute(query)
        return list(result.scalars().all()), total or 0

    async def change_plan(
        self, subscription_id: UUID, new_plan_id: UUID, now: datetime | None = None
    ) -> Subscription:
        """
        Swap the plan immediately and start a new period now.

        The row is locked for the duration of the transaction and the write is
        guarded by the optimistic version counter, so a plan change and a
        concurrent period advance cannot overwrite each other.

        Raises:
            SubscriptionNotFound: If the subscription does not exist
            InvalidStateTransition: If the subscription is canceled or already on the plan
            PlanNotFound: If the new plan does not exist or is inactive
            ConcurrentModification: If the row changed concurrently
        """
        subscription = await self.require_subscription(subscription_id, for_update=True)

        if subscription.status != SubscriptionStatus.ACTIVE:
            raise InvalidStateTransition(
                f"Cannot change plan of a {subscription.status.value} subscription",
                subscription_id=str(subscription_id),
            )
        if subscription.plan_id == new_plan_id:
            raise InvalidStateTransition(
                f"Subscription {subscription_id} is already on plan {new_plan_id}",
                subscription_id=str(subscription_id),
            )

        new_plan = await self.catalog.require_plan(new_plan_id)
        if not new_plan.active:
            raise PlanNotFound(f"Plan {new_plan_id} is inactive", plan_id=str(new_plan_id))

        old_plan = await self.catalog.get_plan(subscription.plan_id)
        direction = "change"
        if old_plan is not None:
            if new_plan.tier.rank > old_plan.tier.rank:
                direction = "upgrade"
            elif new_plan.tier.rank < old_plan.tier.rank:
                direction = "downgrade"

        now = now or datetime.utcnow()
        old_plan_id = subscription.plan_id
        subscription.plan_id = new_plan.id
        subscription.current_period_start = now
        subscription.current_period_end = add_interval(now, new_plan.interval)
        subscription.billing_anchor = now
        subscription.cancel_at_period_end = False

        await self._create_history(subscription.id, "plan_changed", str(old_plan_id), str(new_plan.id), reason=direction)
        await self._flush_versioned(subscription)

        logger.info(
            "subscription_plan_changed",
            subscription_id=str(subscription.id),
            old_plan_id=str(old_plan_id),
            new_plan_id=str(new_plan.id),
            direction=direction,
        )
        return subscription

    async def cancel_subscription(self, subscription_id: UUID, immediate: bool = False) -> Subscription:
        """
        Cancel subscription.

        Args:
            subscription_id: Subscription UUID
            immediate: Cancel immediately or at period end

        Returns:
            Updated subscription

        Raises:
            SubscriptionNotFound: If subscription not found
            InvalidStateTransition: If subscription is already canceled
        """
        subscription = await self.require_subscription(subscription_id, for_update=True)

        if subscription.status == SubscriptionStatus.CANCELED:
            raise InvalidStateTransition(
                f"Subscription {subscription_id} is already canceled", subscription_id=str(subscription_id)
            )

        if immediate:
            await self.finalize_cancellation(subscription, datetime.utcnow(), reason="immediate")
        else:
            subscription.cancel_at_period_end = True
            await self._create_history(
                subscription.id,
                "cancellation_scheduled",
                None,
                subscription.current_period_end.isoformat(),
            )

        await self._flush_versioned(subscription)
        return subscription

    async def reactivate_subscription(self, subscription_id: UUID) -> Subscription:
        """
        Remove a scheduled cancellation (before period end).

        Raises:
            SubscriptionNotFound: If subscription not found
            InvalidStateTransition: If canceled or not scheduled for cancellation
        """
        subscription = await self.require_subscription(subscription_id, for_update=True)

        if subscription.status == SubscriptionStatus.CANCELED:
            raise InvalidStateTransition("Cannot reactivate a canceled subscription", subscription_id=str(subscription_id))

        if not subscription.cancel_at_period_end:
            raise InvalidStateTransition(
                "Subscription is not scheduled for cancellation", subscription_id=str(subscription_id)
            )

        subscription.cancel_at_period_end = False
        await self._create_history(subscription.id, "cancellation_removed", None, None)
        await self._flush_versioned(subscription)
        return subscription

    async def advance_period(self, subscription: Subscription, plan: Plan, now: datetime) -> int:
        """
        Move an expired subscription to the period containing ``now``.

        Args:
            subscription: Active subscription whose period ended
            plan: The subscription's plan (for its interval)
            now: Reconciliation instant

        Returns:
            Number of intervals advanced (more than one after missed runs)
        """
        old_end = subscription.current_period_end
        new_start, new_end, advanced = next_period(subscription.billing_anchor, old_end, plan.interval, now)

        subscription.current_period_start = new_start
        subscription.current_period_end = new_end

        await self._create_history(
            subscription.id,
            "period_advanced",
            old_end.isoformat(),
            new_end.isoformat(),
            reason=f"{advanced} interval(s)",
        )
        return advanced

    async def finalize_cancellation(self, subscription: Subscription, now: datetime, reason: str | None = None) -> None:
        """Transition an active subscription to canceled; the period is left untouched."""
        old_status = subscription.status
        subscription.status = SubscriptionStatus.CANCELED
        subscription.cancel_at_period_end = False
        subscription.canceled_at = now

        await self._create_history(
            subscription.id,
            "canceled",
            old_status.value,
            SubscriptionStatus.CANCELED.value,
            reason=reason,
        )
        subscriptions_canceled_total.labels(reason=reason or "period_end").inc()

    async def _flush_versioned(self, subscription: Subscription) -> None:
        try:
            await self.db.flush()
        except StaleDataError as e:
            raise ConcurrentModification(
                f"Subscription {subscription.id} was modified concurrently", subscription_id=str(subscription.id)
            ) from e
        await self.db.refresh(subscription)

    async def _create_history(
        self,
        subscription_id: UUID,
        event_type: str,
        old_value: str | None,
        new_value: str | None,
        reason: str | None = None,
    ) -> None:
        """
        Create subscription history record.

        Args:
            subscription_id: Subscription UUID
            event_type: Type of event
            old_value: Old value
            new_value: New value
            reason: Optional reason for change
        """
        history = SubscriptionHistory(
            subscription_id=subscription_id,
            event_type=event_type,
            old_value=old_value,
            new_value=new_value,
            reason=reason,
        )
        self.db.add(history)
