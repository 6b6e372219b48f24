"""Integration tests for the billing period reconciler.

The reconciler opens one session per subscription, so fixtures are committed
in their own sessions before each run.
"""
import asyncio
from datetime import datetime
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from entitlements.config import settings
from entitlements.holders import Holder
from entitlements.models.plan import PlanTier, Product
from entitlements.models.subscription import Subscription, SubscriptionStatus
from entitlements.models.usage_record import UsageArchive
from entitlements.services.entitlement_service import EntitlementService
from entitlements.services.subscription_service import SubscriptionService
from entitlements.services.usage_ledger import UsageLedger
from entitlements.workers import period_reconciler
from entitlements.workers.period_reconciler import (
    RECONCILER_JOB_TIMEOUT_SECONDS,
    WorkerSettings,
    reconcile_billing_periods,
)
from utils.factories import HolderFactory, catalog_plan

JAN_31 = datetime(2024, 1, 31, 10, 0)
FEB_29 = datetime(2024, 2, 29, 10, 0)
MAR_31 = datetime(2024, 3, 31, 10, 0)


async def subscribe_with_usage(
    session_factory: async_sessionmaker[AsyncSession],
    holder: Holder,
    tier: PlanTier = PlanTier.STANDARD,
    used: int = 3,
    cancel: bool = False,
) -> Subscription:
    """Subscribe a business holder on Jan 31 and record some candidate usage."""
    async with session_factory() as session:
        service = SubscriptionService(session)
        plan = await catalog_plan(session, Product.CORPORATE, tier)
        subscription = await service.create_subscription(holder, plan.id, now=JAN_31)
        await UsageLedger(session).increment_if_under_cap(
            holder, "candidates", subscription.current_period_start, subscription.current_period_end, used, cap=None
        )
        if cancel:
            await service.cancel_subscription(subscription.id)
        await session.commit()
        return subscription


async def load(session_factory: async_sessionmaker[AsyncSession], subscription_id) -> Subscription:
    async with session_factory() as session:
        return await session.get(Subscription, subscription_id)


@pytest.mark.asyncio
async def test_reconciler_advances_expired_period(session_factory, seeded_catalog) -> None:
    """Test that a Jan 31 subscription moves to [Feb 29, Mar 31) and its old usage is purged."""
    holder = HolderFactory.business()
    subscription = await subscribe_with_usage(session_factory, holder)

    summary = await reconcile_billing_periods(session_factory=session_factory, now=datetime(2024, 3, 1))

    assert summary["subscriptions_processed"] == 1
    assert summary["periods_advanced"] == 1
    assert summary["usage_records_deleted"] == 1
    assert summary["errors"] == 0

    reconciled = await load(session_factory, subscription.id)
    assert reconciled.status == SubscriptionStatus.ACTIVE
    assert reconciled.current_period_start == FEB_29
    assert reconciled.current_period_end == MAR_31
    assert reconciled.billing_anchor == JAN_31

    async with session_factory() as session:
        assert await UsageLedger(session).list_records(holder) == []


@pytest.mark.asyncio
async def test_reconciler_is_idempotent(session_factory, seeded_catalog) -> None:
    """Test that a second run at the same instant changes nothing."""
    subscription = await subscribe_with_usage(session_factory, HolderFactory.business())
    now = datetime(2024, 3, 1)

    await reconcile_billing_periods(session_factory=session_factory, now=now)
    after_first = await load(session_factory, subscription.id)

    summary = await reconcile_billing_periods(session_factory=session_factory, now=now)
    after_second = await load(session_factory, subscription.id)

    assert summary["subscriptions_processed"] == 0
    assert summary["periods_advanced"] == 0
    assert after_second.current_period_start == after_first.current_period_start
    assert after_second.current_period_end == after_first.current_period_end
    assert after_second.version == after_first.version


@pytest.mark.asyncio
async def test_reconciler_leaves_current_periods_alone(session_factory, seeded_catalog) -> None:
    holder = HolderFactory.business()
    subscription = await subscribe_with_usage(session_factory, holder)

    summary = await reconcile_billing_periods(session_factory=session_factory, now=datetime(2024, 2, 29, 9, 59))

    assert summary["subscriptions_processed"] == 0
    assert (await load(session_factory, subscription.id)).current_period_end == FEB_29
    async with session_factory() as session:
        assert await UsageLedger(session).get_count(holder, "candidates", JAN_31) == 3


@pytest.mark.asyncio
async def test_reconciler_catches_up_missed_periods(session_factory, seeded_catalog) -> None:
    subscription = await subscribe_with_usage(session_factory, HolderFactory.business())

    summary = await reconcile_billing_periods(session_factory=session_factory, now=datetime(2024, 6, 15))

    reconciled = await load(session_factory, subscription.id)
    assert summary["periods_advanced"] == 4
    assert reconciled.current_period_start == datetime(2024, 5, 31, 10, 0)
    assert reconciled.current_period_end == datetime(2024, 6, 30, 10, 0)


@pytest.mark.asyncio
async def test_scheduled_cancellation_wins_over_advance(session_factory, seeded_catalog) -> None:
    """Test that a subscription scheduled to cancel is canceled, not advanced, at period end."""
    holder = HolderFactory.business()
    subscription = await subscribe_with_usage(session_factory, holder, cancel=True)
    now = datetime(2024, 3, 1)

    summary = await reconcile_billing_periods(session_factory=session_factory, now=now)

    reconciled = await load(session_factory, subscription.id)
    assert summary["subscriptions_canceled"] == 1
    assert summary["periods_advanced"] == 0
    assert reconciled.status == SubscriptionStatus.CANCELED
    assert reconciled.cancel_at_period_end is False
    assert reconciled.canceled_at == now
    assert reconciled.current_period_end == FEB_29

    async with session_factory() as session:
        assert await UsageLedger(session).list_records(holder) == []
        assert await SubscriptionService(session).get_active_subscription(holder) is None


@pytest.mark.asyncio
async def test_failure_is_isolated_and_retried(session_factory, seeded_catalog) -> None:
    """Test that one broken subscription does not block the others and recovers on the next run."""
    healthy = await subscribe_with_usage(session_factory, HolderFactory.business())
    broken_holder = HolderFactory.business()
    broken = await subscribe_with_usage(session_factory, broken_holder)
    now = datetime(2024, 3, 1)

    async with session_factory() as session:
        row = await session.get(Subscription, broken.id)
        original_plan_id = row.plan_id
        row.plan_id = uuid4()
        await session.commit()

    summary = await reconcile_billing_periods(session_factory=session_factory, now=now)

    assert summary["errors"] == 1
    assert summary["subscriptions_processed"] == 1
    assert (await load(session_factory, healthy.id)).current_period_end == MAR_31
    assert (await load(session_factory, broken.id)).current_period_end == FEB_29
    async with session_factory() as session:
        # Rolled back: the broken subscription's usage is untouched
        assert await UsageLedger(session).get_count(broken_holder, "candidates", JAN_31) == 3

    async with session_factory() as session:
        row = await session.get(Subscription, broken.id)
        row.plan_id = original_plan_id
        await session.commit()

    retry = await reconcile_billing_periods(session_factory=session_factory, now=now)

    assert retry["errors"] == 0
    assert retry["subscriptions_processed"] == 1
    assert (await load(session_factory, broken.id)).current_period_end == MAR_31


@pytest.mark.asyncio
async def test_usage_archived_before_purge(session_factory, seeded_catalog, monkeypatch) -> None:
    monkeypatch.setattr(settings, "usage_archive_enabled", True)
    holder = HolderFactory.business()
    await subscribe_with_usage(session_factory, holder, used=7)

    await reconcile_billing_periods(session_factory=session_factory, now=datetime(2024, 3, 1))

    async with session_factory() as session:
        archived = (await session.execute(select(UsageArchive))).scalars().all()
    assert len(archived) == 1
    assert archived[0].holder_id == holder.id
    assert archived[0].used == 7
    assert archived[0].period_start == JAN_31
    assert archived[0].period_end == FEB_29


@pytest.mark.asyncio
async def test_usage_not_archived_by_default(session_factory, seeded_catalog, monkeypatch) -> None:
    monkeypatch.setattr(settings, "usage_archive_enabled", False)
    await subscribe_with_usage(session_factory, HolderFactory.business())

    await reconcile_billing_periods(session_factory=session_factory, now=datetime(2024, 3, 1))

    async with session_factory() as session:
        assert (await session.execute(select(UsageArchive))).scalars().all() == []


@pytest.mark.asyncio
async def test_overrun_is_flagged_and_run_completes(session_factory, seeded_catalog) -> None:
    """Test that exceeding the duration threshold only warns; every due subscription is still processed."""
    for _ in range(3):
        await subscribe_with_usage(session_factory, HolderFactory.business())

    summary = await reconcile_billing_periods(
        session_factory=session_factory, now=datetime(2024, 3, 1), max_duration_seconds=0
    )

    assert summary["overran"] is True
    assert summary["subscriptions_processed"] == 3


@pytest.mark.asyncio
async def test_plan_change_then_reconcile_uses_new_anchor(session_factory, seeded_catalog) -> None:
    holder = HolderFactory.business()
    subscription = await subscribe_with_usage(session_factory, holder, tier=PlanTier.FREE, used=1)

    async with session_factory() as session:
        premium = await catalog_plan(session, Product.CORPORATE, PlanTier.PREMIUM)
        await SubscriptionService(session).change_plan(subscription.id, premium.id, now=datetime(2024, 2, 10))
        await session.commit()

    summary = await reconcile_billing_periods(session_factory=session_factory, now=datetime(2024, 3, 1))
    assert summary["subscriptions_processed"] == 0

    await reconcile_billing_periods(session_factory=session_factory, now=datetime(2024, 3, 10))
    reconciled = await load(session_factory, subscription.id)
    assert reconciled.current_period_start == datetime(2024, 3, 10)
    assert reconciled.current_period_end == datetime(2024, 4, 10)


@pytest.mark.asyncio
async def test_usage_recorded_before_reconcile_survives_purge(session_factory, seeded_catalog) -> None:
    """Test that consumption in a period the reconciler has not reached yet is kept when it catches up."""
    holder = HolderFactory.business()
    subscription = await subscribe_with_usage(session_factory, holder)
    march = datetime(2024, 3, 5)

    async with session_factory() as session:
        result = await EntitlementService(session).try_consume(holder, "candidates", now=march)
        await session.commit()
    assert result.used == 1

    summary = await reconcile_billing_periods(session_factory=session_factory, now=march)

    assert summary["usage_records_deleted"] == 1
    assert (await load(session_factory, subscription.id)).current_period_start == FEB_29
    async with session_factory() as session:
        ledger = UsageLedger(session)
        assert await ledger.get_count(holder, "candidates", FEB_29) == 1
        assert await ledger.get_count(holder, "candidates", JAN_31) == 0


@pytest.mark.asyncio
async def test_overrun_is_flagged_while_an_update_is_blocked(session_factory, seeded_catalog, monkeypatch) -> None:
    """Test that the warning fires during a slow update, which still runs to completion."""
    await subscribe_with_usage(session_factory, HolderFactory.business())
    seen_during_update = []

    async def slow_reconcile(factory, subscription_id, now, summary):
        await asyncio.sleep(0.2)
        seen_during_update.append(summary["overran"])
        summary["subscriptions_processed"] += 1

    monkeypatch.setattr(period_reconciler, "_reconcile_subscription", slow_reconcile)

    summary = await reconcile_billing_periods(
        session_factory=session_factory, now=datetime(2024, 3, 1), max_duration_seconds=0.05
    )

    assert seen_during_update == [True]
    assert summary["subscriptions_processed"] == 1


def test_worker_does_not_cancel_slow_runs() -> None:
    cron_job = WorkerSettings.cron_jobs[0]

    assert WorkerSettings.job_timeout == RECONCILER_JOB_TIMEOUT_SECONDS
    assert cron_job.timeout_s == RECONCILER_JOB_TIMEOUT_SECONDS
    assert cron_job.timeout_s > settings.reconciler_max_duration_seconds
