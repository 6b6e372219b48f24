"""Integration tests for subscription lifecycle."""
import asyncio
from datetime import datetime
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from entitlements.exceptions import (
    InvalidStateTransition,
    PlanNotFound,
    SubscriptionAlreadyActive,
    SubscriptionNotFound,
)
from entitlements.models.plan import PlanInterval, PlanTier, Product
from entitlements.models.subscription import HolderKind, SubscriptionHistory, SubscriptionStatus
from entitlements.services.subscription_service import SubscriptionService
from utils.factories import HolderFactory, catalog_plan


async def history_events(db: AsyncSession, subscription_id) -> list[SubscriptionHistory]:
    result = await db.execute(
        select(SubscriptionHistory)
        .where(SubscriptionHistory.subscription_id == subscription_id)
        .order_by(SubscriptionHistory.created_at)
    )
    return list(result.scalars().all())


@pytest.mark.asyncio
async def test_create_subscription_starts_period_now(db_session: AsyncSession, seeded_catalog) -> None:
    """Test that a new subscription's period and anchor start at creation."""
    plan = await catalog_plan(db_session, Product.RECRUITER, PlanTier.STANDARD)
    holder = HolderFactory.organization()
    now = datetime(2024, 1, 31, 12, 0)

    subscription = await SubscriptionService(db_session).create_subscription(holder, plan.id, now=now)

    assert subscription.id is not None
    assert subscription.holder_type == HolderKind.ORGANIZATION
    assert subscription.holder_id == holder.id
    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.cancel_at_period_end is False
    assert subscription.current_period_start == now
    assert subscription.billing_anchor == now
    assert subscription.current_period_end == datetime(2024, 2, 29, 12, 0)


@pytest.mark.asyncio
async def test_annual_subscription_period(db_session: AsyncSession, seeded_catalog) -> None:
    plan = await catalog_plan(db_session, Product.INDIVIDUAL, PlanTier.PREMIUM, PlanInterval.ANNUAL)

    subscription = await SubscriptionService(db_session).create_subscription(
        HolderFactory.individual(), plan.id, now=datetime(2024, 2, 29)
    )

    assert subscription.current_period_end == datetime(2025, 2, 28)


@pytest.mark.asyncio
async def test_second_active_subscription_is_rejected(db_session: AsyncSession, seeded_catalog) -> None:
    """Test that a holder cannot hold two active subscriptions."""
    service = SubscriptionService(db_session)
    holder = HolderFactory.business()
    standard = await catalog_plan(db_session, Product.CORPORATE, PlanTier.STANDARD)
    premium = await catalog_plan(db_session, Product.CORPORATE, PlanTier.PREMIUM)

    await service.create_subscription(holder, standard.id)

    with pytest.raises(SubscriptionAlreadyActive):
        await service.create_subscription(holder, premium.id)


@pytest.mark.asyncio
async def test_create_with_unknown_plan(db_session: AsyncSession, seeded_catalog) -> None:
    with pytest.raises(PlanNotFound):
        await SubscriptionService(db_session).create_subscription(HolderFactory.individual(), uuid4())


@pytest.mark.asyncio
async def test_provisioning_is_idempotent(db_session: AsyncSession, seeded_catalog) -> None:
    service = SubscriptionService(db_session)
    holder = HolderFactory.individual()

    first = await service.provision_default_subscription(holder)
    second = await service.provision_default_subscription(holder)

    assert first.id == second.id
    plan = await service.catalog.require_plan(first.plan_id)
    assert (plan.product, plan.tier, plan.interval) == (Product.INDIVIDUAL, PlanTier.FREE, PlanInterval.MONTHLY)
    assert [event.event_type for event in await history_events(db_session, first.id)] == [
        "subscription_provisioned"
    ]


@pytest.mark.asyncio
async def test_concurrent_provisioning_creates_one_subscription(
    session_factory: async_sessionmaker[AsyncSession], seeded_catalog
) -> None:
    """Test that racing first requests of one holder all end up on the same subscription."""
    holder = HolderFactory.organization()

    async def provision():
        async with session_factory() as session:
            subscription = await SubscriptionService(session).provision_default_subscription(holder)
            await session.commit()
            return subscription.id

    ids = await asyncio.gather(*(provision() for _ in range(4)))

    assert len(set(ids)) == 1
    async with session_factory() as session:
        subscriptions, total = await SubscriptionService(session).list_subscriptions(
            holder_type=holder.kind, holder_id=holder.id
        )
    assert total == 1


@pytest.mark.asyncio
async def test_change_plan_starts_new_period(db_session: AsyncSession, seeded_catalog) -> None:
    """Test that a plan change re-anchors the billing period at the change instant."""
    service = SubscriptionService(db_session)
    holder = HolderFactory.organization()
    free = await catalog_plan(db_session, Product.RECRUITER, PlanTier.FREE)
    premium = await catalog_plan(db_session, Product.RECRUITER, PlanTier.PREMIUM)

    subscription = await service.create_subscription(holder, free.id, now=datetime(2024, 3, 1))
    await service.cancel_subscription(subscription.id)

    changed = await service.change_plan(subscription.id, premium.id, now=datetime(2024, 3, 17, 8, 0))

    assert changed.plan_id == premium.id
    assert changed.current_period_start == datetime(2024, 3, 17, 8, 0)
    assert changed.current_period_end == datetime(2024, 4, 17, 8, 0)
    assert changed.billing_anchor == datetime(2024, 3, 17, 8, 0)
    assert changed.cancel_at_period_end is False

    events = await history_events(db_session, subscription.id)
    plan_change = [event for event in events if event.event_type == "plan_changed"]
    assert len(plan_change) == 1
    assert plan_change[0].old_value == str(free.id)
    assert plan_change[0].new_value == str(premium.id)
    assert plan_change[0].reason == "upgrade"


@pytest.mark.asyncio
async def test_downgrade_is_recorded(db_session: AsyncSession, seeded_catalog) -> None:
    service = SubscriptionService(db_session)
    premium = await catalog_plan(db_session, Product.CORPORATE, PlanTier.PREMIUM)
    standard = await catalog_plan(db_session, Product.CORPORATE, PlanTier.STANDARD)
    subscription = await service.create_subscription(HolderFactory.business(), premium.id)

    await service.change_plan(subscription.id, standard.id)

    events = await history_events(db_session, subscription.id)
    assert [event.reason for event in events if event.event_type == "plan_changed"] == ["downgrade"]


@pytest.mark.asyncio
async def test_change_to_same_plan_is_rejected(db_session: AsyncSession, seeded_catalog) -> None:
    service = SubscriptionService(db_session)
    plan = await catalog_plan(db_session, Product.RECRUITER, PlanTier.STANDARD)
    subscription = await service.create_subscription(HolderFactory.organization(), plan.id)

    with pytest.raises(InvalidStateTransition):
        await service.change_plan(subscription.id, plan.id)


@pytest.mark.asyncio
async def test_scheduled_cancellation_keeps_subscription_active(db_session: AsyncSession, seeded_catalog) -> None:
    service = SubscriptionService(db_session)
    plan = await catalog_plan(db_session, Product.INDIVIDUAL, PlanTier.STANDARD)
    subscription = await service.create_subscription(HolderFactory.individual(), plan.id)

    canceled = await service.cancel_subscription(subscription.id)

    assert canceled.status == SubscriptionStatus.ACTIVE
    assert canceled.cancel_at_period_end is True
    assert canceled.canceled_at is None


@pytest.mark.asyncio
async def test_immediate_cancellation_frees_the_holder(db_session: AsyncSession, seeded_catalog) -> None:
    """Test that an immediate cancel ends the subscription and allows a new one."""
    service = SubscriptionService(db_session)
    holder = HolderFactory.individual()
    plan = await catalog_plan(db_session, Product.INDIVIDUAL, PlanTier.STANDARD)
    subscription = await service.create_subscription(holder, plan.id)

    canceled = await service.cancel_subscription(subscription.id, immediate=True)

    assert canceled.status == SubscriptionStatus.CANCELED
    assert canceled.canceled_at is not None
    assert await service.get_active_subscription(holder) is None

    replacement = await service.create_subscription(holder, plan.id)
    assert replacement.id != subscription.id

    with pytest.raises(InvalidStateTransition):
        await service.cancel_subscription(subscription.id)
    with pytest.raises(InvalidStateTransition):
        await service.change_plan(subscription.id, plan.id)


@pytest.mark.asyncio
async def test_reactivate_removes_scheduled_cancellation(db_session: AsyncSession, seeded_catalog) -> None:
    service = SubscriptionService(db_session)
    plan = await catalog_plan(db_session, Product.RECRUITER, PlanTier.STANDARD)
    subscription = await service.create_subscription(HolderFactory.organization(), plan.id)

    with pytest.raises(InvalidStateTransition):
        await service.reactivate_subscription(subscription.id)

    await service.cancel_subscription(subscription.id)
    reactivated = await service.reactivate_subscription(subscription.id)

    assert reactivated.cancel_at_period_end is False
    assert reactivated.status == SubscriptionStatus.ACTIVE
    assert sorted(event.event_type for event in await history_events(db_session, subscription.id)) == [
        "cancellation_removed",
        "cancellation_scheduled",
        "subscription_created",
    ]


@pytest.mark.asyncio
async def test_reactivate_canceled_subscription_fails(db_session: AsyncSession, seeded_catalog) -> None:
    service = SubscriptionService(db_session)
    plan = await catalog_plan(db_session, Product.RECRUITER, PlanTier.STANDARD)
    subscription = await service.create_subscription(HolderFactory.organization(), plan.id)
    await service.cancel_subscription(subscription.id, immediate=True)

    with pytest.raises(InvalidStateTransition):
        await service.reactivate_subscription(subscription.id)


@pytest.mark.asyncio
async def test_unknown_subscription(db_session: AsyncSession) -> None:
    service = SubscriptionService(db_session)

    assert await service.get_subscription(uuid4()) is None
    with pytest.raises(SubscriptionNotFound):
        await service.cancel_subscription(uuid4())


@pytest.mark.asyncio
async def test_list_subscriptions_filters(db_session: AsyncSession, seeded_catalog) -> None:
    service = SubscriptionService(db_session)
    plan = await catalog_plan(db_session, Product.CORPORATE, PlanTier.STANDARD)
    holders = [HolderFactory.business() for _ in range(3)]
    for holder in holders:
        await service.create_subscription(holder, plan.id)
    await service.provision_default_subscription(HolderFactory.individual())
    await service.cancel_subscription(
        (await service.get_active_subscription(holders[0])).id, immediate=True
    )

    business, business_total = await service.list_subscriptions(holder_type=HolderKind.BUSINESS)
    active, active_total = await service.list_subscriptions(status=SubscriptionStatus.ACTIVE)
    first_page, total = await service.list_subscriptions(page=1, page_size=2)
    one_holder, _ = await service.list_subscriptions(holder_type=HolderKind.BUSINESS, holder_id=holders[1].id)

    assert business_total == 3
    assert len(business) == 3
    assert active_total == 3
    assert len(active) == 3
    assert total == 4
    assert len(first_page) == 2
    assert [s.holder_id for s in one_holder] == [holders[1].id]
