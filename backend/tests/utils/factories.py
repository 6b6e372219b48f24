"""Test data factories using Faker for generating realistic test data."""
from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

from faker import Faker
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.holders import Holder
from entitlements.models.plan import Plan, PlanInterval, PlanTier, Product
from entitlements.models.subscription import HolderKind

fake = Faker()


class HolderFactory:
    """Factory for billing holder references."""

    @staticmethod
    def create(kind: HolderKind | None = None) -> Holder:
        """
        Create a holder with a random id.

        Args:
            kind: Holder kind (random when omitted)

        Returns:
            Holder: Holder reference
        """
        return Holder(kind=kind or fake.random_element(list(HolderKind)), id=uuid4())

    @staticmethod
    def individual() -> Holder:
        return HolderFactory.create(HolderKind.INDIVIDUAL)

    @staticmethod
    def organization() -> Holder:
        return HolderFactory.create(HolderKind.ORGANIZATION)

    @staticmethod
    def business() -> Holder:
        return HolderFactory.create(HolderKind.BUSINESS)


class PlanFactory:
    """Factory for plan creation payloads."""

    @staticmethod
    def create(overrides: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Create plan test data for ``PlanCreate``.

        Args:
            overrides: Optional field overrides

        Returns:
            dict: Plan data
        """
        data = {
            "product": Product.RECRUITER,
            "tier": fake.random_element([PlanTier.STANDARD, PlanTier.PREMIUM]),
            "interval": PlanInterval.MONTHLY,
            "price_cents": fake.random_int(min=100, max=500000),
            "currency": "ZAR",
            "extra_metadata": {"campaign": fake.slug()},
            "grants": [
                {"feature_key": "job_posts", "monthly_cap": fake.random_int(min=1, max=100)},
                {"feature_key": "candidates", "monthly_cap": None},
                {"feature_key": "jobdesc_ai", "enabled": True},
            ],
        }
        if overrides:
            data.update(overrides)
        return data


def utc_datetime(year: int, month: int, day: int, hour: int = 0) -> datetime:
    """Naive UTC datetime, the form timestamps are stored in."""
    return datetime(year, month, day, hour)


def random_instant() -> datetime:
    """A random instant within the last year (whole seconds)."""
    instant = fake.date_time_between(start_date="-1y", end_date="now")
    return instant.replace(microsecond=0)


def days_after(instant: datetime, days: int) -> datetime:
    return instant + timedelta(days=days)


async def catalog_plan(
    db: AsyncSession, product: Product, tier: PlanTier, interval: PlanInterval = PlanInterval.MONTHLY
) -> Plan:
    """Look up the active seeded plan of a product/tier/interval."""
    result = await db.execute(
        select(Plan).where(
            Plan.product == product,
            Plan.tier == tier,
            Plan.interval == interval,
            Plan.active == True,  # noqa: E712
        )
    )
    return result.scalar_one()
