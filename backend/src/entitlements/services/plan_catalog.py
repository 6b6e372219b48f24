"""Plan catalog service: plans, feature grants and catalog seeding."""
from uuid import UUID

import structlog
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from entitlements import catalog
from entitlements.config import settings
from entitlements.exceptions import PlanNotFound
from entitlements.models.feature import Feature, EntitlementGrant
from entitlements.models.plan import Plan, PlanInterval, PlanTier, Product
from entitlements.schemas.plan import GrantCreate, PlanCreate, PlanVersionCreate

logger = structlog.get_logger(__name__)


class PlanCatalog:
    """Service layer for plan catalog operations."""

    def __init__(self, db: AsyncSession):
        """Initialize plan catalog with database session."""
        self.db = db

    async def create_plan(self, plan_data: PlanCreate) -> Plan:
        """
        Create a new pricing plan with its feature grants.

        Args:
            plan_data: Plan creation data

        Returns:
            Created plan

        Raises:
            ValueError: If a grant references an unknown feature or repeats one
        """
        plan = Plan(
            product=plan_data.product,
            tier=plan_data.tier,
            interval=plan_data.interval,
            price_cents=plan_data.price_cents,
            currency=plan_data.currency,
            active=plan_data.active,
            is_public=plan_data.is_public,
            extra_metadata=plan_data.extra_metadata,
            version=await self._next_version(plan_data.product, plan_data.tier, plan_data.interval),
        )
        plan.grants = await self._build_grants(plan_data.grants)

        self.db.add(plan)
        await self.db.flush()
        await self.db.refresh(plan)

        logger.info("plan_created", plan_id=str(plan.id), plan=plan.name, version=plan.version)
        return plan

    async def get_plan(self, plan_id: UUID) -> Plan | None:
        """
        Get plan by ID.

        Args:
            plan_id: Plan UUID

        Returns:
            Plan or None if not found
        """
        result = await self.db.execute(select(Plan).where(Plan.id == plan_id))
        return result.scalar_one_or_none()

    async def require_plan(self, plan_id: UUID) -> Plan:
        """Get plan by ID or raise PlanNotFound."""
        plan = await self.get_plan(plan_id)
        if not plan:
            raise PlanNotFound(f"Plan {plan_id} not found", plan_id=str(plan_id))
        return plan

    async def get_default_plan(self, product: Product, interval: PlanInterval = PlanInterval.MONTHLY) -> Plan:
        """
        Get the current free plan of a product.

        Raises:
            PlanNotFound: If the catalog has no active free plan for the product
        """
        result = await self.db.execute(
            select(Plan)
            .where(
                Plan.product == product,
                Plan.tier == PlanTier.FREE,
                Plan.interval == interval,
                Plan.active == True,  # noqa: E712
            )
            .order_by(Plan.version.desc())
            .limit(1)
        )
        plan = result.scalar_one_or_none()
        if not plan:
            raise PlanNotFound(f"No free {interval.value} plan for product {product.value}", product=product.value)
        return plan

    async def list_plans(
        self,
        page: int = 1,
        page_size: int = 100,
        active_only: bool = True,
        product: Product | None = None,
    ) -> tuple[list[Plan], int]:
        """
        List plans with pagination.

        Args:
            page: Page number (1-indexed)
            page_size: Items per page
            active_only: Filter to active plans only
            product: Optional product line filter

        Returns:
            Tuple of (plans, total_count)
        """
        query = select(Plan)

        if active_only:
            query = query.where(Plan.active == True)  # noqa: E712
        if product is not None:
            query = query.where(Plan.product == product)

        count_query = select(func.count()).select_from(query.subquery())
        total = await self.db.scalar(count_query)

        query = query.order_by(Plan.product, Plan.price_cents, Plan.interval)
        query = query.offset((page - 1) * page_size).limit(page_size)

        result = await self.db.execute(query)
        plans = result.scalars().all()

        return list(plans), total or 0

    async def list_features(self) -> list[Feature]:
        """List the feature catalog."""
        result = await self.db.execute(select(Feature).order_by(Feature.key))
        return list(result.scalars().all())

    async def create_plan_version(self, plan_id: UUID, version_data: PlanVersionCreate) -> Plan:
        """
        Publish a new version of a plan (for price or grant changes).

        The old version is deactivated; subscriptions already on it keep it.

        Args:
            plan_id: Current plan UUID
            version_data: Fields to change; omitted fields are copied

        Returns:
            New plan version

        Raises:
            PlanNotFound: If the original plan does not exist
        """
        original_plan = await self.require_plan(plan_id)

        original_plan.active = False

        if version_data.grants is not None:
            grant_data = version_data.grants
        else:
            grant_data = [
                GrantCreate(
                    feature_key=grant.feature_key,
                    enabled=grant.enabled,
                    monthly_cap=grant.monthly_cap,
                    overage_unit_cents=grant.overage_unit_cents,
                )
                for grant in original_plan.grants
            ]

        new_plan = Plan(
            product=original_plan.product,
            tier=original_plan.tier,
            interval=original_plan.interval,
            price_cents=(
                version_data.price_cents if version_data.price_cents is not None else original_plan.price_cents
            ),
            currency=original_plan.currency,
            active=True,
            is_public=version_data.is_public if version_data.is_public is not None else original_plan.is_public,
            extra_metadata=(
                version_data.extra_metadata
                if version_data.extra_metadata is not None
                else dict(original_plan.extra_metadata or {})
            ),
            version=await self._next_version(original_plan.product, original_plan.tier, original_plan.interval),
            previous_version_id=original_plan.id,
        )
        new_plan.grants = await self._build_grants(grant_data)

        self.db.add(new_plan)
        await self.db.flush()
        await self.db.refresh(new_plan)

        logger.info(
            "plan_version_created",
            plan_id=str(new_plan.id),
            previous_version_id=str(plan_id),
            version=new_plan.version,
        )
        return new_plan

    async def seed_default_catalog(self) -> dict[str, int]:
        """
        Insert the default features, plans and grants that are missing.

        Safe to run repeatedly. Plans are never rewritten in place because
        subscriptions may reference them: when the catalog's price or grants
        differ from the current version of a plan, a new version is published
        and the old one is deactivated. Existing features are left as they are.

        Returns:
            Counts of features, plans and grants written by this run
        """
        features_created = 0
        for spec in catalog.FEATURES:
            existing_feature = await self.db.scalar(select(Feature).where(Feature.key == spec.key))
            if existing_feature is None:
                self.db.add(
                    Feature(
                        key=spec.key,
                        name=spec.name,
                        description=spec.description,
                        kind=spec.kind,
                        unit=spec.unit,
                    )
                )
                features_created += 1

        await self.db.flush()

        plan_count = 0
        grant_count = 0
        for (product, tier), grants in catalog.GRANTS.items():
            grant_data = [
                GrantCreate(
                    feature_key=feature_key,
                    enabled=spec.enabled,
                    monthly_cap=spec.monthly_cap,
                    overage_unit_cents=spec.overage_unit_cents,
                )
                for feature_key, spec in grants.items()
            ]
            for interval in PlanInterval:
                price_cents = catalog.plan_price(product, tier, interval)
                current = await self._current_version(product, tier, interval)

                if current is None:
                    await self.create_plan(
                        PlanCreate(
                            product=product,
                            tier=tier,
                            interval=interval,
                            price_cents=price_cents,
                            currency=settings.default_currency,
                            grants=grant_data,
                        )
                    )
                elif current.price_cents != price_cents or _grant_rows(current.grants) != _grant_rows(grant_data):
                    await self.create_plan_version(
                        current.id, PlanVersionCreate(price_cents=price_cents, grants=grant_data)
                    )
                else:
                    continue

                plan_count += 1
                grant_count += len(grant_data)

        logger.info("catalog_seeded", features=features_created, plans=plan_count, grants=grant_count)
        return {"features": features_created, "plans": plan_count, "grants": grant_count}

    async def _current_version(self, product: Product, tier: PlanTier, interval: PlanInterval) -> Plan | None:
        """Latest active version of a product/tier/interval, if any."""
        result = await self.db.execute(
            select(Plan)
            .where(
                Plan.product == product,
                Plan.tier == tier,
                Plan.interval == interval,
                Plan.active == True,  # noqa: E712
            )
            .order_by(Plan.version.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _next_version(self, product: Product, tier: PlanTier, interval: PlanInterval) -> int:
        """Next free version number for a product/tier/interval."""
        current = await self.db.scalar(
            select(func.max(Plan.version)).where(
                Plan.product == product,
                Plan.tier == tier,
                Plan.interval == interval,
            )
        )
        return (current or 0) + 1

    async def _build_grants(self, grant_data: list[GrantCreate]) -> list[EntitlementGrant]:
        """Build ordered grant rows, validating feature keys against the catalog."""
        keys = [grant.feature_key for grant in grant_data]
        if len(set(keys)) != len(keys):
            raise ValueError("Each feature may only be granted once per plan")

        result = await self.db.execute(select(Feature).where(Feature.key.in_(keys)))
        features = {feature.key: feature for feature in result.scalars().all()}

        unknown = [key for key in keys if key not in features]
        if unknown:
            raise ValueError(f"Unknown feature keys: {', '.join(unknown)}")

        return [
            EntitlementGrant(
                feature_key=grant.feature_key,
                feature=features[grant.feature_key],
                enabled=grant.enabled,
                monthly_cap=grant.monthly_cap,
                overage_unit_cents=grant.overage_unit_cents,
                position=position,
            )
            for position, grant in enumerate(grant_data)
        ]


def _grant_rows(grants) -> list[tuple]:
    """Comparable (key, enabled, cap, overage) rows in display order."""
    return [(g.feature_key, g.enabled, g.monthly_cap, g.overage_unit_cents) for g in grants]
