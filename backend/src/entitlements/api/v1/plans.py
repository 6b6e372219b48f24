"""Plan catalog API endpoints."""
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.api.deps import get_current_user, get_db
from entitlements.auth.rbac import Role, require_roles
from entitlements.cache import cache, cache_key
from entitlements.models.plan import Product
from entitlements.schemas.plan import Feature, Plan, PlanCreate, PlanList, PlanVersionCreate
from entitlements.services.plan_catalog import PlanCatalog

router = APIRouter(prefix="/plans", tags=["Plans"])


@router.post("", response_model=Plan, status_code=status.HTTP_201_CREATED)
@require_roles(Role.BILLING_ADMIN)
async def create_plan(
    plan_data: PlanCreate,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
) -> Plan:
    """
    Create a new plan with its feature grants.

    - **product** / **tier** / **interval**: Plan identity; the version is assigned automatically
    - **price_cents**: Price in cents
    - **grants**: Feature grants in display order (QUOTA caps: null = unlimited)
    """
    service = PlanCatalog(db)

    try:
        plan = await service.create_plan(plan_data)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    result = Plan.model_validate(plan)
    await db.commit()
    await cache.invalidate_pattern("plan_list:*")
    return result


@router.get("/features", response_model=list[Feature])
async def list_features(
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
) -> list[Feature]:
    """List the feature catalog."""
    service = PlanCatalog(db)
    return await service.list_features()


@router.get("/{plan_id}", response_model=Plan)
async def get_plan(
    plan_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
) -> Plan:
    """
    Get plan by ID, including its feature grants.

    Plans are immutable once published (changes create a new version), so
    cached entries only go stale when a plan is deactivated.
    """
    key = cache_key("plan", str(plan_id))
    cached = await cache.get(key)
    if cached:
        return Plan.model_validate(cached)

    service = PlanCatalog(db)
    plan = Plan.model_validate(await service.require_plan(plan_id))

    await cache.set(key, plan.model_dump(mode="json"))
    return plan


@router.get("", response_model=PlanList)
async def list_plans(
    page: int = Query(1, ge=1, description="Page number (1-indexed)"),
    page_size: int = Query(100, ge=1, le=1000, description="Items per page"),
    active_only: bool = Query(True, description="Only plans open to new subscriptions"),
    product: Product | None = Query(None, description="Filter by product line"),
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
) -> PlanList:
    """List plans with pagination."""
    product_label = product.value if product else "all"
    key = cache_key("plan_list", f"page{page}_size{page_size}_active{active_only}_{product_label}")
    cached = await cache.get(key)
    if cached:
        return PlanList.model_validate(cached)

    service = PlanCatalog(db)
    plans, total = await service.list_plans(page, page_size, active_only, product)

    result = PlanList(
        items=[Plan.model_validate(plan) for plan in plans],
        total=total,
        page=page,
        page_size=page_size,
    )

    # Lists change more often than single plans
    await cache.set(key, result.model_dump(mode="json"), ttl=60)
    return result


@router.post("/{plan_id}/versions", response_model=Plan, status_code=status.HTTP_201_CREATED)
@require_roles(Role.BILLING_ADMIN)
async def create_plan_version(
    plan_id: UUID,
    version_data: PlanVersionCreate,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
) -> Plan:
    """
    Publish a new version of a plan.

    Use this for price or grant changes. The current version is deactivated;
    existing subscriptions keep it, new subscriptions get the new version.
    Omitted fields are copied from the current version.
    """
    service = PlanCatalog(db)

    try:
        new_plan = await service.create_plan_version(plan_id, version_data)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    result = Plan.model_validate(new_plan)
    await db.commit()

    await cache.delete(cache_key("plan", str(plan_id)))
    await cache.invalidate_pattern("plan_list:*")
    return result
