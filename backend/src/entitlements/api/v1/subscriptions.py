"""Subscription API endpoints."""
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.api.deps import get_current_user, get_db
from entitlements.auth.rbac import Role, require_roles
from entitlements.holders import Holder
from entitlements.models.subscription import HolderKind, SubscriptionStatus
from entitlements.schemas.subscription import (
    Subscription,
    SubscriptionCreate,
    SubscriptionList,
    SubscriptionPlanChange,
)
from entitlements.services.subscription_service import SubscriptionService

router = APIRouter(prefix="/subscriptions", tags=["Subscriptions"])


@router.post("", response_model=Subscription, status_code=status.HTTP_201_CREATED)
@require_roles(Role.SERVICE, Role.BILLING_ADMIN)
async def create_subscription(
    subscription_data: SubscriptionCreate,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
) -> Subscription:
    """
    Subscribe a holder to a plan.

    - **holder_type**: individual, organization or business
    - **holder_id**: Holder UUID in the owning service
    - **plan_id**: Active plan UUID

    The first billing period starts now. A holder can have only one active
    subscription (409 otherwise); use change-plan to move between tiers.
    """
    service = SubscriptionService(db)
    holder = Holder(kind=subscription_data.holder_type, id=subscription_data.holder_id)
    return await service.create_subscription(holder, subscription_data.plan_id)


@router.get("/{subscription_id}", response_model=Subscription)
@require_roles(Role.SERVICE, Role.SUPPORT_REP)
async def get_subscription(
    subscription_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
) -> Subscription:
    """Get subscription by ID."""
    service = SubscriptionService(db)
    return await service.require_subscription(subscription_id)


@router.get("", response_model=SubscriptionList)
@require_roles(Role.SERVICE, Role.SUPPORT_REP)
async def list_subscriptions(
    holder_type: HolderKind | None = Query(None, description="Filter by holder kind"),
    holder_id: UUID | None = Query(None, description="Filter by holder ID"),
    status_filter: SubscriptionStatus | None = Query(None, alias="status", description="Filter by status"),
    page: int = Query(1, ge=1, description="Page number (1-indexed)"),
    page_size: int = Query(100, ge=1, le=1000, description="Items per page"),
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
) -> SubscriptionList:
    """
    List subscriptions with pagination, newest first.

    Canceled subscriptions are kept, so a holder's history is the list
    filtered by holder_type and holder_id.
    """
    service = SubscriptionService(db)
    subscriptions, total = await service.list_subscriptions(
        holder_type=holder_type,
        holder_id=holder_id,
        status=status_filter,
        page=page,
        page_size=page_size,
    )

    return SubscriptionList(
        items=subscriptions,
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post("/{subscription_id}/change-plan", response_model=Subscription)
@require_roles(Role.SERVICE, Role.BILLING_ADMIN)
async def change_subscription_plan(
    subscription_id: UUID,
    plan_change: SubscriptionPlanChange,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
) -> Subscription:
    """
    Upgrade or downgrade immediately.

    The new plan takes effect now and starts a fresh billing period, so
    usage counters restart at zero under the new caps.
    """
    service = SubscriptionService(db)
    return await service.change_plan(subscription_id, plan_change.new_plan_id)


@router.post("/{subscription_id}/cancel", response_model=Subscription)
@require_roles(Role.SERVICE, Role.BILLING_ADMIN)
async def cancel_subscription(
    subscription_id: UUID,
    immediate: bool = Query(False, description="Cancel immediately or at period end"),
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
) -> Subscription:
    """
    Cancel subscription.

    - **immediate**: If true, cancels now. If false (default), the reconciler
      cancels it when the current period ends and entitlements stay in force
      until then.
    """
    service = SubscriptionService(db)
    return await service.cancel_subscription(subscription_id, immediate)


@router.post("/{subscription_id}/reactivate", response_model=Subscription)
@require_roles(Role.SERVICE, Role.BILLING_ADMIN)
async def reactivate_subscription(
    subscription_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
) -> Subscription:
    """Withdraw a pending period-end cancellation."""
    service = SubscriptionService(db)
    return await service.reactivate_subscription(subscription_id)
