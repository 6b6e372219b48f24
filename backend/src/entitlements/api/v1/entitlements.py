"""Entitlement API endpoints: resolve, check and consume."""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.api.deps import get_current_user, get_db, get_holder
from entitlements.auth.rbac import Role, require_roles
from entitlements.holders import Holder
from entitlements.schemas.entitlement import (
    AllowanceRequest,
    ConsumeRequest,
    ConsumeResult,
    EffectiveEntitlement,
)
from entitlements.services.entitlement_service import EntitlementService

router = APIRouter(prefix="/entitlements", tags=["Entitlements"])


@router.get("/{holder_type}/{holder_id}", response_model=list[EffectiveEntitlement])
@require_roles(Role.SERVICE, Role.SUPPORT_REP)
async def get_entitlements(
    current_user: dict = Depends(get_current_user),
    holder: Holder = Depends(get_holder),
    db: AsyncSession = Depends(get_db),
) -> list[EffectiveEntitlement]:
    """
    Effective entitlements of a holder for the current billing period.

    One entry per feature of the governing plan. Holders without an active
    subscription get the free plan of their product with zero usage; nothing
    is provisioned by this call.
    """
    service = EntitlementService(db)
    return await service.resolve_entitlements(holder)


@router.post("/{holder_type}/{holder_id}/check", response_model=ConsumeResult)
@require_roles(Role.SERVICE, Role.SUPPORT_REP)
async def check_entitlement(
    consume_data: ConsumeRequest,
    current_user: dict = Depends(get_current_user),
    holder: Holder = Depends(get_holder),
    db: AsyncSession = Depends(get_db),
) -> ConsumeResult:
    """Would a consume of ``amount`` be allowed right now? Read-only."""
    service = EntitlementService(db)
    return await service.check_allowed(holder, consume_data.feature_key, consume_data.amount)


@router.post("/{holder_type}/{holder_id}/consume", response_model=ConsumeResult)
@require_roles(Role.SERVICE)
async def consume_entitlement(
    consume_data: ConsumeRequest,
    current_user: dict = Depends(get_current_user),
    holder: Holder = Depends(get_holder),
    db: AsyncSession = Depends(get_db),
) -> ConsumeResult:
    """
    Atomically check and consume quota before a gated action.

    - **allowed=true**: usage was recorded; proceed with the action
    - **allowed=false**: quota exhausted (reason QUOTA_EXCEEDED); usage unchanged

    A denial is a normal 200 response. Consuming a TOGGLE or METERED feature
    is a 400, a feature missing from the plan a 404.
    """
    service = EntitlementService(db)
    return await service.try_consume(holder, consume_data.feature_key, consume_data.amount)


@router.post("/{holder_type}/{holder_id}/allowance", response_model=EffectiveEntitlement)
@require_roles(Role.BILLING_ADMIN, Role.SUPPORT_REP)
async def grant_allowance(
    allowance_data: AllowanceRequest,
    current_user: dict = Depends(get_current_user),
    holder: Holder = Depends(get_holder),
    db: AsyncSession = Depends(get_db),
) -> EffectiveEntitlement:
    """Grant bonus quota for the holder's current period (e.g. a support goodwill gesture)."""
    service = EntitlementService(db)
    reason = allowance_data.reason or f"granted by {current_user.get('sub')}"
    return await service.grant_extra_allowance(holder, allowance_data.feature_key, allowance_data.amount, reason=reason)
