"""Usage ledger API endpoints."""
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.api.deps import get_current_user, get_db, get_holder
from entitlements.auth.rbac import Role, require_roles
from entitlements.holders import Holder
from entitlements.schemas.usage_record import UsageRecord, UsageRecordList
from entitlements.services.entitlement_service import current_period
from entitlements.services.plan_catalog import PlanCatalog
from entitlements.services.subscription_service import SubscriptionService
from entitlements.services.usage_ledger import UsageLedger

router = APIRouter(prefix="/usage", tags=["Usage"])


@router.get("/{holder_type}/{holder_id}", response_model=UsageRecordList)
@require_roles(Role.SERVICE, Role.SUPPORT_REP)
async def get_usage(
    all_periods: bool = Query(False, description="Include retained records of other periods"),
    current_user: dict = Depends(get_current_user),
    holder: Holder = Depends(get_holder),
    db: AsyncSession = Depends(get_db),
) -> UsageRecordList:
    """
    Usage counters of a holder.

    By default only the current billing period is returned; a holder
    without an active subscription has no current usage.
    """
    ledger = UsageLedger(db)

    if all_periods:
        records = await ledger.list_records(holder)
    else:
        subscription = await SubscriptionService(db).get_active_subscription(holder)
        if subscription is None:
            records = []
        else:
            plan = await PlanCatalog(db).require_plan(subscription.plan_id)
            period_start, _ = current_period(subscription, plan, datetime.utcnow())
            records = await ledger.list_records(holder, period_start=period_start)

    return UsageRecordList(
        items=[UsageRecord.model_validate(record) for record in records],
        total=len(records),
    )
