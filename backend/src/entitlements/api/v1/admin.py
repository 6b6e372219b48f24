"""Operational endpoints for administrators."""
from datetime import datetime
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from entitlements.api.deps import get_current_user, get_session_factory
from entitlements.auth.rbac import Role, require_roles
from entitlements.workers.period_reconciler import reconcile_billing_periods

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.post("/reconciler/run")
@require_roles(Role.BILLING_ADMIN)
async def run_reconciler(
    as_of: datetime | None = Query(None, description="Reconcile as of this UTC instant (default: now)"),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    current_user: dict = Depends(get_current_user),
) -> dict[str, Any]:
    """
    Run the billing period reconciler now.

    Safe to call at any time: subscriptions whose period has not ended are
    untouched, so a run right after the scheduled one does nothing.
    """
    logger.info("manual_reconciler_trigger", triggered_by=current_user.get("sub"))
    return await reconcile_billing_periods(session_factory=session_factory, now=as_of)
