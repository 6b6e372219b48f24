"""Pydantic schemas for API request/response validation."""

from entitlements.schemas.entitlement import (
    AllowanceRequest,
    ConsumeRequest,
    ConsumeResult,
    EffectiveEntitlement,
)
from entitlements.schemas.error import ErrorCode, ErrorDetail, ErrorResponse
from entitlements.schemas.plan import (
    Feature,
    Grant,
    GrantCreate,
    Plan,
    PlanCreate,
    PlanList,
    PlanVersionCreate,
)
from entitlements.schemas.subscription import (
    Subscription,
    SubscriptionCreate,
    SubscriptionList,
    SubscriptionPlanChange,
)
from entitlements.schemas.usage_record import UsageRecord, UsageRecordList

__all__ = [
    # Entitlement schemas
    "EffectiveEntitlement",
    "ConsumeRequest",
    "ConsumeResult",
    "AllowanceRequest",
    # Error schemas
    "ErrorCode",
    "ErrorDetail",
    "ErrorResponse",
    # Plan schemas
    "Feature",
    "Grant",
    "GrantCreate",
    "Plan",
    "PlanCreate",
    "PlanVersionCreate",
    "PlanList",
    # Subscription schemas
    "Subscription",
    "SubscriptionCreate",
    "SubscriptionPlanChange",
    "SubscriptionList",
    # Usage Record schemas
    "UsageRecord",
    "UsageRecordList",
]
