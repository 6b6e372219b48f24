"""Pydantic schemas for Subscription model."""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, ConfigDict

from entitlements.models.subscription import HolderKind, SubscriptionStatus


class SubscriptionCreate(BaseModel):
    """Schema for creating a new subscription."""

    holder_type: HolderKind = Field(..., description="Holder kind (individual, organization, business)")
    holder_id: UUID = Field(..., description="Holder ID in the owning service")
    plan_id: UUID = Field(..., description="Plan ID for this subscription")


class SubscriptionPlanChange(BaseModel):
    """Schema for an immediate upgrade or downgrade."""

    new_plan_id: UUID = Field(..., description="New plan to switch to")


class Subscription(BaseModel):
    """Schema for returning subscription data."""

    id: UUID
    holder_type: HolderKind
    holder_id: UUID
    plan_id: UUID
    status: SubscriptionStatus
    current_period_start: datetime
    current_period_end: datetime
    billing_anchor: datetime
    cancel_at_period_end: bool
    canceled_at: datetime | None
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SubscriptionList(BaseModel):
    """Schema for paginated subscription list."""

    items: list[Subscription]
    total: int
    page: int
    page_size: int
