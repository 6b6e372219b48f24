"""Pydantic schemas for UsageRecord model."""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from entitlements.models.subscription import HolderKind


class UsageRecord(BaseModel):
    """Schema for returning a per-period usage counter."""

    id: UUID
    holder_type: HolderKind
    holder_id: UUID
    feature_key: str
    period_start: datetime
    period_end: datetime
    used: int
    extra_allowance: int
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UsageRecordList(BaseModel):
    """Schema for a holder's usage records."""

    items: list[UsageRecord]
    total: int
