"""Pydantic schemas for effective entitlements and admission control."""
from typing import Literal

from pydantic import BaseModel, Field, ConfigDict

from entitlements.models.feature import FeatureKind

UNLIMITED = "unlimited"

Remaining = int | Literal["unlimited"]


class EffectiveEntitlement(BaseModel):
    """What a holder can do with one feature right now."""

    feature_key: str
    feature_name: str
    kind: FeatureKind
    enabled: bool
    unit: str | None = None
    limit: int | None = Field(default=None, description="QUOTA: cap plus extra allowance (null = unlimited)")
    used: int | None = Field(default=None, description="QUOTA: usage in the current period")
    remaining: Remaining | None = Field(default=None, description="QUOTA: units left, or 'unlimited'")
    near_limit: bool = Field(default=False, description="QUOTA: usage reached the near-limit threshold")


class ConsumeRequest(BaseModel):
    """Schema for consuming quota before a gated action."""

    feature_key: str = Field(..., min_length=1, description="QUOTA feature key")
    amount: int = Field(default=1, ge=1, description="Units to consume")

    model_config = ConfigDict(json_schema_extra={"example": {"feature_key": "job_posts", "amount": 1}})


class ConsumeResult(BaseModel):
    """Admission control outcome. Denied is a normal result, not an error."""

    allowed: bool
    feature_key: str
    remaining: Remaining
    used: int
    limit: int | None = None
    reason: str | None = Field(default=None, description="QUOTA_EXCEEDED when denied")


class AllowanceRequest(BaseModel):
    """Schema for granting bonus quota for the current period."""

    feature_key: str = Field(..., min_length=1)
    amount: int = Field(..., ge=1, description="Extra units for the current period")
    reason: str | None = Field(default=None, max_length=255)
