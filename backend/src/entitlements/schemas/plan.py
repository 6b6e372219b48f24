"""Pydantic schemas for Plan and EntitlementGrant models."""
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, ConfigDict

from entitlements.models.feature import FeatureKind
from entitlements.models.plan import PlanInterval, PlanTier, Product


class Feature(BaseModel):
    """Schema for returning catalog feature data."""

    key: str
    name: str
    description: str | None
    kind: FeatureKind
    unit: str | None

    model_config = ConfigDict(from_attributes=True)


class GrantCreate(BaseModel):
    """Schema for a feature grant on a new plan."""

    feature_key: str = Field(..., min_length=1, description="Catalog feature key")
    enabled: bool = Field(default=True, description="TOGGLE: whether the feature is on")
    monthly_cap: int | None = Field(default=None, ge=0, description="QUOTA: cap per period (null = unlimited)")
    overage_unit_cents: int | None = Field(default=None, ge=0, description="METERED: price per unit in cents")


class Grant(BaseModel):
    """Schema for returning a plan's feature grant."""

    feature_key: str
    kind: FeatureKind
    enabled: bool
    monthly_cap: int | None
    overage_unit_cents: int | None

    model_config = ConfigDict(from_attributes=True)


class PlanBase(BaseModel):
    """Base plan schema with common fields."""

    product: Product = Field(..., description="Product line (individual, recruiter, corporate)")
    tier: PlanTier = Field(..., description="Plan tier (free, standard, premium)")
    interval: PlanInterval = Field(..., description="Billing interval (monthly or annual)")
    price_cents: int = Field(..., ge=0, description="Price in cents")
    currency: str = Field(default="ZAR", min_length=3, max_length=3, description="ISO 4217 currency code")
    active: bool = Field(default=True, description="Whether plan is available for new subscriptions")
    is_public: bool = Field(default=True, description="Whether plan is listed on the pricing page")
    extra_metadata: dict[str, Any] = Field(default_factory=dict, description="Extensible custom fields")


class PlanCreate(PlanBase):
    """Schema for creating a new plan.

    Examples:
        Recruiter standard monthly:
            ```json
            {
                "product": "recruiter",
                "tier": "standard",
                "interval": "monthly",
                "price_cents": 79900,
                "grants": [
                    {"feature_key": "job_posts", "monthly_cap": 50},
                    {"feature_key": "jobdesc_ai", "enabled": true}
                ]
            }
            ```
    """

    grants: list[GrantCreate] = Field(default_factory=list, description="Feature grants in display order")

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "product": "recruiter",
                    "tier": "standard",
                    "interval": "monthly",
                    "price_cents": 79900,
                    "currency": "ZAR",
                    "grants": [
                        {"feature_key": "job_posts", "monthly_cap": 50},
                        {"feature_key": "ai_screenings", "monthly_cap": None},
                        {"feature_key": "jobdesc_ai", "enabled": True},
                    ],
                }
            ]
        }
    )


class PlanVersionCreate(BaseModel):
    """Schema for publishing a new version of an existing plan.

    Omitted fields are copied from the current version.
    """

    price_cents: int | None = Field(default=None, ge=0, description="New price in cents")
    grants: list[GrantCreate] | None = Field(default=None, description="Replacement grant list")
    is_public: bool | None = None
    extra_metadata: dict[str, Any] | None = None


class Plan(PlanBase):
    """Schema for returning plan data."""

    id: UUID
    name: str
    version: int
    previous_version_id: UUID | None
    grants: list[Grant]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PlanList(BaseModel):
    """Schema for paginated plan list."""

    items: list[Plan]
    total: int
    page: int
    page_size: int
