"""SQLAlchemy ORM models for the entitlement service."""
# Import all models here to ensure they are registered with Alembic

from entitlements.models.base import Base
from entitlements.models.plan import Plan, Product, PlanTier, PlanInterval
from entitlements.models.feature import Feature, FeatureKind, EntitlementGrant
from entitlements.models.subscription import Subscription, SubscriptionStatus, SubscriptionHistory, HolderKind
from entitlements.models.usage_record import UsageRecord, UsageArchive

__all__ = [
    "Base",
    "Plan",
    "Product",
    "PlanTier",
    "PlanInterval",
    "Feature",
    "FeatureKind",
    "EntitlementGrant",
    "Subscription",
    "SubscriptionStatus",
    "SubscriptionHistory",
    "HolderKind",
    "UsageRecord",
    "UsageArchive",
]
