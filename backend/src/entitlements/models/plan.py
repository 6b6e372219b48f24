"""Plan model for the product/tier/interval pricing catalog."""
from sqlalchemy import Column, String, Integer, Boolean, JSON, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
import enum

from entitlements.models.base import Base, value_enum


class Product(enum.Enum):
    """Product line a plan belongs to."""

    INDIVIDUAL = "individual"
    RECRUITER = "recruiter"
    CORPORATE = "corporate"


class PlanTier(enum.Enum):
    """Plan tier, ordered free < standard < premium."""

    FREE = "free"
    STANDARD = "standard"
    PREMIUM = "premium"

    @property
    def rank(self) -> int:
        """Position of the tier in the upgrade ladder."""
        return list(PlanTier).index(self)


class PlanInterval(enum.Enum):
    """Billing interval for plans."""

    MONTHLY = "monthly"
    ANNUAL = "annual"


class Plan(Base):
    """
    Pricing plan for subscriptions.

    A plan is immutable once a subscription references it; price or grant
    changes are published as a new version.
    """

    __tablename__ = "plans"
    __table_args__ = (
        UniqueConstraint("product", "tier", "interval", "version", name="uq_plans_product_tier_interval_version"),
    )

    product = Column(value_enum(Product), nullable=False, index=True)
    tier = Column(value_enum(PlanTier), nullable=False)
    interval = Column(value_enum(PlanInterval), nullable=False)
    price_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="ZAR")
    active = Column(Boolean, nullable=False, default=True, index=True)
    is_public = Column(Boolean, nullable=False, default=True)
    version = Column(Integer, nullable=False, default=1)
    previous_version_id = Column(Uuid(as_uuid=True), nullable=True)  # Plan this version superseded
    extra_metadata = Column("metadata", JSON, nullable=False, default=dict)

    # Relationships
    grants = relationship(
        "EntitlementGrant",
        back_populates="plan",
        order_by="EntitlementGrant.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def name(self) -> str:
        """Display name, e.g. "Recruiter Standard (monthly)"."""
        return f"{self.product.value.title()} {self.tier.value.title()} ({self.interval.value})"

    def grant_for(self, feature_key: str) -> "EntitlementGrant | None":
        """Return the grant for a feature key, if the plan has one."""
        for grant in self.grants:
            if grant.feature_key == feature_key:
                return grant
        return None

    def __repr__(self) -> str:
        """String representation."""
        return f"<Plan(id={self.id}, product={self.product.value}, tier={self.tier.value}, interval={self.interval.value})>"
