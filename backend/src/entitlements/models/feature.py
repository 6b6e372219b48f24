"""Feature catalog and per-plan entitlement grants."""
from sqlalchemy import Column, String, Integer, Boolean, ForeignKey, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
import enum

from entitlements.models.base import Base, value_enum


class FeatureKind(enum.Enum):
    """How a feature is gated."""

    TOGGLE = "TOGGLE"  # On/off
    QUOTA = "QUOTA"  # Capped count per billing period
    METERED = "METERED"  # Unlimited, billed per use


class Feature(Base):
    """A gateable product capability (e.g. job_posts, cv_builder)."""

    __tablename__ = "features"

    key = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    kind = Column(value_enum(FeatureKind), nullable=False)
    unit = Column(String, nullable=True)  # QUOTA unit label ("posts", "uploads")

    def __repr__(self) -> str:
        """String representation."""
        return f"<Feature(key={self.key}, kind={self.kind.value})>"


class EntitlementGrant(Base):
    """
    Feature entitlement granted by a plan.

    TOGGLE grants carry ``enabled``; QUOTA grants carry ``monthly_cap`` where
    NULL is the unlimited sentinel; METERED grants carry an optional overage price.
    """

    __tablename__ = "entitlement_grants"
    __table_args__ = (UniqueConstraint("plan_id", "feature_key", name="uq_entitlement_grants_plan_feature"),)

    plan_id = Column(Uuid(as_uuid=True), ForeignKey("plans.id", ondelete="CASCADE"), nullable=False, index=True)
    feature_key = Column(String, ForeignKey("features.key"), nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    monthly_cap = Column(Integer, nullable=True)
    overage_unit_cents = Column(Integer, nullable=True)
    position = Column(Integer, nullable=False, default=0)

    # Relationships
    plan = relationship("Plan", back_populates="grants")
    feature = relationship("Feature", lazy="joined")

    @property
    def kind(self) -> FeatureKind:
        """Gating kind of the granted feature."""
        return self.feature.kind

    @property
    def unlimited(self) -> bool:
        """True for QUOTA grants without a cap."""
        return self.monthly_cap is None

    def __repr__(self) -> str:
        """String representation."""
        return f"<EntitlementGrant(plan_id={self.plan_id}, feature_key={self.feature_key}, cap={self.monthly_cap})>"
