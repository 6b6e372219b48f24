"""Subscription model for billing holders subscribed to catalog plans."""
from datetime import datetime
from sqlalchemy import Column, Integer, Boolean, ForeignKey, DateTime, Index, String, Uuid, text
from sqlalchemy.orm import relationship
import enum

from entitlements.models.base import Base, value_enum


class HolderKind(enum.Enum):
    """Kind of billing holder a subscription belongs to."""

    INDIVIDUAL = "individual"
    ORGANIZATION = "organization"
    BUSINESS = "business"


class SubscriptionStatus(enum.Enum):
    """Subscription lifecycle status."""

    ACTIVE = "active"
    CANCELED = "canceled"


class Subscription(Base):
    """
    Holder subscription to a catalog plan.

    At most one ACTIVE subscription exists per holder (partial unique index).
    The billing period is half-open: [current_period_start, current_period_end).
    ``plan_id`` is a weak reference into the plan catalog.
    """

    __tablename__ = "subscriptions"
    __table_args__ = (
        Index(
            "uq_subscriptions_one_active_per_holder",
            "holder_type",
            "holder_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("ix_subscriptions_status_period_end", "status", "current_period_end"),
    )

    holder_type = Column(value_enum(HolderKind), nullable=False)
    holder_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    plan_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    status = Column(value_enum(SubscriptionStatus), nullable=False, default=SubscriptionStatus.ACTIVE, index=True)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    current_period_start = Column(DateTime, nullable=False, default=datetime.utcnow)
    current_period_end = Column(DateTime, nullable=False, index=True)
    billing_anchor = Column(DateTime, nullable=False)  # Period chain is computed from this instant
    canceled_at = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False, default=1)  # Optimistic concurrency counter

    # Relationships
    history = relationship(
        "SubscriptionHistory",
        back_populates="subscription",
        cascade="all, delete-orphan",
        order_by="SubscriptionHistory.created_at",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        """String representation."""
        return f"<Subscription(id={self.id}, holder={self.holder_type.value}:{self.holder_id}, status={self.status.value})>"


class SubscriptionHistory(Base):
    """
    Audit trail for subscription changes.

    Tracks provisioning, plan changes, cancellations and period advances.
    """

    __tablename__ = "subscription_history"

    subscription_id = Column(Uuid(as_uuid=True), ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = Column(String, nullable=False)
    old_value = Column(String, nullable=True)
    new_value = Column(String, nullable=True)
    reason = Column(String, nullable=True)

    # Relationships
    subscription = relationship("Subscription", back_populates="history")

    def __repr__(self) -> str:
        """String representation."""
        return f"<SubscriptionHistory(subscription_id={self.subscription_id}, event={self.event_type})>"
