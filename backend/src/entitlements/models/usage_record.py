"""Usage record model for per-period quota metering."""
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, Index, UniqueConstraint, Uuid

from entitlements.models.base import Base, value_enum
from entitlements.models.subscription import HolderKind


class UsageRecord(Base):
    """
    Accumulated usage of one QUOTA feature by one holder in one billing period.

    ``used`` only ever grows within a period; the reconciler deletes the row
    once its period has closed.
    """

    __tablename__ = "usage_records"
    __table_args__ = (
        UniqueConstraint(
            "holder_type", "holder_id", "feature_key", "period_start", name="uq_usage_records_holder_feature_period"
        ),
        Index("ix_usage_records_holder_period_end", "holder_type", "holder_id", "period_end"),
    )

    holder_type = Column(value_enum(HolderKind), nullable=False)
    holder_id = Column(Uuid(as_uuid=True), nullable=False)
    feature_key = Column(String, nullable=False, index=True)
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)
    used = Column(Integer, nullable=False, default=0)
    extra_allowance = Column(Integer, nullable=False, default=0)  # Admin bonus added to the cap

    def __repr__(self) -> str:
        """String representation."""
        return f"<UsageRecord(holder={self.holder_type.value}:{self.holder_id}, feature={self.feature_key}, used={self.used})>"


class UsageArchive(Base):
    """Closed-period usage copied out before the reconciler purges it."""

    __tablename__ = "usage_archive"

    holder_type = Column(value_enum(HolderKind), nullable=False)
    holder_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    feature_key = Column(String, nullable=False)
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)
    used = Column(Integer, nullable=False)
    extra_allowance = Column(Integer, nullable=False, default=0)
    archived_at = Column(DateTime, nullable=False, default=datetime.utcnow)
