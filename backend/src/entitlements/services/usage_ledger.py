"""Usage ledger: durable per-period usage counters for QUOTA features."""
from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy import select, update, delete, insert
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.holders import Holder
from entitlements.models.usage_record import UsageRecord, UsageArchive

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class LedgerIncrement:
    """Outcome of a conditional increment."""

    new_count: int
    allowed: bool
    extra_allowance: int = 0


class UsageLedger:
    """
    Service for reading and atomically incrementing usage counters.

    ``increment_if_under_cap`` is the only code path that changes ``used``;
    the check and the increment happen in one UPDATE so concurrent consumers
    can never push a counter past its cap.
    """

    def __init__(self, db: AsyncSession):
        """Initialize usage ledger with database session."""
        self.db = db

    def _record_key(self, holder: Holder, feature_key: str, period_start: datetime):
        return (
            UsageRecord.holder_type == holder.kind,
            UsageRecord.holder_id == holder.id,
            UsageRecord.feature_key == feature_key,
            UsageRecord.period_start == period_start,
        )

    async def get_record(self, holder: Holder, feature_key: str, period_start: datetime) -> UsageRecord | None:
        """Get the usage record of a holder/feature/period, if one exists."""
        result = await self.db.execute(
            select(UsageRecord).where(*self._record_key(holder, feature_key, period_start))
        )
        return result.scalar_one_or_none()

    async def get_count(self, holder: Holder, feature_key: str, period_start: datetime) -> int:
        """Current usage count (0 when no record exists)."""
        used = await self.db.scalar(
            select(UsageRecord.used).where(*self._record_key(holder, feature_key, period_start))
        )
        return used or 0

    async def list_records(self, holder: Holder, period_start: datetime | None = None) -> list[UsageRecord]:
        """List a holder's usage records, optionally for one period only."""
        query = select(UsageRecord).where(
            UsageRecord.holder_type == holder.kind,
            UsageRecord.holder_id == holder.id,
        )
        if period_start is not None:
            query = query.where(UsageRecord.period_start == period_start)

        query = query.order_by(UsageRecord.period_start, UsageRecord.feature_key)
        result = await self.db.execute(query.execution_options(populate_existing=True))
        return list(result.scalars().all())

    async def _ensure_record(
        self, holder: Holder, feature_key: str, period_start: datetime, period_end: datetime
    ) -> None:
        """Create the zero record for a period unless it already exists (INSERT ... ON CONFLICT DO NOTHING)."""
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = postgresql.insert(UsageRecord)
        elif dialect == "sqlite":
            stmt = sqlite.insert(UsageRecord)
        else:
            raise NotImplementedError(f"Usage ledger does not support the {dialect} dialect")

        stmt = stmt.values(
            holder_type=holder.kind,
            holder_id=holder.id,
            feature_key=feature_key,
            period_start=period_start,
            period_end=period_end,
            used=0,
            extra_allowance=0,
        ).on_conflict_do_nothing(index_elements=["holder_type", "holder_id", "feature_key", "period_start"])

        await self.db.execute(stmt)

    async def increment_if_under_cap(
        self,
        holder: Holder,
        feature_key: str,
        period_start: datetime,
        period_end: datetime,
        amount: int,
        cap: int | None,
    ) -> LedgerIncrement:
        """
        Atomically add ``amount`` to the counter if it stays within the cap.

        The effective cap is ``cap + extra_allowance``; ``cap=None`` is
        unlimited and always increments.

        Args:
            holder: Billing holder
            feature_key: QUOTA feature key
            period_start: Start of the billing period (record key)
            period_end: End of the billing period
            amount: Units to consume (positive)
            cap: Monthly cap from the plan grant, or None

        Returns:
            The new count when allowed, else the unchanged current count
        """
        if amount <= 0:
            raise ValueError("amount must be positive")

        await self._ensure_record(holder, feature_key, period_start, period_end)

        stmt = (
            update(UsageRecord)
            .where(*self._record_key(holder, feature_key, period_start))
            .values(used=UsageRecord.used + amount, updated_at=datetime.utcnow())
            .returning(UsageRecord.used, UsageRecord.extra_allowance)
        )
        if cap is not None:
            stmt = stmt.where(UsageRecord.used + amount <= cap + UsageRecord.extra_allowance)

        result = await self.db.execute(stmt.execution_options(synchronize_session=False))
        row = result.one_or_none()

        if row is None:
            current = await self.db.execute(
                select(UsageRecord.used, UsageRecord.extra_allowance).where(
                    *self._record_key(holder, feature_key, period_start)
                )
            )
            used, extra_allowance = current.one()
            return LedgerIncrement(new_count=used, allowed=False, extra_allowance=extra_allowance)

        return LedgerIncrement(new_count=row.used, allowed=True, extra_allowance=row.extra_allowance)

    async def add_extra_allowance(
        self,
        holder: Holder,
        feature_key: str,
        period_start: datetime,
        period_end: datetime,
        amount: int,
    ) -> UsageRecord:
        """
        Grant bonus quota for one period (atomic ``extra_allowance + amount``).

        Returns:
            The updated usage record
        """
        if amount <= 0:
            raise ValueError("amount must be positive")

        await self._ensure_record(holder, feature_key, period_start, period_end)
        await self.db.execute(
            update(UsageRecord)
            .where(*self._record_key(holder, feature_key, period_start))
            .values(extra_allowance=UsageRecord.extra_allowance + amount, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )

        result = await self.db.execute(
            select(UsageRecord)
            .where(*self._record_key(holder, feature_key, period_start))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def archive_expired(self, holder: Holder, period_end_cutoff: datetime) -> int:
        """Copy records whose period ended at or before the cutoff into the archive."""
        records = await self._expired_records(holder, period_end_cutoff)
        if not records:
            return 0

        await self.db.execute(
            insert(UsageArchive),
            [
                {
                    "holder_type": record.holder_type,
                    "holder_id": record.holder_id,
                    "feature_key": record.feature_key,
                    "period_start": record.period_start,
                    "period_end": record.period_end,
                    "used": record.used,
                    "extra_allowance": record.extra_allowance,
                }
                for record in records
            ],
        )
        return len(records)

    async def delete_expired(self, holder: Holder, period_end_cutoff: datetime) -> int:
        """
        Delete records whose period ended at or before the cutoff.

        Returns:
            Number of records deleted
        """
        result = await self.db.execute(
            delete(UsageRecord)
            .where(
                UsageRecord.holder_type == holder.kind,
                UsageRecord.holder_id == holder.id,
                UsageRecord.period_end <= period_end_cutoff,
            )
            .execution_options(synchronize_session=False)
        )
        deleted = result.rowcount or 0

        if deleted:
            logger.info("usage_records_purged", holder=str(holder), cutoff=period_end_cutoff.isoformat(), count=deleted)
        return deleted

    async def _expired_records(self, holder: Holder, period_end_cutoff: datetime) -> list[UsageRecord]:
        result = await self.db.execute(
            select(UsageRecord).where(
                UsageRecord.holder_type == holder.kind,
                UsageRecord.holder_id == holder.id,
                UsageRecord.period_end <= period_end_cutoff,
            )
        )
        return list(result.scalars().all())
