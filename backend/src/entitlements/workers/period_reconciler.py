"""Billing period reconciler.

Runs daily to:
1. Finalize pending cancellations whose period has ended
2. Advance expired billing periods of active subscriptions
3. Purge (optionally archive) usage records of closed periods

Every subscription is reconciled in its own transaction; a failure is logged
and the subscription is picked up again on the next run. A second run right
after the first is a no-op because advanced periods no longer match the
``current_period_end <= now`` selection.

Usage (with ARQ):
    arq entitlements.workers.period_reconciler.WorkerSettings

Manual run:
    python -m entitlements.workers.period_reconciler
"""
import asyncio
import time
from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from arq import cron
from arq.connections import RedisSettings
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from entitlements.config import settings
from entitlements.database import AsyncSessionLocal
from entitlements.exceptions import StorageUnavailable
from entitlements.holders import Holder
from entitlements.metrics import (
    billing_periods_advanced_total,
    reconciler_errors_total,
    reconciler_run_duration_seconds,
    usage_records_purged_total,
)
from entitlements.models.subscription import Subscription, SubscriptionStatus
from entitlements.services.subscription_service import SubscriptionService
from entitlements.services.usage_ledger import UsageLedger
from entitlements.tracing import get_tracer

logger = structlog.get_logger(__name__)
tracer = get_tracer(__name__)

# ARQ hard limit; reconciler_max_duration_seconds only triggers a warning
RECONCILER_JOB_TIMEOUT_SECONDS = 24 * 60 * 60


async def reconcile_billing_periods(
    session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
    now: datetime | None = None,
    max_duration_seconds: float | None = None,
) -> dict[str, Any]:
    """
    Reconcile every active subscription whose billing period has ended.

    Args:
        session_factory: Session factory (one session per subscription)
        now: Reconciliation instant (defaults to the current UTC time)
        max_duration_seconds: Overrun warning threshold (defaults to settings)

    Returns:
        Dict with counts of processed, advanced, canceled and failed subscriptions

    Raises:
        StorageUnavailable: If the due subscriptions cannot be selected
    """
    now = now or datetime.utcnow()
    max_duration = (
        max_duration_seconds if max_duration_seconds is not None else settings.reconciler_max_duration_seconds
    )
    started = time.monotonic()

    with tracer.start_as_current_span("reconcile_billing_periods") as span:
        try:
            async with session_factory() as db:
                to_cancel = await _find_due_subscriptions(db, now, cancel_at_period_end=True)
                to_advance = await _find_due_subscriptions(db, now, cancel_at_period_end=False)
        except SQLAlchemyError as e:
            logger.exception("reconciler_selection_failed", exc_info=e)
            raise StorageUnavailable("Could not select subscriptions due for reconciliation") from e

        logger.info(
            "reconciler_started",
            now=now.isoformat(),
            cancellations_due=len(to_cancel),
            advances_due=len(to_advance),
        )

        summary: dict[str, Any] = {
            "subscriptions_processed": 0,
            "periods_advanced": 0,
            "subscriptions_canceled": 0,
            "usage_records_deleted": 0,
            "errors": 0,
            "overran": False,
        }

        # Cancellations first so a subscription matching both sweeps is never advanced
        due = to_cancel + to_advance

        def flag_overrun() -> None:
            if summary["overran"]:
                return
            summary["overran"] = True
            logger.warning(
                "reconciler_run_overran",
                elapsed_seconds=round(time.monotonic() - started, 2),
                max_duration_seconds=max_duration,
                processed=summary["subscriptions_processed"] + summary["errors"],
                due=len(due),
            )

        # Logs the overrun even while a single update is blocked
        watchdog = asyncio.get_running_loop().call_later(max_duration, flag_overrun)
        try:
            for subscription_id in due:
                await _reconcile_subscription(session_factory, subscription_id, now, summary)
        finally:
            watchdog.cancel()

        if time.monotonic() - started > max_duration:
            flag_overrun()

        duration = time.monotonic() - started
        reconciler_run_duration_seconds.observe(duration)
        span.set_attribute("reconciler.subscriptions_processed", summary["subscriptions_processed"])
        span.set_attribute("reconciler.errors", summary["errors"])

        logger.info("reconciler_completed", duration_seconds=round(duration, 2), **summary)
        return summary


async def _find_due_subscriptions(db: AsyncSession, now: datetime, cancel_at_period_end: bool) -> list[UUID]:
    """IDs of active subscriptions whose period ended at or before ``now``."""
    result = await db.execute(
        select(Subscription.id)
        .where(
            Subscription.status == SubscriptionStatus.ACTIVE,
            Subscription.current_period_end <= now,
            Subscription.cancel_at_period_end == cancel_at_period_end,
        )
        .order_by(Subscription.current_period_end)
    )
    return list(result.scalars().all())


async def _reconcile_subscription(
    session_factory: async_sessionmaker[AsyncSession],
    subscription_id: UUID,
    now: datetime,
    summary: dict[str, Any],
) -> None:
    """Cancel or advance one subscription and purge its closed-period usage in a single transaction."""
    async with session_factory() as db:
        try:
            subscription = await db.get(Subscription, subscription_id)

            # Re-check: another run or a plan change may have moved it since selection
            if (
                subscription is None
                or subscription.status != SubscriptionStatus.ACTIVE
                or subscription.current_period_end > now
            ):
                logger.info("subscription_reconcile_skipped", subscription_id=str(subscription_id))
                return

            service = SubscriptionService(db)
            ledger = UsageLedger(db)
            holder = Holder(kind=subscription.holder_type, id=subscription.holder_id)
            old_end = subscription.current_period_end
            canceled = subscription.cancel_at_period_end
            advanced = 0

            if canceled:
                await service.finalize_cancellation(subscription, now, reason="period_end")
                logger.info(
                    "subscription_canceled_at_period_end",
                    subscription_id=str(subscription.id),
                    period_end=old_end.isoformat(),
                )
            else:
                plan = await service.catalog.require_plan(subscription.plan_id)
                advanced = await service.advance_period(subscription, plan, now)
                logger.info(
                    "subscription_period_advanced",
                    subscription_id=str(subscription.id),
                    new_period_start=subscription.current_period_start.isoformat(),
                    new_period_end=subscription.current_period_end.isoformat(),
                    intervals=advanced,
                )

            if settings.usage_archive_enabled:
                await ledger.archive_expired(holder, old_end)
            deleted = await ledger.delete_expired(holder, old_end)

            await db.commit()

            summary["subscriptions_processed"] += 1
            summary["subscriptions_canceled"] += int(canceled)
            summary["periods_advanced"] += advanced
            if advanced:
                billing_periods_advanced_total.labels(interval=plan.interval.value).inc(advanced)
            summary["usage_records_deleted"] += deleted
            usage_records_purged_total.inc(deleted)

        except Exception as e:
            await db.rollback()
            summary["errors"] += 1
            reconciler_errors_total.labels(error_type=type(e).__name__).inc()
            logger.exception(
                "subscription_reconcile_failed",
                subscription_id=str(subscription_id),
                error_type=type(e).__name__,
                exc_info=e,
            )


async def run_reconciler(ctx: dict) -> dict[str, Any]:
    """ARQ job entry point."""
    return await reconcile_billing_periods()


class WorkerSettings:
    """
    ARQ worker settings for the billing period reconciler.

    Schedule:
    - Reconciler: daily at ``reconciler_cron_hour`` UTC

    Overruns of ``reconciler_max_duration_seconds`` are only logged. The ARQ
    timeout is ``RECONCILER_JOB_TIMEOUT_SECONDS`` so a slow run finishes its
    batch instead of being cancelled part way through a subscription update.

    Usage:
        arq entitlements.workers.period_reconciler.WorkerSettings
    """

    functions = [run_reconciler]

    cron_jobs = [
        cron(
            run_reconciler,
            hour={settings.reconciler_cron_hour},
            minute={0},
            run_at_startup=False,
            unique=True,
            timeout=RECONCILER_JOB_TIMEOUT_SECONDS,
        ),
    ]

    redis_settings = RedisSettings.from_dsn(str(settings.arq_redis_url))

    # Job retention
    keep_result = 86400  # Keep results for 24 hours

    max_jobs = 1
    job_timeout = RECONCILER_JOB_TIMEOUT_SECONDS


# Manual trigger (CLI and admin endpoint)
async def trigger_manual_reconcile() -> dict[str, Any]:
    """
    Manually trigger a reconciler run for operational recovery.

    Returns:
        Dict with run summary
    """
    logger.info("manual_reconciler_trigger")
    return await reconcile_billing_periods()


if __name__ == "__main__":
    from entitlements.middleware.logging import setup_logging

    setup_logging()
    print(asyncio.run(trigger_manual_reconcile()))
