"""Calendar arithmetic for billing periods.

Periods are half-open ``[start, end)`` and every boundary is computed from the
subscription's billing anchor, so a period anchored on Jan 31 runs
Jan 31 -> Feb 29 -> Mar 31 -> Apr 30 rather than drifting to the 28th/29th.
"""
import calendar
from datetime import datetime

from entitlements.models.plan import PlanInterval


def add_interval(anchor: datetime, interval: PlanInterval, count: int = 1) -> datetime:
    """
    Add ``count`` billing intervals to ``anchor``.

    Months are added preserving the anchor's day of month, clamped to the last
    day of shorter months. Annual periods anchored on Feb 29 end on Feb 28 in
    non-leap years.
    """
    if interval == PlanInterval.MONTHLY:
        month = anchor.month + count
        year = anchor.year + (month - 1) // 12
        month = (month - 1) % 12 + 1
        day = min(anchor.day, calendar.monthrange(year, month)[1])
        return anchor.replace(year=year, month=month, day=day)

    try:
        return anchor.replace(year=anchor.year + count)
    except ValueError:
        # Feb 29 -> Feb 28
        return anchor.replace(year=anchor.year + count, day=28)


def intervals_elapsed(anchor: datetime, boundary: datetime, interval: PlanInterval) -> int:
    """Number of whole intervals between ``anchor`` and a period boundary on its chain."""
    if interval == PlanInterval.MONTHLY:
        count = (boundary.year - anchor.year) * 12 + (boundary.month - anchor.month)
    else:
        count = boundary.year - anchor.year

    # Clamping can land a boundary one step short of the naive difference
    while count > 0 and add_interval(anchor, interval, count) > boundary:
        count -= 1
    return max(count, 0)


def next_period(
    anchor: datetime, period_end: datetime, interval: PlanInterval, now: datetime
) -> tuple[datetime, datetime, int]:
    """
    Compute the period containing ``now`` following one that ended at ``period_end``.

    Catches up over missed intervals so the result always satisfies
    ``start <= now < end``.

    Returns:
        (new_start, new_end, intervals_advanced)
    """
    count = intervals_elapsed(anchor, period_end, interval)
    start = period_end
    end = add_interval(anchor, interval, count + 1)
    advanced = 1

    while end <= now:
        count += 1
        start = end
        end = add_interval(anchor, interval, count + 1)
        advanced += 1

    return start, end, advanced
