"""Unit tests for billing period calendar arithmetic."""
from datetime import datetime

import pytest

from entitlements.models.plan import PlanInterval
from entitlements.utils.periods import add_interval, intervals_elapsed, next_period


def test_monthly_period_from_jan_31_ends_on_leap_day() -> None:
    """Test that a period starting Jan 31 2024 ends on Feb 29, not Mar 2."""
    assert add_interval(datetime(2024, 1, 31), PlanInterval.MONTHLY) == datetime(2024, 2, 29)
    assert add_interval(datetime(2023, 1, 31), PlanInterval.MONTHLY) == datetime(2023, 2, 28)


def test_monthly_chain_returns_to_anchor_day() -> None:
    """Test that boundaries are computed from the anchor and do not drift after a short month."""
    anchor = datetime(2024, 1, 31, 9, 30)

    boundaries = [add_interval(anchor, PlanInterval.MONTHLY, count) for count in range(1, 5)]

    assert boundaries == [
        datetime(2024, 2, 29, 9, 30),
        datetime(2024, 3, 31, 9, 30),
        datetime(2024, 4, 30, 9, 30),
        datetime(2024, 5, 31, 9, 30),
    ]


def test_monthly_interval_crosses_year_end() -> None:
    assert add_interval(datetime(2024, 12, 15), PlanInterval.MONTHLY) == datetime(2025, 1, 15)
    assert add_interval(datetime(2024, 11, 30), PlanInterval.MONTHLY, 3) == datetime(2025, 2, 28)


def test_annual_interval_from_leap_day() -> None:
    """Test that an annual period anchored on Feb 29 ends on Feb 28 of a non-leap year."""
    assert add_interval(datetime(2024, 2, 29), PlanInterval.ANNUAL) == datetime(2025, 2, 28)
    assert add_interval(datetime(2024, 2, 29), PlanInterval.ANNUAL, 4) == datetime(2028, 2, 29)


@pytest.mark.parametrize(
    "boundary, expected",
    [
        (datetime(2024, 1, 31), 0),
        (datetime(2024, 2, 29), 1),
        (datetime(2024, 3, 31), 2),
        (datetime(2024, 4, 30), 3),
    ],
)
def test_intervals_elapsed_on_clamped_chain(boundary: datetime, expected: int) -> None:
    assert intervals_elapsed(datetime(2024, 1, 31), boundary, PlanInterval.MONTHLY) == expected


def test_next_period_after_leap_day_end() -> None:
    """Test that the period after [Jan 31, Feb 29) is [Feb 29, Mar 31)."""
    start, end, advanced = next_period(
        anchor=datetime(2024, 1, 31),
        period_end=datetime(2024, 2, 29),
        interval=PlanInterval.MONTHLY,
        now=datetime(2024, 3, 1),
    )

    assert (start, end, advanced) == (datetime(2024, 2, 29), datetime(2024, 3, 31), 1)


def test_next_period_catches_up_over_missed_intervals() -> None:
    """Test that a subscription missed for several months lands on the period containing now."""
    start, end, advanced = next_period(
        anchor=datetime(2024, 1, 10),
        period_end=datetime(2024, 2, 10),
        interval=PlanInterval.MONTHLY,
        now=datetime(2024, 5, 20),
    )

    assert start == datetime(2024, 5, 10)
    assert end == datetime(2024, 6, 10)
    assert advanced == 4
    assert start <= datetime(2024, 5, 20) < end


def test_next_period_when_now_equals_boundary() -> None:
    """Test that periods are half-open: now on the boundary belongs to the next period."""
    start, end, advanced = next_period(
        anchor=datetime(2024, 1, 1),
        period_end=datetime(2024, 2, 1),
        interval=PlanInterval.MONTHLY,
        now=datetime(2024, 3, 1),
    )

    assert (start, end, advanced) == (datetime(2024, 3, 1), datetime(2024, 4, 1), 2)


def test_next_annual_period() -> None:
    start, end, advanced = next_period(
        anchor=datetime(2023, 6, 1),
        period_end=datetime(2024, 6, 1),
        interval=PlanInterval.ANNUAL,
        now=datetime(2024, 6, 2),
    )

    assert (start, end, advanced) == (datetime(2024, 6, 1), datetime(2025, 6, 1), 1)
