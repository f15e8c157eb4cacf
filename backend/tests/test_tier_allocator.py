from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from app.domain import TierWindow
from app.services import tier_allocator

NOW = datetime(2026, 2, 8, 18, 0, tzinfo=timezone.utc)
M = Decimal(1_000_000)


def _windows(*, tier1_open: bool = True, tier2_open: bool = False) -> list[TierWindow]:
    past = NOW - timedelta(hours=2)
    return [
        TierWindow(
            min_stake=50 * M,
            allocation_count=1,
            opens_at=past,
            closes_at=NOW + timedelta(hours=1),
            name="tier3",
        ),
        TierWindow(
            min_stake=200 * M,
            allocation_count=3,
            opens_at=past,
            closes_at=NOW + timedelta(hours=1) if tier1_open else NOW - timedelta(minutes=1),
            name="tier1",
        ),
        TierWindow(
            min_stake=100 * M,
            allocation_count=2,
            opens_at=past if tier2_open else NOW + timedelta(minutes=30),
            closes_at=None,
            name="tier2",
        ),
    ]


def test_stake_exactly_at_threshold_qualifies():
    """Verify a stake equal to the minimum qualifies for that tier."""
    evaluation = tier_allocator.evaluate(50 * M, _windows(), NOW)

    assert evaluation is not None
    assert evaluation.tier == "tier3"
    assert evaluation.allocation_count == 1


def test_closed_top_window_falls_through_with_top_allocation():
    """Verify a tier-1 staker claims through the open tier-3 window with the tier-1 count."""
    evaluation = tier_allocator.evaluate(200 * M, _windows(tier1_open=False), NOW)

    assert evaluation is not None
    assert evaluation.allocation_count == 3
    assert evaluation.tier == "tier1"
    assert evaluation.window.name == "tier3"


def test_highest_open_window_is_used():
    evaluation = tier_allocator.evaluate(250 * M, _windows(), NOW)

    assert evaluation.window.name == "tier1"
    assert evaluation.allocation_count == 3


def test_windows_scanned_in_descending_stake_order():
    ordered = tier_allocator.ordered_windows(_windows())

    assert [window.name for window in ordered] == ["tier1", "tier2", "tier3"]


def test_below_minimum_is_ineligible():
    assert tier_allocator.evaluate(49 * M, _windows(), NOW) is None

    error = tier_allocator.ineligibility(49 * M, _windows(), NOW)

    assert error.reason == "below_minimum"
    assert "Minimum" in error.message


def test_unopened_window_reports_opening_time():
    """Verify a staker whose only window is upcoming learns when it opens."""
    windows = [window for window in _windows() if window.name == "tier2"]

    assert tier_allocator.evaluate(120 * M, windows, NOW) is None
    error = tier_allocator.ineligibility(120 * M, windows, NOW)

    assert error.reason == "window_not_open"
    assert error.opens_at == NOW + timedelta(minutes=30)
    assert "2 unit(s)" in error.message


def test_all_windows_closed():
    windows = [
        TierWindow(min_stake=10 * M, allocation_count=1, closes_at=NOW - timedelta(seconds=1)),
    ]

    assert tier_allocator.evaluate(20 * M, windows, NOW) is None
    assert tier_allocator.ineligibility(20 * M, windows, NOW).reason == "windows_closed"


def test_window_bounds_are_inclusive():
    window = TierWindow(min_stake=Decimal(0), allocation_count=1, opens_at=NOW, closes_at=NOW)

    assert window.is_open(NOW)
    assert not window.is_open(NOW + timedelta(microseconds=1))


def test_max_allocation_uses_top_tier():
    assert tier_allocator.max_allocation(150 * M, _windows()) == 2
    assert tier_allocator.max_allocation(1 * M, _windows()) is None
