"""Stake-gated, time-windowed entitlement evaluation.

Windows are scanned from the highest stake threshold down. The allocation
count always comes from the highest tier the stake qualifies for, even when
the claim goes through a lower tier's window because the higher one closed.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal

from app.core.errors import IneligibleError
from app.domain import TierEvaluation, TierWindow


def ordered_windows(windows: Sequence[TierWindow]) -> list[TierWindow]:
    return sorted(windows, key=lambda window: Decimal(window.min_stake), reverse=True)


def _qualifies(stake: Decimal, window: TierWindow) -> bool:
    return Decimal(stake) >= Decimal(window.min_stake)


def top_tier(stake: Decimal, windows: Sequence[TierWindow]) -> TierWindow | None:
    for window in ordered_windows(windows):
        if _qualifies(stake, window):
            return window
    return None


def max_allocation(stake: Decimal, windows: Sequence[TierWindow]) -> int | None:
    tier = top_tier(stake, windows)
    return tier.allocation_count if tier is not None else None


def evaluate(
    stake: Decimal, windows: Sequence[TierWindow], now: datetime
) -> TierEvaluation | None:
    tier = top_tier(stake, windows)
    if tier is None:
        return None
    for window in ordered_windows(windows):
        if _qualifies(stake, window) and window.is_open(now):
            return TierEvaluation(allocation_count=tier.allocation_count, window=window, tier=tier.name)
    return None


def next_opening(stake: Decimal, windows: Sequence[TierWindow], now: datetime) -> datetime | None:
    """Earliest future opening among windows the stake qualifies for."""

    upcoming = [
        window.opens_at
        for window in windows
        if _qualifies(stake, window) and window.opens_at is not None and window.opens_at > now
    ]
    return min(upcoming) if upcoming else None


def ineligibility(stake: Decimal, windows: Sequence[TierWindow], now: datetime) -> IneligibleError:
    """Explain why :func:`evaluate` returned nothing."""

    minimum = min((Decimal(window.min_stake) for window in windows), default=None)
    if top_tier(stake, windows) is None:
        return IneligibleError(
            f"Insufficient stake. Minimum {minimum} required, you have {stake}.",
            reason="below_minimum",
        )
    opens_at = next_opening(stake, windows, now)
    if opens_at is not None:
        count = max_allocation(stake, windows)
        return IneligibleError(
            f"You will be able to claim {count} unit(s) when your window opens at {opens_at.isoformat()}",
            reason="window_not_open",
            opens_at=opens_at,
        )
    return IneligibleError("All claim windows you qualify for have closed", reason="windows_closed")


__all__ = [
    "evaluate",
    "ineligibility",
    "max_allocation",
    "next_opening",
    "ordered_windows",
    "top_tier",
]
