"""Domain models shared by the settlement, approval and allocation services."""

from .models import (
    AllocationOutcome,
    ClaimResult,
    PreviewLine,
    ResolvedWinner,
    SettlementEvent,
    SettlementOutcome,
    TierEvaluation,
    TierWindow,
    WinnerEntry,
    position_key_for,
)

__all__ = [
    "AllocationOutcome",
    "ClaimResult",
    "PreviewLine",
    "ResolvedWinner",
    "SettlementEvent",
    "SettlementOutcome",
    "TierEvaluation",
    "TierWindow",
    "WinnerEntry",
    "position_key_for",
]
