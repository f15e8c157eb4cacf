"""Repository abstractions for database interactions."""

from .allocation_repository import AllocationRepository
from .game_repository import GameRepository
from .request_repository import GameRequestRepository
from .settlement_repository import SettlementRepository
from .types import LedgerRow, PayoutSummary

__all__ = [
    "AllocationRepository",
    "GameRepository",
    "GameRequestRepository",
    "SettlementRepository",
    "LedgerRow",
    "PayoutSummary",
]
