"""Shared repository input and result types."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from app.models import SettlementRecord, SettlementStatus


@dataclass(slots=True)
class LedgerRow:
    """One settlement row ready for insertion."""

    position_key: str
    position: int
    fid: int
    amount: Decimal
    address: str
    tx_hash: str | None
    status: str = SettlementStatus.PAID.value


@dataclass(slots=True)
class PayoutSummary:
    fid: int
    total_amount: Decimal
    records: list[SettlementRecord] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.total_amount = Decimal(str(self.total_amount or 0))


__all__ = ["LedgerRow", "PayoutSummary"]
