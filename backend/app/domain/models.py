"""Typed domain representations passed between settlement, approval and claim services."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any


def position_key_for(fid: int, position: int, explicit: str | None = None) -> str:
    """Return the ledger key for a winner.

    Explicit keys (``q1``, ``final``...) win; ranked winners use their rank and
    unranked winners (position 0) are keyed by fid.
    """

    if explicit:
        return explicit
    if position > 0:
        return str(position)
    return f"fid:{fid}"


@dataclass(slots=True)
class WinnerEntry:
    """Caller supplied winner; untrusted until resolved."""

    fid: int
    amount: Decimal
    position: int = 0
    position_key: str | None = None

    @property
    def key(self) -> str:
        return position_key_for(self.fid, self.position, self.position_key)


@dataclass(slots=True)
class ResolvedWinner:
    """Winner bound to the payout address it will receive tokens at."""

    fid: int
    amount: Decimal
    position: int
    address: str
    position_key: str | None = None

    @property
    def key(self) -> str:
        return position_key_for(self.fid, self.position, self.position_key)


@dataclass(slots=True)
class TierWindow:
    """Stake-gated allocation window with optional open and close bounds."""

    min_stake: Decimal
    allocation_count: int
    opens_at: datetime | None = None
    closes_at: datetime | None = None
    name: str | None = None

    def is_open(self, now: datetime) -> bool:
        if self.opens_at is not None and now < self.opens_at:
            return False
        if self.closes_at is not None and now > self.closes_at:
            return False
        return True


@dataclass(slots=True)
class TierEvaluation:
    """Entitlement from the highest qualifying tier, claimable through ``window``."""

    allocation_count: int
    window: TierWindow
    tier: str | None = None


@dataclass(slots=True)
class ClaimResult:
    """Outcome of an approve-and-create claim."""

    claimed: bool
    request_id: str
    resource_id: str | None = None
    idempotent: bool = False


@dataclass(slots=True)
class SettlementOutcome:
    game_id: str
    tx_hashes: list[str | None] = field(default_factory=list)
    resolved_winners: list[ResolvedWinner] = field(default_factory=list)
    skipped_positions: list[str] = field(default_factory=list)
    unconfirmed_positions: list[str] = field(default_factory=list)
    game_status: str = "open"
    finalized: bool = False

    @property
    def tx_hash(self) -> str | None:
        """Last transaction of the batch, mirroring the single-hash API field."""

        hashes = [tx for tx in self.tx_hashes if tx]
        return hashes[-1] if hashes else None


@dataclass(slots=True)
class PreviewLine:
    fid: int
    amount: Decimal
    position: int
    position_key: str
    address: str | None
    already_paid: bool
    tx_hash: str | None = None
    error: str | None = None


@dataclass(slots=True)
class AllocationOutcome:
    pool_id: str
    fid: int
    allocation_count: int
    claimed_units: list[int] = field(default_factory=list)
    total_claimed: int = 0
    tier: str | None = None


@dataclass(slots=True)
class SettlementEvent:
    """Emitted once per committed settlement batch for best-effort notification."""

    game_id: str
    game_type: str
    winner_fids: list[int]
    tx_hashes: list[str | None]
    finalized: bool
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "gameId": self.game_id,
            "gameType": self.game_type,
            "winnerFids": list(self.winner_fids),
            "txHashes": list(self.tx_hashes),
            "finalized": self.finalized,
            **self.extra,
        }
