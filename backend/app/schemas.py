from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .domain import WinnerEntry


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


def _as_amount(value: Any) -> str | None:
    """Render a token quantity as an exact decimal string."""

    if value is None:
        return None
    return format(Decimal(str(value)).normalize(), "f")


# ----------------------------------------------------------------------
# Games and settlement


class GameCreate(CamelModel):
    game_type: str = Field(min_length=1)
    title: str | None = None
    community: str | None = None
    prize_amount: Decimal | None = Field(default=None, ge=0)
    required_positions: list[str] | None = None
    eligible_fids: list[int] | None = None
    is_preview: bool = False


class Game(CamelModel):
    id: str
    game_type: str
    title: str | None = None
    community: str | None = None
    status: str
    prize_amount: str | None = None
    required_positions: list[str] | None = None
    eligible_fids: list[int] | None = None
    is_preview: bool = False
    created_by_fid: int | None = None
    settled_by_fid: int | None = None
    settled_at: datetime | None = None
    settle_tx_hash: str | None = None
    created_at: datetime

    @field_validator("prize_amount", mode="before")
    @classmethod
    def _coerce_decimal(cls, value: Any) -> str | None:
        return _as_amount(value)


class WinnerIn(CamelModel):
    fid: int
    amount: Decimal
    position: int | None = Field(default=None, ge=0)
    position_key: str | None = None


def to_winner_entries(winners: list[WinnerIn]) -> list[WinnerEntry]:
    """Convert request winners; a missing position defaults to list order (1-based)."""

    return [
        WinnerEntry(
            fid=winner.fid,
            amount=winner.amount,
            position=winner.position if winner.position is not None else index,
            position_key=winner.position_key or None,
        )
        for index, winner in enumerate(winners, start=1)
    ]


class SettleRequest(CamelModel):
    winners: list[WinnerIn]
    confirm: bool = False
    advantage_only: bool = False
    notes: str | None = None


class PreviewRequest(CamelModel):
    winners: list[WinnerIn]


class ResolvedWinnerOut(CamelModel):
    fid: int
    amount: str
    position: int
    position_key: str
    address: str

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_decimal(cls, value: Any) -> str | None:
        return _as_amount(value)


class SettleResponse(CamelModel):
    ok: bool = True
    game_id: str
    tx_hash: str | None = None
    tx_hashes: list[str | None] = Field(default_factory=list)
    tx_urls: list[str | None] = Field(default_factory=list)
    resolved_winners: list[ResolvedWinnerOut] = Field(default_factory=list)
    skipped_positions: list[str] = Field(default_factory=list)
    unconfirmed_positions: list[str] = Field(default_factory=list)
    game_status: str
    finalized: bool = False


class PreviewLineOut(CamelModel):
    fid: int
    amount: str
    position: int
    position_key: str
    address: str | None = None
    already_paid: bool
    tx_hash: str | None = None
    tx_url: str | None = None
    error: str | None = None

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_decimal(cls, value: Any) -> str | None:
        return _as_amount(value)


class PreviewResponse(CamelModel):
    ok: bool = True
    game_id: str
    winners: list[PreviewLineOut]


class ReconcileRequest(CamelModel):
    position_key: str = Field(min_length=1)
    tx_hash: str | None = Field(default=None, pattern=r"^0x[0-9a-fA-F]{64}$")
    confirm: bool = False


class FinalizeResponse(CamelModel):
    ok: bool = True
    game_id: str
    game_status: str
    finalized: bool


class SettlementRecord(CamelModel):
    id: int
    game_id: str
    position_key: str
    position: int
    winner_fid: int
    amount: str
    address: str
    settled_by_fid: int
    settled_at: datetime
    tx_hash: str | None = None
    tx_url: str | None = None
    status: str = "paid"
    notes: str | None = None

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_decimal(cls, value: Any) -> str | None:
        return _as_amount(value)


class SettlementList(CamelModel):
    total: int
    items: list[SettlementRecord]


class GameList(CamelModel):
    total: int
    items: list[Game]


class PayoutsByFid(CamelModel):
    fid: int
    total_amount: str
    items: list[SettlementRecord]

    @field_validator("total_amount", mode="before")
    @classmethod
    def _coerce_decimal(cls, value: Any) -> str | None:
        return _as_amount(value)


# ----------------------------------------------------------------------
# Game requests


class GameRequestCreate(CamelModel):
    payload: dict[str, Any]


class GameRequest(CamelModel):
    id: str
    requester_fid: int
    payload: dict[str, Any]
    status: str
    approved_by_fid: int | None = None
    approved_at: datetime | None = None
    created_game_id: str | None = None
    rejected_by_fid: int | None = None
    rejection_reason: str | None = None
    created_at: datetime


class GameRequestList(CamelModel):
    total: int
    items: list[GameRequest]


class RejectRequest(CamelModel):
    reason: str | None = None


class ApproveResponse(CamelModel):
    ok: bool = True
    request_id: str
    resource_id: str | None
    idempotent: bool = False


# ----------------------------------------------------------------------
# Allocation pools


class TierWindowIn(CamelModel):
    name: str | None = None
    min_stake: Decimal = Field(ge=0)
    allocation_count: int = Field(gt=0)
    opens_at: datetime | None = None
    closes_at: datetime | None = None


class TierWindowOut(CamelModel):
    tier_name: str
    min_stake: str
    allocation_count: int
    opens_at: datetime | None = None
    closes_at: datetime | None = None

    @field_validator("min_stake", mode="before")
    @classmethod
    def _coerce_decimal(cls, value: Any) -> str | None:
        return _as_amount(value)


class PoolCreate(CamelModel):
    title: str | None = None
    community: str | None = None
    pool_size: int = Field(default=100, gt=0, le=10_000)
    auto_units_limit: int = Field(default=90, ge=0)
    windows: list[TierWindowIn] = Field(min_length=1)


class Pool(CamelModel):
    id: str
    title: str | None = None
    community: str | None = None
    status: str
    pool_size: int
    auto_units_limit: int
    windows: list[TierWindowOut] = Field(default_factory=list)


class PoolUnits(CamelModel):
    pool_id: str
    fid: int
    units: list[int]


class ClaimRequest(CamelModel):
    requested_units: list[int] = Field(min_length=1)


class AdminAddRequest(CamelModel):
    fid: int = Field(gt=0)
    units: list[int] = Field(min_length=1)


class ClaimResponse(CamelModel):
    ok: bool = True
    pool_id: str
    fid: int
    allocation_count: int
    claimed_units: list[int]
    total_claimed: int
    tier: str | None = None


class Eligibility(CamelModel):
    pool_id: str
    fid: int
    stake: str
    eligible: bool
    allocation_count: int | None = None
    tier: str | None = None
    window: str | None = None
    claimed_units: int = 0
    reason: str | None = None
    message: str | None = None
    opens_at: datetime | None = None

    @field_validator("stake", mode="before")
    @classmethod
    def _coerce_decimal(cls, value: Any) -> str | None:
        return _as_amount(value)


# ----------------------------------------------------------------------
# Communities


class Community(CamelModel):
    name: str
    token_address: str
    staking_address: str
    staking_fn: str
    token_decimals: int
    token_symbol: str
