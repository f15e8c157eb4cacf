from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


class GameStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    LOCKED = "locked"
    SETTLED = "settled"
    CANCELLED = "cancelled"


SETTLEABLE_GAME_STATUSES = frozenset(
    {GameStatus.OPEN.value, GameStatus.CLOSED.value, GameStatus.LOCKED.value}
)


class SettlementStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PoolStatus(str, Enum):
    OPEN = "open"
    CLAIMING = "claiming"
    LOCKED = "locked"
    SETTLED = "settled"


ADMIN_CLAIM_TYPE = "admin"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class Game(Base):
    __tablename__ = "games"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    game_type: Mapped[str] = mapped_column(String, nullable=False)
    title: Mapped[str | None] = mapped_column(String, nullable=True)
    community: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default=GameStatus.OPEN.value, index=True)
    prize_amount: Mapped[Decimal | None] = mapped_column(Numeric(36, 18), nullable=True)
    required_positions: Mapped[list | None] = mapped_column(JSON, nullable=True)
    eligible_fids: Mapped[list | None] = mapped_column(JSON, nullable=True)
    is_preview: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_by_fid: Mapped[int | None] = mapped_column(Integer, nullable=True)
    settled_by_fid: Mapped[int | None] = mapped_column(Integer, nullable=True)
    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    settle_tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    settlements: Mapped[list["SettlementRecord"]] = relationship(
        "SettlementRecord", back_populates="game", order_by="SettlementRecord.id"
    )


class SettlementRecord(Base):
    __tablename__ = "settlement_records"
    __table_args__ = (
        UniqueConstraint("game_id", "position_key", name="uq_settlement_game_position"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    game_id: Mapped[str] = mapped_column(String, ForeignKey("games.id"), nullable=False, index=True)
    position_key: Mapped[str] = mapped_column(String, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    winner_fid: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(36, 18), nullable=False)
    address: Mapped[str] = mapped_column(String(42), nullable=False)
    settled_by_fid: Mapped[int] = mapped_column(Integer, nullable=False)
    settled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=SettlementStatus.PAID.value, index=True
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    game: Mapped[Game] = relationship("Game", back_populates="settlements")


class GameRequest(Base):
    __tablename__ = "game_requests"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    requester_fid: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=RequestStatus.PENDING.value, index=True
    )
    approval_claim_id: Mapped[str | None] = mapped_column(String, nullable=True)
    approved_by_fid: Mapped[int | None] = mapped_column(Integer, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_game_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("games.id"), nullable=True
    )
    rejected_by_fid: Mapped[int | None] = mapped_column(Integer, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class AllocationPool(Base):
    __tablename__ = "allocation_pools"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    title: Mapped[str | None] = mapped_column(String, nullable=True)
    community: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default=PoolStatus.CLAIMING.value)
    pool_size: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    auto_units_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=90)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    windows: Mapped[list["TierWindowRecord"]] = relationship(
        "TierWindowRecord", back_populates="pool", cascade="all, delete-orphan"
    )
    claims: Mapped[list["AllocationClaim"]] = relationship(
        "AllocationClaim", back_populates="pool", cascade="all, delete-orphan"
    )


class TierWindowRecord(Base):
    __tablename__ = "tier_windows"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pool_id: Mapped[str] = mapped_column(String, ForeignKey("allocation_pools.id"), nullable=False, index=True)
    tier_name: Mapped[str] = mapped_column(String, nullable=False)
    min_stake: Mapped[Decimal] = mapped_column(Numeric(36, 18), nullable=False)
    allocation_count: Mapped[int] = mapped_column(Integer, nullable=False)
    opens_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    closes_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    pool: Mapped[AllocationPool] = relationship("AllocationPool", back_populates="windows")


class AllocationClaim(Base):
    __tablename__ = "allocation_claims"
    __table_args__ = (
        UniqueConstraint("pool_id", "unit_index", name="uq_allocation_pool_unit"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pool_id: Mapped[str] = mapped_column(String, ForeignKey("allocation_pools.id"), nullable=False, index=True)
    fid: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    unit_index: Mapped[int] = mapped_column(Integer, nullable=False)
    claim_type: Mapped[str] = mapped_column(String, nullable=False)
    claimed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    pool: Mapped[AllocationPool] = relationship("AllocationPool", back_populates="claims")
