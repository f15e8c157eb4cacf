from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal

from sqlalchemy.orm import Session

from app.repositories import (
    AllocationRepository,
    GameRepository,
    GameRequestRepository,
    PayoutSummary,
    SettlementRepository,
)

from .models import AllocationPool, Game, GameRequest, SettlementRecord


def create_game(
    session: Session,
    *,
    game_type: str,
    created_by_fid: int | None,
    title: str | None = None,
    community: str | None = None,
    prize_amount: Decimal | None = None,
    required_positions: Sequence[str] | None = None,
    eligible_fids: Sequence[int] | None = None,
    is_preview: bool = False,
) -> Game:
    return GameRepository(session).create_game(
        game_type=game_type,
        created_by_fid=created_by_fid,
        title=title,
        community=community,
        prize_amount=prize_amount,
        required_positions=required_positions,
        eligible_fids=eligible_fids,
        is_preview=is_preview,
    )


def get_game(session: Session, game_id: str) -> Game | None:
    return GameRepository(session).get(game_id)


def list_games(session: Session, *, status: str | None = None, limit: int = 50) -> list[Game]:
    return GameRepository(session).list_games(status=status, limit=limit)


def list_settlements(
    session: Session, game_id: str, *, include_pending: bool = False
) -> list[SettlementRecord]:
    return SettlementRepository(session).records_for_game(
        game_id, include_pending=include_pending
    )


def settlement_history(
    session: Session, *, limit: int = 50, game_type: str | None = None
) -> list[SettlementRecord]:
    return SettlementRepository(session).history(limit=limit, game_type=game_type)


def payouts_for_fid(session: Session, fid: int) -> PayoutSummary:
    return SettlementRepository(session).payouts_for_fid(fid)


def get_game_request(session: Session, request_id: str) -> GameRequest | None:
    return GameRequestRepository(session).get(request_id)


def list_game_requests(
    session: Session, *, status: str | None = None, limit: int = 50
) -> list[GameRequest]:
    return GameRequestRepository(session).list_requests(status=status, limit=limit)


def get_pool(session: Session, pool_id: str) -> AllocationPool | None:
    return AllocationRepository(session).get_pool(pool_id)


def pool_units_for_fid(session: Session, pool_id: str, fid: int) -> list[int]:
    return AllocationRepository(session).units_for_fid(pool_id, fid)
