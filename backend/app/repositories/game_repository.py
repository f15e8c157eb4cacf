"""Game row access."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Sequence

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.models import Game, GameStatus, utcnow


class GameRepository:
    """Encapsulate game persistence concerns."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def create_game(
        self,
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
        game = Game(
            game_type=game_type,
            title=title,
            community=community,
            prize_amount=prize_amount,
            required_positions=list(required_positions) if required_positions else None,
            eligible_fids=[int(fid) for fid in eligible_fids] if eligible_fids is not None else None,
            is_preview=bool(is_preview),
            created_by_fid=created_by_fid,
            status=GameStatus.OPEN.value,
        )
        self._session.add(game)
        self._session.flush()
        return game

    def mark_settled(
        self,
        game_id: str,
        *,
        settled_by_fid: int,
        settle_tx_hash: str | None,
    ) -> int:
        """Conditionally flip a game to settled; returns affected row count."""

        statement = (
            update(Game)
            .where(Game.id == game_id, Game.status != GameStatus.SETTLED.value)
            .values(
                status=GameStatus.SETTLED.value,
                settled_by_fid=settled_by_fid,
                settled_at=utcnow(),
                settle_tx_hash=settle_tx_hash,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = self._session.execute(statement)
        return result.rowcount or 0

    # ------------------------------------------------------------------
    # Queries

    def get(self, game_id: str, *, refresh: bool = False) -> Game | None:
        options: dict[str, Any] = {"populate_existing": True} if refresh else {}
        return self._session.get(Game, game_id, **options)

    def list_games(self, *, status: str | None = None, limit: int = 50) -> list[Game]:
        query = select(Game).order_by(Game.created_at.desc()).limit(limit)
        if status:
            query = query.where(Game.status == status)
        return list(self._session.execute(query).scalars().all())


__all__ = ["GameRepository"]
