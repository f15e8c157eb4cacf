"""Settlement ledger persistence helpers."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, selectinload

from app.models import Game, SettlementRecord, SettlementStatus, utcnow

from .types import LedgerRow, PayoutSummary

PAID = SettlementStatus.PAID.value
PENDING = SettlementStatus.PENDING.value


class SettlementRepository:
    """Access to ``settlement_records``.

    A row is written ``pending`` with no hash to reserve its position before
    any transfer, then flipped to ``paid`` exactly once. Paid rows are never
    modified again.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def insert_records(
        self,
        game_id: str,
        rows: Iterable[LedgerRow],
        *,
        settled_by_fid: int,
        notes: str | None = None,
        settled_at: datetime | None = None,
    ) -> list[SettlementRecord]:
        timestamp = settled_at or utcnow()
        records: list[SettlementRecord] = []
        for row in rows:
            record = SettlementRecord(
                game_id=game_id,
                position_key=row.position_key,
                position=row.position,
                winner_fid=row.fid,
                amount=row.amount,
                address=row.address,
                settled_by_fid=settled_by_fid,
                settled_at=timestamp,
                tx_hash=row.tx_hash,
                status=row.status,
                notes=notes,
            )
            self._session.add(record)
            records.append(record)
        # Surfaces uq_settlement_game_position violations inside the caller's transaction.
        self._session.flush()
        return records

    def confirm_pending(self, game_id: str, position_key: str, *, tx_hash: str) -> int:
        """Conditionally set the hash of a reserved row; returns affected row count."""

        statement = (
            update(SettlementRecord)
            .where(
                SettlementRecord.game_id == game_id,
                SettlementRecord.position_key == position_key,
                SettlementRecord.status == PENDING,
                SettlementRecord.tx_hash.is_(None),
            )
            .values(status=PAID, tx_hash=tx_hash, settled_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = self._session.execute(statement)
        return result.rowcount or 0

    def delete_pending(self, game_id: str, position_keys: Sequence[str]) -> int:
        if not position_keys:
            return 0
        statement = (
            delete(SettlementRecord)
            .where(
                SettlementRecord.game_id == game_id,
                SettlementRecord.position_key.in_(list(position_keys)),
                SettlementRecord.status == PENDING,
                SettlementRecord.tx_hash.is_(None),
            )
            .execution_options(synchronize_session=False)
        )
        result = self._session.execute(statement)
        return result.rowcount or 0

    # ------------------------------------------------------------------
    # Queries

    def position_keys(self, game_id: str, *, status: str | None = None) -> set[str]:
        query = select(SettlementRecord.position_key).where(SettlementRecord.game_id == game_id)
        if status:
            query = query.where(SettlementRecord.status == status)
        return set(self._session.execute(query).scalars().all())

    def settled_position_keys(self, game_id: str) -> set[str]:
        return self.position_keys(game_id, status=PAID)

    def pending_position_keys(self, game_id: str) -> set[str]:
        return self.position_keys(game_id, status=PENDING)

    def has_position(self, game_id: str, position_key: str) -> bool:
        query = (
            select(SettlementRecord.id)
            .where(
                SettlementRecord.game_id == game_id,
                SettlementRecord.position_key == position_key,
            )
            .limit(1)
        )
        return self._session.execute(query).first() is not None

    def records_for_game(
        self, game_id: str, *, include_pending: bool = False
    ) -> list[SettlementRecord]:
        query = (
            select(SettlementRecord)
            .where(SettlementRecord.game_id == game_id)
            .order_by(SettlementRecord.id)
        )
        if not include_pending:
            query = query.where(SettlementRecord.status == PAID)
        return list(self._session.execute(query).scalars().all())

    def records_by_key(
        self, game_id: str, *, include_pending: bool = False
    ) -> dict[str, SettlementRecord]:
        records = self.records_for_game(game_id, include_pending=include_pending)
        return {record.position_key: record for record in records}

    def history(self, *, limit: int = 50, game_type: str | None = None) -> list[SettlementRecord]:
        query = (
            select(SettlementRecord)
            .options(selectinload(SettlementRecord.game))
            .where(SettlementRecord.status == PAID)
            .order_by(SettlementRecord.settled_at.desc(), SettlementRecord.id.desc())
            .limit(limit)
        )
        if game_type:
            query = query.join(Game, Game.id == SettlementRecord.game_id).where(
                Game.game_type == game_type
            )
        return list(self._session.execute(query).scalars().all())

    def payouts_for_fid(self, fid: int) -> PayoutSummary:
        query = (
            select(SettlementRecord)
            .options(selectinload(SettlementRecord.game))
            .where(SettlementRecord.winner_fid == fid, SettlementRecord.status == PAID)
            .order_by(SettlementRecord.settled_at.desc(), SettlementRecord.id.desc())
        )
        records = list(self._session.execute(query).scalars().all())
        total_query = select(func.coalesce(func.sum(SettlementRecord.amount), 0)).where(
            SettlementRecord.winner_fid == fid, SettlementRecord.status == PAID
        )
        total = self._session.execute(total_query).scalar_one()
        return PayoutSummary(fid=fid, total_amount=total, records=records)


__all__ = ["SettlementRepository"]
