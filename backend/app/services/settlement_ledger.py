"""Durable per-game payout records and game finalization."""

from __future__ import annotations

from collections.abc import Sequence

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import ConflictError, CorruptionGuardError, NotFoundError, ValidationError
from app.models import Game, GameStatus, SettlementRecord, SettlementStatus
from app.repositories import GameRepository, LedgerRow, SettlementRepository
from app.domain import ResolvedWinner

CORRUPTION_MESSAGE = "Settlement aborted to prevent data corruption"


class SettlementLedger:
    """Ledger keyed by ``(game_id, position_key)``.

    Paid transfers go through ``reserve_positions`` before the transfer and
    ``confirm_transfers`` after it. Writes go through the caller's session;
    committing is the caller's job.
    """

    def __init__(self, session: Session) -> None:
        self._session = session
        self._records = SettlementRepository(session)
        self._games = GameRepository(session)

    def is_already_settled(self, game_id: str, position_key: str) -> bool:
        """True once the position is reserved or paid; it must not be paid again."""

        return self._records.has_position(game_id, position_key)

    def claimed_keys(self, game_id: str) -> set[str]:
        return self._records.position_keys(game_id)

    def settled_keys(self, game_id: str) -> set[str]:
        return self._records.settled_position_keys(game_id)

    def pending_keys(self, game_id: str) -> set[str]:
        return self._records.pending_position_keys(game_id)

    # ------------------------------------------------------------------
    # Writes

    def record_settlement(
        self,
        game_id: str,
        resolved: Sequence[ResolvedWinner],
        tx_hashes: Sequence[str | None],
        *,
        settled_by_fid: int,
        notes: str | None = None,
        allow_missing_hashes: bool = False,
    ) -> list[SettlementRecord]:
        """Insert one paid row per winner, or nothing at all.

        ``allow_missing_hashes`` is only for advantage-only batches, which
        never touch the chain and therefore carry ``None`` hashes.
        """

        self._check_hashes(game_id, resolved, tx_hashes, allow_missing=allow_missing_hashes)
        rows = [
            LedgerRow(
                position_key=winner.key,
                position=winner.position,
                fid=winner.fid,
                amount=winner.amount,
                address=winner.address,
                tx_hash=tx_hash,
            )
            for winner, tx_hash in zip(resolved, tx_hashes)
        ]
        records = self._insert(game_id, rows, settled_by_fid=settled_by_fid, notes=notes)
        logger.info("Recorded {} settlement rows for game {}", len(records), game_id)
        return records

    def reserve_positions(
        self,
        game_id: str,
        resolved: Sequence[ResolvedWinner],
        *,
        settled_by_fid: int,
        notes: str | None = None,
    ) -> list[SettlementRecord]:
        """Claim every position with a pending row; a taken position claims none."""

        rows = [
            LedgerRow(
                position_key=winner.key,
                position=winner.position,
                fid=winner.fid,
                amount=winner.amount,
                address=winner.address,
                tx_hash=None,
                status=SettlementStatus.PENDING.value,
            )
            for winner in resolved
        ]
        records = self._insert(game_id, rows, settled_by_fid=settled_by_fid, notes=notes)
        logger.info(
            "Reserved positions {} of game {} before transfer",
            [row.position_key for row in rows],
            game_id,
        )
        return records

    def confirm_transfers(
        self,
        game_id: str,
        resolved: Sequence[ResolvedWinner],
        tx_hashes: Sequence[str | None],
    ) -> None:
        """Attach confirmed hashes to reserved rows, all of them or none."""

        self._check_hashes(game_id, resolved, tx_hashes, allow_missing=False)
        for winner, tx_hash in zip(resolved, tx_hashes):
            if self._records.confirm_pending(game_id, winner.key, tx_hash=tx_hash) != 1:
                self._session.rollback()
                logger.critical(
                    "{} for game {}: reservation for position {} vanished after transfers {}",
                    CORRUPTION_MESSAGE,
                    game_id,
                    winner.key,
                    list(tx_hashes),
                )
                raise CorruptionGuardError(
                    f"{CORRUPTION_MESSAGE}: position {winner.key} was not reserved for this payout",
                    position=winner.key,
                    fid=winner.fid,
                )
        logger.info("Confirmed {} transfers for game {}", len(tx_hashes), game_id)

    def confirm_position(self, game_id: str, position_key: str, tx_hash: str) -> bool:
        return self._records.confirm_pending(game_id, position_key, tx_hash=tx_hash) == 1

    def release_positions(self, game_id: str, position_keys: Sequence[str]) -> int:
        """Drop reservations whose transfer was never sent."""

        released = self._records.delete_pending(game_id, position_keys)
        if released:
            logger.info("Released positions {} of game {}", list(position_keys), game_id)
        return released

    # ------------------------------------------------------------------
    # Finalization

    def missing_positions(self, game: Game) -> list[str]:
        required = [str(key) for key in (game.required_positions or [])]
        settled = self.settled_keys(game.id)
        return [key for key in required if key not in settled]

    def can_finalize(self, game: Game) -> bool:
        if self.pending_keys(game.id):
            return False
        if game.required_positions:
            return not self.missing_positions(game)
        return bool(self.settled_keys(game.id))

    def finalize(self, game_id: str, *, settled_by_fid: int) -> bool:
        """Mark the game settled; returns False when it already was."""

        game = self._games.get(game_id, refresh=True)
        if game is None:
            raise NotFoundError(f"Game {game_id} not found")
        if game.status == GameStatus.SETTLED.value:
            return False

        missing = self.missing_positions(game)
        if missing:
            raise ValidationError(
                f"Cannot finalize game {game_id}; unsettled positions: {', '.join(missing)}"
            )
        unconfirmed = sorted(self.pending_keys(game_id))
        if unconfirmed:
            raise ValidationError(
                f"Cannot finalize game {game_id}; unconfirmed transfers for positions: "
                f"{', '.join(unconfirmed)}"
            )
        if not game.required_positions and not self.settled_keys(game_id):
            raise ValidationError(f"Cannot finalize game {game_id} without any settlement")

        records = self._records.records_for_game(game_id)
        last_hash = next((record.tx_hash for record in reversed(records) if record.tx_hash), None)
        changed = self._games.mark_settled(
            game_id, settled_by_fid=settled_by_fid, settle_tx_hash=last_hash
        )
        if changed:
            logger.info("Game {} finalized as settled by fid {}", game_id, settled_by_fid)
        self._games.get(game_id, refresh=True)
        return bool(changed)

    # ------------------------------------------------------------------
    # Helpers

    def _insert(
        self,
        game_id: str,
        rows: list[LedgerRow],
        *,
        settled_by_fid: int,
        notes: str | None,
    ) -> list[SettlementRecord]:
        try:
            return self._records.insert_records(
                game_id, rows, settled_by_fid=settled_by_fid, notes=notes
            )
        except IntegrityError as exc:
            self._session.rollback()
            logger.warning(
                "Positions {} of game {} are already claimed by another settlement",
                [row.position_key for row in rows],
                game_id,
            )
            raise ConflictError(
                f"A position of game {game_id} is already being settled by another request"
            ) from exc

    @staticmethod
    def _check_hashes(
        game_id: str,
        resolved: Sequence[ResolvedWinner],
        tx_hashes: Sequence[str | None],
        *,
        allow_missing: bool,
    ) -> None:
        if len(resolved) != len(tx_hashes):
            logger.critical(
                "{} for game {}: {} winners resolved but {} transaction hashes returned: {}",
                CORRUPTION_MESSAGE,
                game_id,
                len(resolved),
                len(tx_hashes),
                list(tx_hashes),
            )
            raise CorruptionGuardError(
                f"{CORRUPTION_MESSAGE}: expected {len(resolved)} transactions, got {len(tx_hashes)}"
            )
        if allow_missing:
            return
        for winner, tx_hash in zip(resolved, tx_hashes):
            if not tx_hash:
                logger.critical(
                    "{} for game {}: transfer for position {} reported no hash; sent {}",
                    CORRUPTION_MESSAGE,
                    game_id,
                    winner.key,
                    [tx for tx in tx_hashes if tx],
                )
                raise CorruptionGuardError(
                    f"{CORRUPTION_MESSAGE}: no transaction hash for position {winner.key}",
                    position=winner.key,
                    fid=winner.fid,
                )


__all__ = ["CORRUPTION_MESSAGE", "SettlementLedger"]
