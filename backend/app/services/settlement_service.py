"""Settlement pipeline shared by every game type.

eligibility -> skip ledgered positions -> resolve addresses -> reserve
positions -> transfer -> count guard -> confirm -> optional finalize ->
notification.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.communities import Community, CommunityRegistry
from app.core.errors import (
    ConflictError,
    NotFoundError,
    TransferError,
    TransferTimeoutError,
    UpstreamError,
    ValidationError,
)
from app.domain import PreviewLine, ResolvedWinner, SettlementEvent, SettlementOutcome, WinnerEntry
from app.models import Game, GameStatus, SettlementStatus
from app.repositories import GameRepository, SettlementRepository

from .address_directory import AddressDirectory
from .notifications import discard_event
from .ports import SettlementEventSink
from .settlement_ledger import SettlementLedger
from .transfer_executor import TokenTransferExecutor
from .winner_resolver import ensure_unique, resolve_winners, select_address

TX_HASH_PATTERN = re.compile(r"^0x[0-9a-fA-F]{64}$")


class SettlementService:
    def __init__(
        self,
        session: Session,
        *,
        directory: AddressDirectory,
        executor: TokenTransferExecutor,
        communities: CommunityRegistry,
        event_sink: SettlementEventSink | None = None,
    ) -> None:
        self._session = session
        self._games = GameRepository(session)
        self._ledger = SettlementLedger(session)
        self._records = SettlementRepository(session)
        self._directory = directory
        self._executor = executor
        self._communities = communities
        self._event_sink = event_sink or discard_event

    # ------------------------------------------------------------------
    # Settlement

    def settle(
        self,
        game_id: str,
        winners: Sequence[WinnerEntry],
        *,
        actor_fid: int,
        advantage_only: bool = False,
        notes: str | None = None,
    ) -> SettlementOutcome:
        game = self._load_settleable(game_id)
        if not winners:
            raise ValidationError("At least one winner is required")
        ensure_unique(winners)
        self._check_eligibility(game, winners)

        claimed_keys = self._ledger.claimed_keys(game_id)
        pending = [entry for entry in winners if entry.key not in claimed_keys]
        skipped = [entry.key for entry in winners if entry.key in claimed_keys]
        unconfirmed = sorted(self._ledger.pending_keys(game_id) & set(skipped))
        if skipped:
            logger.warning(
                "Game {}: skipping already settled positions {}", game_id, ", ".join(skipped)
            )
        if unconfirmed:
            logger.warning(
                "Game {}: positions {} have unconfirmed transfers awaiting reconciliation",
                game_id,
                ", ".join(unconfirmed),
            )

        if not pending:
            finalized = self._finalize_if_complete(game, actor_fid=actor_fid)
            self._session.commit()
            return SettlementOutcome(
                game_id=game_id,
                skipped_positions=skipped,
                unconfirmed_positions=unconfirmed,
                game_status=game.status,
                finalized=finalized,
            )

        if game.status == GameStatus.SETTLED.value:
            raise ConflictError(
                f"Game {game_id} is already settled; positions {', '.join(e.key for e in pending)} "
                "cannot be added"
            )

        community = self._communities.get(game.community)
        logger.info(
            "Settling game {} ({}): {} positions, community={}, advantage_only={}",
            game_id,
            game.game_type,
            len(pending),
            community.name,
            advantage_only,
        )
        address_map = self._directory.resolve_addresses(
            [entry.fid for entry in pending],
            stake_contract=community.staking_address,
            stake_fn=community.staking_fn,
        )
        resolved = resolve_winners(pending, address_map, advantage_only=advantage_only)

        if advantage_only:
            tx_hashes: list[str | None] = [None] * len(resolved)
            self._ledger.record_settlement(
                game_id,
                resolved,
                tx_hashes,
                settled_by_fid=actor_fid,
                notes=notes,
                allow_missing_hashes=True,
            )
        else:
            self._ledger.reserve_positions(game_id, resolved, settled_by_fid=actor_fid, notes=notes)
            self._session.commit()
            tx_hashes = list(self._transfer_reserved(game_id, resolved, community))
            self._ledger.confirm_transfers(game_id, resolved, tx_hashes)

        finalized = self._finalize_if_complete(game, actor_fid=actor_fid)
        self._commit_after_transfer(game_id, tx_hashes)

        outcome = SettlementOutcome(
            game_id=game_id,
            tx_hashes=tx_hashes,
            resolved_winners=resolved,
            skipped_positions=skipped,
            unconfirmed_positions=unconfirmed,
            game_status=game.status,
            finalized=finalized,
        )
        self._emit(game, outcome)
        return outcome

    def preview(self, game_id: str, winners: Sequence[WinnerEntry]) -> list[PreviewLine]:
        """Resolve payouts without transferring or writing anything."""

        game = self._get_game(game_id)
        ensure_unique(winners)
        self._check_eligibility(game, winners)
        records = self._records.records_by_key(game_id, include_pending=True)
        community = self._communities.get(game.community)
        unpaid = [entry.fid for entry in winners if entry.key not in records]
        address_map = self._directory.resolve_addresses(
            unpaid,
            stake_contract=community.staking_address,
            stake_fn=community.staking_fn,
        )

        lines: list[PreviewLine] = []
        for entry in winners:
            record = records.get(entry.key)
            if record is not None:
                paid = record.status == SettlementStatus.PAID.value
                lines.append(
                    PreviewLine(
                        fid=record.winner_fid,
                        amount=record.amount,
                        position=record.position,
                        position_key=entry.key,
                        address=record.address,
                        already_paid=paid,
                        tx_hash=record.tx_hash,
                        error=None if paid else f"Transfer for position {entry.key} is unconfirmed",
                    )
                )
                continue
            address = select_address(address_map.get(entry.fid))
            lines.append(
                PreviewLine(
                    fid=entry.fid,
                    amount=entry.amount,
                    position=entry.position,
                    position_key=entry.key,
                    address=address,
                    already_paid=False,
                    error=None if address else f"No valid wallet for winner fid {entry.fid}",
                )
            )
        return lines

    def finalize(self, game_id: str, *, actor_fid: int) -> SettlementOutcome:
        self._get_game(game_id)
        finalized = self._ledger.finalize(game_id, settled_by_fid=actor_fid)
        self._session.commit()
        game = self._get_game(game_id)
        return SettlementOutcome(game_id=game_id, game_status=game.status, finalized=finalized)

    def reconcile(
        self,
        game_id: str,
        position_key: str,
        *,
        actor_fid: int,
        tx_hash: str | None = None,
    ) -> SettlementOutcome:
        """Resolve a position left reserved by a transfer with an unknown outcome.

        With ``tx_hash`` the position is recorded as paid by that transaction;
        without it the reservation is dropped and the next run pays it.
        """

        if tx_hash is not None and not TX_HASH_PATTERN.match(tx_hash):
            raise ValidationError(f"Malformed transaction hash for position {position_key}")
        game = self._get_game(game_id)
        if position_key not in self._ledger.pending_keys(game_id):
            raise ConflictError(
                f"Position {position_key} of game {game_id} has no unconfirmed transfer",
                position=position_key,
            )

        finalized = False
        if tx_hash is not None:
            if not self._ledger.confirm_position(game_id, position_key, tx_hash):
                raise ConflictError(
                    f"Position {position_key} of game {game_id} was reconciled concurrently",
                    position=position_key,
                )
            finalized = self._finalize_if_complete(game, actor_fid=actor_fid)
        elif not self._ledger.release_positions(game_id, [position_key]):
            raise ConflictError(
                f"Position {position_key} of game {game_id} was reconciled concurrently",
                position=position_key,
            )
        self._session.commit()
        logger.info(
            "Fid {} reconciled position {} of game {} as {}",
            actor_fid,
            position_key,
            game_id,
            tx_hash or "unpaid",
        )
        return SettlementOutcome(
            game_id=game_id,
            tx_hashes=[tx_hash] if tx_hash else [],
            game_status=game.status,
            finalized=finalized,
        )

    # ------------------------------------------------------------------
    # Helpers

    def _get_game(self, game_id: str) -> Game:
        game = self._games.get(game_id, refresh=True)
        if game is None:
            raise NotFoundError(f"Game {game_id} not found")
        return game

    def _load_settleable(self, game_id: str) -> Game:
        game = self._get_game(game_id)
        if game.status == GameStatus.CANCELLED.value:
            raise ValidationError(f"Game {game_id} is cancelled and cannot be settled")
        return game

    @staticmethod
    def _check_eligibility(game: Game, winners: Sequence[WinnerEntry]) -> None:
        if game.eligible_fids is None:
            return
        eligible = {int(fid) for fid in game.eligible_fids}
        for entry in winners:
            if entry.fid not in eligible:
                raise ValidationError(
                    f"Winner fid {entry.fid} is not a participant of game {game.id}",
                    fid=entry.fid,
                    position=entry.key,
                )

    def _finalize_if_complete(self, game: Game, *, actor_fid: int) -> bool:
        if game.status == GameStatus.SETTLED.value or not self._ledger.can_finalize(game):
            return False
        return self._ledger.finalize(game.id, settled_by_fid=actor_fid)

    def _transfer_reserved(
        self,
        game_id: str,
        resolved: Sequence[ResolvedWinner],
        community: Community,
    ) -> list[str]:
        try:
            return self._executor.transfer(resolved, community=community)
        except TransferError as exc:
            self._settle_partial_batch(game_id, resolved, exc)
            raise
        except UpstreamError:
            self._ledger.release_positions(game_id, [winner.key for winner in resolved])
            self._session.commit()
            raise

    def _settle_partial_batch(
        self,
        game_id: str,
        resolved: Sequence[ResolvedWinner],
        exc: TransferError,
    ) -> None:
        """Record the transfers confirmed before ``exc`` and free what was never sent.

        A timed out transfer may still land, so its position stays reserved.
        """

        sent = list(exc.sent_hashes)
        paid = list(resolved[: len(sent)])
        unsent = list(resolved[len(sent) :])
        if exc.position is not None and isinstance(exc, TransferTimeoutError) and unsent:
            logger.critical(
                "Transfer for position {} of game {} timed out; left reserved for reconciliation",
                unsent[0].key,
                game_id,
            )
            unsent = unsent[1:]
        if paid:
            self._ledger.confirm_transfers(game_id, paid, sent)
        self._ledger.release_positions(game_id, [winner.key for winner in unsent])
        self._commit_after_transfer(game_id, sent)
        logger.warning(
            "Game {}: batch stopped at position {} after {} confirmed transfers",
            game_id,
            exc.position,
            len(sent),
        )

    def _commit_after_transfer(self, game_id: str, tx_hashes: Sequence[str | None]) -> None:
        try:
            self._session.commit()
        except SQLAlchemyError:
            self._session.rollback()
            logger.critical(
                "Ledger commit failed for game {} after transfers {}; manual reconciliation needed",
                game_id,
                [tx for tx in tx_hashes if tx],
            )
            raise

    def _emit(self, game: Game, outcome: SettlementOutcome) -> None:
        if game.is_preview:
            return
        event = SettlementEvent(
            game_id=game.id,
            game_type=game.game_type,
            winner_fids=[winner.fid for winner in outcome.resolved_winners],
            tx_hashes=list(outcome.tx_hashes),
            finalized=outcome.finalized,
        )
        try:
            self._event_sink(event)
        except Exception:  # noqa: BLE001
            logger.exception("Settlement event sink failed for game {}", game.id)


__all__ = ["SettlementService"]
