"""Operator job that re-runs or previews settlement for one game.

Positions already in the ledger are skipped, so re-running after a partial
failure only pays what is still missing.
"""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Sequence

import yaml
from loguru import logger
from sqlalchemy.orm import Session, sessionmaker

from app.core.communities import CommunityRegistry
from app.core.config import Settings, get_settings
from app.core.errors import GameServiceError
from app.db import SessionLocal, init_db
from app.domain import WinnerEntry
from app.services.address_directory import AddressDirectory
from app.services.ports import ChainGateway, IdentityDirectory
from app.services.settlement_service import SettlementService
from app.services.transfer_executor import TokenTransferExecutor
from upstream.chain_client import ChainClient
from upstream.neynar_client import NeynarClient


@dataclass(slots=True)
class SettlementRunSummary:
    game_id: str
    mode: str
    positions_requested: int = 0
    positions_paid: list[str] = field(default_factory=list)
    positions_skipped: list[str] = field(default_factory=list)
    positions_unconfirmed: list[str] = field(default_factory=list)
    tx_hashes: list[str | None] = field(default_factory=list)
    game_status: str | None = None
    finalized: bool = False
    preview: list[dict[str, Any]] = field(default_factory=list)
    error: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "game_id": self.game_id,
            "mode": self.mode,
            "positions_requested": self.positions_requested,
            "positions_paid": self.positions_paid,
            "positions_skipped": self.positions_skipped,
            "positions_unconfirmed": self.positions_unconfirmed,
            "tx_hashes": self.tx_hashes,
            "game_status": self.game_status,
            "finalized": self.finalized,
            "preview": self.preview,
            "error": self.error,
        }


def load_winners(path: Path) -> list[WinnerEntry]:
    """Read a JSON or YAML list of ``{fid, amount, position?, positionKey?}`` objects."""

    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    if isinstance(raw, dict):
        raw = raw.get("winners")
    if not isinstance(raw, list) or not raw:
        raise ValueError(f"{path} must contain a non-empty list of winners")

    winners: list[WinnerEntry] = []
    for index, item in enumerate(raw, start=1):
        if not isinstance(item, dict):
            raise ValueError(f"Winner #{index} in {path} must be a mapping")
        position = item.get("position")
        winners.append(
            WinnerEntry(
                fid=int(item["fid"]),
                amount=Decimal(str(item["amount"])),
                position=int(position) if position is not None else index,
                position_key=item.get("positionKey") or item.get("position_key"),
            )
        )
    return winners


class SettlementRunner:
    """Drive :class:`SettlementService` outside the HTTP surface."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        identity: IdentityDirectory | None = None,
        chain: ChainGateway | None = None,
        session_factory: sessionmaker[Session] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._owned_identity = identity is None
        self._identity = identity or NeynarClient()
        self._chain = chain or ChainClient()
        self._session_factory = session_factory or SessionLocal
        self._communities = CommunityRegistry.from_settings(self.settings)

    def _service(self, session: Session) -> SettlementService:
        excluded = set(self.settings.known_contract_addresses) | self._communities.contract_addresses()
        directory = AddressDirectory(
            self._identity,
            self._chain,
            excluded_addresses=excluded,
            stake_attempts=self.settings.stake_read_attempts,
            stake_backoff_seconds=self.settings.stake_read_backoff_seconds,
        )
        executor = TokenTransferExecutor(self._chain, default_community=self._communities.get(None))
        return SettlementService(
            session, directory=directory, executor=executor, communities=self._communities
        )

    def run(
        self,
        *,
        game_id: str,
        winners: Sequence[WinnerEntry],
        actor_fid: int,
        preview: bool = False,
        advantage_only: bool = False,
        notes: str | None = None,
    ) -> SettlementRunSummary:
        summary = SettlementRunSummary(
            game_id=game_id,
            mode="preview" if preview else "settle",
            positions_requested=len(winners),
        )
        logger.info(
            "Settlement run for game {}: mode={}, winners={}", game_id, summary.mode, len(winners)
        )

        session = self._session_factory()
        try:
            service = self._service(session)
            if preview:
                for line in service.preview(game_id, winners):
                    summary.preview.append(
                        {
                            "fid": line.fid,
                            "amount": str(line.amount),
                            "position_key": line.position_key,
                            "address": line.address,
                            "already_paid": line.already_paid,
                            "tx_hash": line.tx_hash,
                            "error": line.error,
                        }
                    )
                return summary

            outcome = service.settle(
                game_id,
                winners,
                actor_fid=actor_fid,
                advantage_only=advantage_only,
                notes=notes,
            )
            summary.positions_paid = [winner.key for winner in outcome.resolved_winners]
            summary.positions_skipped = list(outcome.skipped_positions)
            summary.positions_unconfirmed = list(outcome.unconfirmed_positions)
            summary.tx_hashes = list(outcome.tx_hashes)
            summary.game_status = outcome.game_status
            summary.finalized = outcome.finalized
        except GameServiceError as exc:
            session.rollback()
            summary.error = exc.to_dict()
            logger.error("Settlement run for game {} failed: {}", game_id, exc.message)
        finally:
            session.close()

        logger.info(
            "Settlement run finished: paid={}, skipped={}, status={}",
            len(summary.positions_paid),
            len(summary.positions_skipped),
            summary.game_status,
        )
        return summary

    def close(self) -> None:
        if self._owned_identity and isinstance(self._identity, NeynarClient):
            self._identity.close()


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Re-run or preview settlement for a game, skipping ledgered positions",
    )
    parser.add_argument("--game-id", required=True, help="Game to settle")
    parser.add_argument(
        "--winners-file",
        type=Path,
        required=True,
        help="JSON or YAML list of winners ({fid, amount, position?, positionKey?})",
    )
    parser.add_argument(
        "--actor-fid",
        type=int,
        required=True,
        help="Operator fid recorded as settled_by_fid",
    )
    parser.add_argument("--preview", action="store_true", help="Resolve addresses without paying")
    parser.add_argument(
        "--advantage-only",
        action="store_true",
        help="Record zero-amount winners without any token transfer",
    )
    parser.add_argument("--notes", default=None, help="Notes stored on every ledger row")
    parser.add_argument(
        "--summary-path",
        type=Path,
        default=None,
        help="Optional path where a JSON summary report will be written",
    )
    return parser.parse_args()


def _write_summary(summary: SettlementRunSummary, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(summary.to_dict(), default=str, indent=2))
    logger.info("Settlement summary written to {}", path)


def main() -> SettlementRunSummary:
    args = _parse_args()
    settings = get_settings()
    init_db()
    runner = SettlementRunner(settings)
    try:
        summary = runner.run(
            game_id=args.game_id,
            winners=load_winners(args.winners_file),
            actor_fid=args.actor_fid,
            preview=args.preview,
            advantage_only=args.advantage_only,
            notes=args.notes,
        )
    finally:
        runner.close()

    if args.summary_path:
        _write_summary(summary, args.summary_path)
    return summary


if __name__ == "__main__":
    main()
