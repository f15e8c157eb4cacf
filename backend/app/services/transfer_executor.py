"""Sequential ERC-20 payouts, one confirmed transaction per winner."""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal, ROUND_DOWN

from loguru import logger

from app.core.communities import Community
from app.core.errors import InsufficientBalanceError, TransferError
from app.domain import ResolvedWinner

from .address_directory import units_to_tokens
from .ports import ChainGateway


def tokens_to_units(amount: Decimal, decimals: int = 18) -> int:
    scaled = (Decimal(amount) * (Decimal(10) ** decimals)).quantize(Decimal(1), rounding=ROUND_DOWN)
    return int(scaled)


class TokenTransferExecutor:
    """Pay resolved winners from the prize wallet.

    Each transfer is confirmed before the next one is sent and nothing is
    retried here; a failure stops the batch and carries the failing position
    together with the hashes of the transfers confirmed before it.
    """

    def __init__(self, chain: ChainGateway, *, default_community: Community) -> None:
        self._chain = chain
        self._default = default_community

    def transfer(
        self,
        resolved: Sequence[ResolvedWinner],
        *,
        community: Community | None = None,
    ) -> list[str]:
        economy = community or self._default
        if not resolved:
            return []

        amounts = [tokens_to_units(winner.amount, economy.token_decimals) for winner in resolved]
        self._ensure_balance(economy, sum(amounts))

        tx_hashes: list[str] = []
        for winner, units in zip(resolved, amounts):
            try:
                tx_hash = self._chain.transfer_token(economy.token_address, winner.address, units)
            except TransferError as exc:
                logger.error(
                    "Transfer to fid {} for position {} failed after {} sent: {}",
                    winner.fid,
                    winner.key,
                    len(tx_hashes),
                    exc.message,
                )
                raise type(exc)(
                    f"Transfer for position {winner.key} (fid {winner.fid}) failed: {exc.message}",
                    position=winner.key,
                    fid=winner.fid,
                    sent_hashes=tx_hashes,
                ) from exc
            logger.info(
                "Paid {} {} to fid {} position {} tx={}",
                winner.amount,
                economy.token_symbol,
                winner.fid,
                winner.key,
                tx_hash,
            )
            tx_hashes.append(tx_hash)
        return tx_hashes

    def _ensure_balance(self, economy: Community, required_units: int) -> None:
        balance = self._chain.token_balance(economy.token_address, self._chain.sender_address)
        if balance < required_units:
            raise InsufficientBalanceError(
                "Insufficient {} balance. Need {}, have {}.".format(
                    economy.token_symbol,
                    units_to_tokens(required_units, economy.token_decimals),
                    units_to_tokens(balance, economy.token_decimals),
                )
            )


__all__ = ["TokenTransferExecutor", "tokens_to_units"]
