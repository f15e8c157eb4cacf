"""Contracts for the upstream collaborators the services depend on."""

from __future__ import annotations

from typing import Iterable, Protocol

from app.domain import SettlementEvent


class IdentityDirectory(Protocol):
    """Batched fid to candidate address lookup."""

    def wallet_addresses(self, fids: Iterable[int]) -> dict[int, list[str]]:
        """Return candidate addresses per fid; raise on upstream failure."""


class ChainGateway(Protocol):
    """Read-only contract calls plus token transfers from the prize wallet."""

    @property
    def sender_address(self) -> str:
        """Address the transfers are sent from."""

    def read_uint(self, contract_address: str, fn_name: str, holder: str) -> int:
        """Call a ``fn(address) -> uint256`` view function."""

    def token_balance(self, token_address: str, holder: str) -> int:
        """Return the ERC-20 balance of ``holder`` in base units."""

    def transfer_token(self, token_address: str, to_address: str, amount_units: int) -> str:
        """Send tokens and return the confirmed transaction hash."""


class SettlementEventSink(Protocol):
    def __call__(self, event: SettlementEvent) -> None:
        """Receive a committed settlement; must never block or raise."""


__all__ = ["ChainGateway", "IdentityDirectory", "SettlementEventSink"]
