"""web3 wrapper for stake reads and ERC-20 payouts on Base."""

from __future__ import annotations

from typing import Any

from loguru import logger
from web3 import HTTPProvider, Web3
from web3.exceptions import TimeExhausted, Web3Exception

from app.core.config import settings
from app.core.errors import (
    InvalidAddressError,
    TransferError,
    TransferTimeoutError,
    UpstreamError,
)


def _uint_view_abi(fn_name: str) -> list[dict[str, Any]]:
    return [
        {
            "name": fn_name,
            "type": "function",
            "stateMutability": "view",
            "inputs": [{"name": "account", "type": "address"}],
            "outputs": [{"name": "", "type": "uint256"}],
        }
    ]


ERC20_TRANSFER_ABI: list[dict[str, Any]] = [
    {
        "name": "transfer",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    *_uint_view_abi("balanceOf"),
]


def _checksum(address: str) -> str:
    if not Web3.is_address(address):
        raise InvalidAddressError(f"Invalid address format: {address}")
    return Web3.to_checksum_address(address)


class ChainClient:
    """Read-only contract calls plus signed token transfers from the prize wallet."""

    def __init__(
        self,
        *,
        rpc_url: str | None = None,
        private_key: str | None = None,
        chain_id: int | None = None,
        receipt_timeout: float | None = None,
        web3: Web3 | None = None,
    ) -> None:
        self.rpc_url = rpc_url or settings.base_rpc_url
        self.chain_id = chain_id or settings.chain_id
        self.receipt_timeout = receipt_timeout or settings.transfer_receipt_timeout_seconds
        self.web3 = web3 or Web3(HTTPProvider(self.rpc_url, request_kwargs={"timeout": 30}))
        key = private_key if private_key is not None else settings.master_wallet_private_key
        self._account = self.web3.eth.account.from_key(key) if key else None

    @property
    def sender_address(self) -> str:
        if self._account is None:
            raise TransferError("Prize wallet is not configured")
        return self._account.address

    # ------------------------------------------------------------------
    # Reads

    def read_uint(self, contract_address: str, fn_name: str, holder: str) -> int:
        contract = self.web3.eth.contract(
            address=_checksum(contract_address), abi=_uint_view_abi(fn_name)
        )
        try:
            return int(contract.functions[fn_name](_checksum(holder)).call())
        except (Web3Exception, OSError, ValueError) as exc:
            raise UpstreamError(f"Contract read {fn_name} failed") from exc

    def token_balance(self, token_address: str, holder: str) -> int:
        return self.read_uint(token_address, "balanceOf", holder)

    # ------------------------------------------------------------------
    # Transfers

    def transfer_token(self, token_address: str, to_address: str, amount_units: int) -> str:
        """Send ``amount_units`` and block until the receipt confirms success."""

        if self._account is None:
            raise TransferError("Prize wallet is not configured")
        token = self.web3.eth.contract(address=_checksum(token_address), abi=ERC20_TRANSFER_ABI)
        recipient = _checksum(to_address)

        try:
            nonce = self.web3.eth.get_transaction_count(self._account.address, "pending")
            transaction = token.functions.transfer(recipient, int(amount_units)).build_transaction(
                {"from": self._account.address, "nonce": nonce, "chainId": self.chain_id}
            )
            signed = self._account.sign_transaction(transaction)
            tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)
        except (Web3Exception, OSError, ValueError) as exc:
            raise TransferError("Transfer submission failed") from exc

        hex_hash = Web3.to_hex(tx_hash)
        logger.info("Submitted token transfer {} to {}", hex_hash, recipient)
        try:
            receipt = self.web3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout
            )
        except TimeExhausted as exc:
            raise TransferTimeoutError(f"No receipt for {hex_hash} within {self.receipt_timeout}s") from exc
        except (Web3Exception, OSError, ValueError) as exc:
            raise TransferError(f"Receipt lookup for {hex_hash} failed") from exc

        if receipt.get("status") != 1:
            raise TransferError(f"Transfer {hex_hash} reverted")
        return hex_hash


__all__ = ["ChainClient", "ERC20_TRANSFER_ABI"]
