from __future__ import annotations

from decimal import Decimal

import pytest

from app.core.errors import InsufficientBalanceError, TransferError, TransferTimeoutError
from app.domain import ResolvedWinner
from app.services.transfer_executor import TokenTransferExecutor, tokens_to_units
from conftest import TOKEN_UNIT, wallet


def _resolved() -> list[ResolvedWinner]:
    return [
        ResolvedWinner(fid=1, amount=Decimal("10"), position=1, address=wallet(1)),
        ResolvedWinner(fid=2, amount=Decimal("5"), position=2, address=wallet(2)),
        ResolvedWinner(fid=3, amount=Decimal("2.5"), position=3, address=wallet(3)),
    ]


def test_transfers_sequentially_in_order(chain, communities):
    """Verify one hash per winner and transfers in winner order."""
    betr = communities.get("betr")
    executor = TokenTransferExecutor(chain, default_community=betr)

    hashes = executor.transfer(_resolved())

    assert len(hashes) == 3
    assert [to for _, to, _ in chain.transfers] == [wallet(1), wallet(2), wallet(3)]
    assert chain.transfers[2] == (betr.token_address, wallet(3), 25 * TOKEN_UNIT // 10)


def test_community_token_overrides_default(chain, communities):
    """Verify the game's community token is used instead of the default."""
    executor = TokenTransferExecutor(chain, default_community=communities.get("betr"))
    minted = communities.get("minted_merch")

    executor.transfer(_resolved()[:1], community=minted)

    assert chain.transfers[0][0] == minted.token_address


def test_insufficient_balance_sends_nothing(chain, communities):
    """Verify the wallet balance is checked before any transfer."""
    chain.balance = 12 * TOKEN_UNIT
    executor = TokenTransferExecutor(chain, default_community=communities.get("betr"))

    with pytest.raises(InsufficientBalanceError) as excinfo:
        executor.transfer(_resolved())

    assert chain.transfers == []
    assert "Need 17.5" in excinfo.value.message


def test_failure_mid_batch_reports_position(chain, communities):
    """Verify a failing transfer stops the batch and names its position."""
    chain.fail_on_transfer = 1
    executor = TokenTransferExecutor(chain, default_community=communities.get("betr"))

    with pytest.raises(TransferError) as excinfo:
        executor.transfer(_resolved())

    assert excinfo.value.position == "2"
    assert excinfo.value.fid == 2
    assert len(chain.transfers) == 1
    assert excinfo.value.sent_hashes == ["0x" + f"{1:064x}"]
    assert excinfo.value.to_dict()["sentTxHashes"] == excinfo.value.sent_hashes


def test_empty_batch_is_a_noop(chain, communities):
    executor = TokenTransferExecutor(chain, default_community=communities.get("betr"))

    assert executor.transfer([]) == []


def test_tokens_to_units_rounds_down():
    assert tokens_to_units(Decimal("1.5")) == 15 * 10**17
    assert tokens_to_units(Decimal("0.129"), decimals=2) == 12


def test_timeout_keeps_its_type(chain, communities):
    chain.fail_on_transfer = 0
    chain.transfer_failure = TransferTimeoutError
    executor = TokenTransferExecutor(chain, default_community=communities.get("betr"))

    with pytest.raises(TransferTimeoutError) as excinfo:
        executor.transfer(_resolved())

    assert excinfo.value.position == "1"
    assert excinfo.value.sent_hashes == []
