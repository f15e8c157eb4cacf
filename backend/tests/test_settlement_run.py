from __future__ import annotations

import json
from decimal import Decimal

import pytest

from app.domain import WinnerEntry
from app.repositories import SettlementRepository
from conftest import wallet
from pipelines.settlement_run import SettlementRunner, SettlementRunSummary, _write_summary, load_winners


@pytest.fixture
def runner(test_settings, identity, chain, session_factory) -> SettlementRunner:
    identity.addresses = {fid: [wallet(fid)] for fid in range(1, 5)}
    return SettlementRunner(
        test_settings, identity=identity, chain=chain, session_factory=session_factory
    )


def test_load_winners_from_yaml(tmp_path):
    """Verify winners files accept YAML lists with optional positions."""
    path = tmp_path / "winners.yaml"
    path.write_text(
        "- fid: 1\n  amount: '10'\n- fid: 2\n  amount: 5\n  positionKey: final\n",
        encoding="utf-8",
    )

    winners = load_winners(path)

    assert [(w.fid, w.position, w.key) for w in winners] == [(1, 1, "1"), (2, 2, "final")]
    assert winners[1].amount == Decimal(5)


def test_load_winners_from_json_mapping(tmp_path):
    path = tmp_path / "winners.json"
    path.write_text(json.dumps({"winners": [{"fid": 3, "amount": 1, "position": 0}]}))

    assert load_winners(path)[0].key == "fid:3"


def test_load_winners_rejects_empty(tmp_path):
    path = tmp_path / "winners.json"
    path.write_text("[]")

    with pytest.raises(ValueError):
        load_winners(path)


def test_rerun_pays_only_missing_positions(runner, make_game, chain, db_session):
    """Verify an operator re-run skips positions already in the ledger."""
    game = make_game(required_positions=["1", "2"])
    winners = _winners([(1, "10"), (2, "5")])

    first = runner.run(game_id=game.id, winners=winners[:1], actor_fid=42)
    second = runner.run(game_id=game.id, winners=winners, actor_fid=42)

    assert first.positions_paid == ["1"]
    assert second.positions_skipped == ["1"]
    assert second.positions_paid == ["2"]
    assert second.finalized is True
    assert len(chain.transfers) == 2
    assert len(SettlementRepository(db_session).records_for_game(game.id)) == 2


def test_preview_mode_writes_nothing(runner, make_game, chain):
    game = make_game()

    summary = runner.run(
        game_id=game.id, winners=_winners([(1, "10")]), actor_fid=42, preview=True
    )

    assert summary.mode == "preview"
    assert summary.preview[0]["address"] == wallet(1)
    assert chain.transfers == []


def test_failures_are_reported_in_summary(runner, make_game, chain):
    game = make_game()
    chain.balance = 0

    summary = runner.run(game_id=game.id, winners=_winners([(1, "10")]), actor_fid=42)

    assert summary.error["code"] == "insufficient_balance"
    assert summary.positions_paid == []


def test_rerun_after_mid_batch_failure_sends_no_duplicates(runner, make_game, chain):
    game = make_game(required_positions=["1", "2"])
    chain.fail_on_transfer = 1
    winners = _winners([(1, "10"), (2, "5")])

    failed = runner.run(game_id=game.id, winners=winners, actor_fid=42)
    chain.fail_on_transfer = None
    rerun = runner.run(game_id=game.id, winners=winners, actor_fid=42)

    assert failed.error["position"] == "2"
    assert len(failed.error["sentTxHashes"]) == 1
    assert rerun.positions_skipped == ["1"]
    assert rerun.positions_unconfirmed == []
    assert rerun.finalized is True
    assert len(chain.transfers) == 2


def test_write_summary(tmp_path):
    path = tmp_path / "reports" / "summary.json"

    _write_summary(SettlementRunSummary(game_id="g1", mode="settle", tx_hashes=["0xaa"]), path)

    assert json.loads(path.read_text())["tx_hashes"] == ["0xaa"]


def _winners(rows):
    return [
        WinnerEntry(fid=fid, amount=Decimal(amount), position=index)
        for index, (fid, amount) in enumerate(rows, start=1)
    ]
