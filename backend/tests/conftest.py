from __future__ import annotations

import sys
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterable

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from app.core.communities import BUILTIN_COMMUNITIES, CommunityRegistry
from app.core.config import Settings
from app.core.errors import TransferError, UpstreamError
from app.db import build_db_components, init_db
from app.models import Game
from app.repositories import GameRepository
from app.services.address_directory import AddressDirectory

TOKEN_UNIT = 10**18


def wallet(index: int) -> str:
    """Deterministic lowercase payout address for tests."""

    return "0x" + f"{index:040x}"


class FakeIdentity:
    """In-memory stand-in for the Neynar bulk user lookup."""

    def __init__(self, addresses: dict[int, list[str]] | None = None) -> None:
        self.addresses = dict(addresses or {})
        self.error: Exception | None = None
        self.calls: list[list[int]] = []

    def wallet_addresses(self, fids: Iterable[int]) -> dict[int, list[str]]:
        requested = [int(fid) for fid in fids]
        self.calls.append(requested)
        if self.error is not None:
            raise self.error
        return {fid: list(self.addresses.get(fid, [])) for fid in requested}


class FakeChain:
    """Records transfers and serves stake reads from a dict keyed by holder."""

    sender_address = wallet(0xFFFF)

    def __init__(self) -> None:
        self.balance = 1_000_000 * TOKEN_UNIT
        self.stakes: dict[str, int] = {}
        self.failing_reads: dict[str, int] = {}
        self.read_calls: list[tuple[str, str, str]] = []
        self.transfers: list[tuple[str, str, int]] = []
        self.fail_on_transfer: int | None = None
        self.transfer_failure: type[TransferError] = TransferError
        self.on_transfer: Callable[[int], None] | None = None

    def read_uint(self, contract_address: str, fn_name: str, holder: str) -> int:
        self.read_calls.append((contract_address, fn_name, holder))
        remaining = self.failing_reads.get(holder, 0)
        if remaining:
            self.failing_reads[holder] = remaining - 1
            raise UpstreamError("Contract read failed")
        return self.stakes.get(holder, 0)

    def token_balance(self, token_address: str, holder: str) -> int:
        return self.balance

    def transfer_token(self, token_address: str, to_address: str, amount_units: int) -> str:
        if self.fail_on_transfer is not None and len(self.transfers) == self.fail_on_transfer:
            raise self.transfer_failure("Transfer reverted")
        if self.on_transfer is not None:
            self.on_transfer(len(self.transfers))
        self.transfers.append((token_address, to_address, amount_units))
        return "0x" + f"{len(self.transfers):064x}"


@pytest.fixture
def test_settings(tmp_path, monkeypatch) -> Settings:
    settings = Settings(
        database_url=f"sqlite:///{tmp_path/'minigames.db'}",
        admin_fids="42,43",
        known_contract_addresses=wallet(0xC0FFEE),
        notification_webhook_url=None,
    )
    monkeypatch.setattr("app.core.config.get_settings", lambda: settings)
    monkeypatch.setattr("app.core.config.settings", settings)
    return settings


@pytest.fixture
def session_factory(tmp_path):
    engine, factory = build_db_components(f"sqlite:///{tmp_path/'ledger.db'}")
    init_db(bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def communities() -> CommunityRegistry:
    return CommunityRegistry(BUILTIN_COMMUNITIES, "betr")


@pytest.fixture
def identity() -> FakeIdentity:
    return FakeIdentity()


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def directory(identity, chain, communities, sleeps) -> AddressDirectory:
    return AddressDirectory(
        identity,
        chain,
        excluded_addresses=communities.contract_addresses(),
        sleep=sleeps.append,
    )


@pytest.fixture
def make_game(db_session):
    def _make(**overrides) -> Game:
        fields = {
            "game_type": "buddy_up",
            "created_by_fid": 42,
            "community": "betr",
            "prize_amount": Decimal("20"),
        }
        fields.update(overrides)
        game = GameRepository(db_session).create_game(**fields)
        db_session.commit()
        return game

    return _make
