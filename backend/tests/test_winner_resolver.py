from __future__ import annotations

from decimal import Decimal

import pytest

from app.core.errors import ValidationError
from app.domain import WinnerEntry
from app.services.winner_resolver import ensure_unique, resolve_winners, select_address
from conftest import wallet


def _entries(*rows: tuple[int, str, int]) -> list[WinnerEntry]:
    return [WinnerEntry(fid=fid, amount=Decimal(amount), position=pos) for fid, amount, pos in rows]


def test_resolve_preserves_order_and_amounts():
    """Verify one resolved winner per entry, in input order, with amounts untouched."""
    entries = _entries((3, "5", 3), (1, "10", 1), (2, "5.5", 2))
    address_map = {1: [wallet(1)], 2: [wallet(2), wallet(22)], 3: [wallet(3)]}

    resolved = resolve_winners(entries, address_map)

    assert [winner.fid for winner in resolved] == [3, 1, 2]
    assert [winner.amount for winner in resolved] == [Decimal("5"), Decimal("10"), Decimal("5.5")]
    assert [winner.key for winner in resolved] == ["3", "1", "2"]
    assert resolved[2].address == wallet(2)


def test_duplicate_fid_is_rejected():
    """Verify a repeated fid fails validation even at different positions."""
    entries = _entries((1, "10", 1), (1, "5", 2))

    with pytest.raises(ValidationError) as excinfo:
        resolve_winners(entries, {1: [wallet(1)]})

    assert excinfo.value.fid == 1
    assert "Duplicate winner fid" in excinfo.value.message


def test_duplicate_position_key_is_rejected():
    """Verify two winners cannot share a position key."""
    entries = [
        WinnerEntry(fid=1, amount=Decimal("1"), position=1, position_key="q1"),
        WinnerEntry(fid=2, amount=Decimal("1"), position=2, position_key="q1"),
    ]

    with pytest.raises(ValidationError) as excinfo:
        ensure_unique(entries)

    assert excinfo.value.position == "q1"


def test_distinct_fids_never_flagged_as_duplicates():
    """Verify uniqueness checks have no false positives on distinct ids."""
    entries = _entries(*[(fid, "1", fid) for fid in range(1, 21)])

    ensure_unique(entries)


@pytest.mark.parametrize("fid", [0, -4, True])
def test_invalid_fid_is_rejected(fid):
    """Verify non-positive and boolean fids are refused."""
    with pytest.raises(ValidationError):
        ensure_unique([WinnerEntry(fid=fid, amount=Decimal("1"), position=1)])


def test_missing_address_names_the_position():
    """Verify an unresolvable winner fails with its fid and position."""
    entries = _entries((1, "10", 1), (2, "5", 2))

    with pytest.raises(ValidationError) as excinfo:
        resolve_winners(entries, {1: [wallet(1)], 2: []})

    assert excinfo.value.fid == 2
    assert excinfo.value.position == "2"


def test_malformed_address_is_rejected():
    """Verify addresses that are not valid hex are refused."""
    with pytest.raises(ValidationError):
        resolve_winners(_entries((1, "10", 1)), {1: ["0xnot-an-address"]})


@pytest.mark.parametrize("amount", ["0", "-1"])
def test_non_positive_amount_is_rejected(amount):
    """Verify regular settlements require a positive amount."""
    with pytest.raises(ValidationError):
        resolve_winners(_entries((1, amount, 1)), {1: [wallet(1)]})


def test_advantage_only_requires_zero_amount():
    """Verify advantage-only batches accept zero and refuse paid amounts."""
    resolved = resolve_winners(_entries((1, "0", 1)), {1: [wallet(1)]}, advantage_only=True)
    assert resolved[0].amount == Decimal("0")

    with pytest.raises(ValidationError):
        resolve_winners(_entries((1, "3", 1)), {1: [wallet(1)]}, advantage_only=True)


def test_empty_batch_is_rejected():
    """Verify at least one winner is required."""
    with pytest.raises(ValidationError):
        resolve_winners([], {})


def test_unranked_winner_keyed_by_fid():
    """Verify position 0 produces an fid-based ledger key."""
    resolved = resolve_winners(_entries((77, "1", 0)), {77: [wallet(77)]})

    assert resolved[0].key == "fid:77"


def test_select_address_skips_empty_candidates():
    assert select_address(["", wallet(5)]) == wallet(5)
    assert select_address([]) is None
    assert select_address(None) is None
