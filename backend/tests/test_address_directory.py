from __future__ import annotations

from decimal import Decimal

import httpx

from app.services.address_directory import units_to_tokens
from conftest import TOKEN_UNIT, wallet


def test_addresses_ordered_by_stake(directory, identity, chain, communities):
    """Verify the highest staker is listed first for each fid."""
    betr = communities.get("betr")
    identity.addresses = {7: [wallet(1), wallet(2), wallet(3)]}
    chain.stakes = {wallet(1): 5, wallet(2): 50, wallet(3): 5}

    result = directory.resolve_addresses(
        [7], stake_contract=betr.staking_address, stake_fn=betr.staking_fn
    )

    # Equal stakes keep directory order.
    assert result == {7: [wallet(2), wallet(1), wallet(3)]}
    assert {call[1] for call in chain.read_calls} == {"stakedAmount"}


def test_failed_stake_read_counts_as_zero(directory, identity, chain, communities):
    """Verify an unreadable address sorts as zero stake instead of failing."""
    betr = communities.get("betr")
    identity.addresses = {7: [wallet(1), wallet(2)]}
    chain.stakes = {wallet(1): 10, wallet(2): 20}
    chain.failing_reads = {wallet(2): 1}

    result = directory.resolve_addresses(
        [7], stake_contract=betr.staking_address, stake_fn=betr.staking_fn
    )

    assert result[7] == [wallet(1), wallet(2)]


def test_known_contracts_are_excluded(directory, identity, communities):
    """Verify token and staking contracts never appear as payout candidates."""
    betr = communities.get("betr")
    identity.addresses = {9: [betr.token_address.lower(), wallet(9)]}

    assert directory.resolve_addresses([9]) == {9: [wallet(9)]}


def test_directory_failure_yields_empty_map(directory, identity):
    """Verify upstream directory errors degrade to no addresses."""
    identity.error = httpx.ConnectError("boom")

    assert directory.resolve_addresses([1, 2]) == {}


def test_no_fids_skips_lookup(directory, identity):
    assert directory.resolve_addresses([]) == {}
    assert identity.calls == []


def test_measure_stake_sums_addresses(directory, identity, chain, communities):
    """Verify stake is summed across every candidate address."""
    identity.addresses = {5: [wallet(1), wallet(2)]}
    chain.stakes = {wallet(1): 150_000_000 * TOKEN_UNIT, wallet(2): 50_000_000 * TOKEN_UNIT}

    assert directory.measure_stake(5, communities.get("betr")) == Decimal(200_000_000)


def test_measure_stake_retries_with_linear_backoff(directory, identity, chain, communities, sleeps):
    """Verify a flaky address is retried and eventually counted."""
    identity.addresses = {5: [wallet(1)]}
    chain.stakes = {wallet(1): 3 * TOKEN_UNIT}
    chain.failing_reads = {wallet(1): 2}

    assert directory.measure_stake(5, communities.get("betr")) == Decimal(3)
    assert sleeps == [1.5, 3.0]


def test_measure_stake_gives_up_after_attempts(directory, identity, chain, communities, sleeps):
    """Verify an address failing every attempt counts as zero."""
    identity.addresses = {5: [wallet(1), wallet(2)]}
    chain.stakes = {wallet(1): 7 * TOKEN_UNIT, wallet(2): 4 * TOKEN_UNIT}
    chain.failing_reads = {wallet(1): 10}

    assert directory.measure_stake(5, communities.get("betr")) == Decimal(4)
    assert len([call for call in chain.read_calls if call[2] == wallet(1)]) == 3
    assert sleeps == [1.5, 3.0]


def test_measure_stake_fails_closed_on_directory_error(directory, identity, communities):
    identity.error = httpx.ReadTimeout("slow")

    assert directory.measure_stake(5, communities.get("betr")) == Decimal(0)


def test_units_to_tokens():
    assert units_to_tokens(15 * 10**17) == Decimal("1.5")
    assert units_to_tokens(1234, decimals=2) == Decimal("12.34")
