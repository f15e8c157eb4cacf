from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.core.errors import ConflictError, IneligibleError, NotFoundError, ValidationError
from app.domain import TierWindow
from app.repositories import AllocationRepository
from app.services.allocation_service import AllocationService
from conftest import TOKEN_UNIT, wallet

NOW = datetime(2026, 2, 8, 18, 0, tzinfo=timezone.utc)
M = 1_000_000


@pytest.fixture
def service(db_session, directory, communities) -> AllocationService:
    return AllocationService(
        db_session, directory=directory, communities=communities, clock=lambda: NOW
    )


@pytest.fixture
def pool(service):
    return service.create_pool(
        title="Super Bowl squares",
        community="betr",
        pool_size=100,
        auto_units_limit=6,
        windows=[
            TierWindow(
                min_stake=Decimal(50 * M),
                allocation_count=1,
                opens_at=NOW - timedelta(hours=1),
                name="tier3",
            ),
            TierWindow(
                min_stake=Decimal(200 * M),
                allocation_count=3,
                opens_at=NOW - timedelta(hours=3),
                closes_at=NOW - timedelta(hours=2),
                name="tier1",
            ),
            TierWindow(
                min_stake=Decimal(100 * M),
                allocation_count=2,
                opens_at=NOW + timedelta(hours=1),
                name="tier2",
            ),
        ],
    )


def _stake(identity, chain, fid: int, tokens: int) -> None:
    identity.addresses[fid] = [wallet(fid)]
    chain.stakes[wallet(fid)] = tokens * TOKEN_UNIT


def test_create_pool_stores_windows_by_stake(pool, db_session):
    windows = AllocationRepository(db_session).windows_for_pool(pool.id)

    assert [window.name for window in windows] == ["tier1", "tier2", "tier3"]
    assert windows[0].closes_at == NOW - timedelta(hours=2)


def test_create_pool_rejects_inverted_window(service):
    with pytest.raises(ValidationError):
        service.create_pool(
            windows=[
                TierWindow(
                    min_stake=Decimal(1),
                    allocation_count=1,
                    opens_at=NOW,
                    closes_at=NOW - timedelta(minutes=1),
                )
            ]
        )


def test_top_tier_claims_through_lower_window(service, pool, identity, chain):
    """Verify a tier-1 staker gets the tier-1 count while tier 1 is closed."""
    _stake(identity, chain, 11, 200 * M)

    outcome = service.claim_units(pool.id, 11, [0, 1, 2])

    assert outcome.allocation_count == 3
    assert outcome.claimed_units == [0, 1, 2]
    assert outcome.total_claimed == 3
    assert outcome.tier == "tier1"


def test_claims_cannot_exceed_allocation(service, pool, identity, chain):
    _stake(identity, chain, 11, 200 * M)
    service.claim_units(pool.id, 11, [0, 1])

    with pytest.raises(IneligibleError) as excinfo:
        service.claim_units(pool.id, 11, [2, 3])
    assert excinfo.value.reason == "exceeds_allocation"

    service.claim_units(pool.id, 11, [2])
    with pytest.raises(IneligibleError) as excinfo:
        service.claim_units(pool.id, 11, [3])
    assert excinfo.value.reason == "allocation_exhausted"


def test_admin_units_count_toward_player_allocation(service, pool, identity, chain):
    """Verify admin-placed units use up the player's own allocation."""
    _stake(identity, chain, 12, 60 * M)
    service.admin_add(pool.id, 12, [50])

    with pytest.raises(IneligibleError) as excinfo:
        service.claim_units(pool.id, 12, [51])

    assert excinfo.value.reason == "allocation_exhausted"


def test_auto_limit_ignores_admin_units(service, pool, identity, chain):
    """Verify the auto-claim cap counts player claims only."""
    service.admin_add(pool.id, 99, [90, 91, 92, 93, 94, 95, 96, 97])
    for fid in (21, 22):
        _stake(identity, chain, fid, 200 * M)
    service.claim_units(pool.id, 21, [0, 1, 2])
    service.claim_units(pool.id, 22, [3, 4, 5])
    _stake(identity, chain, 23, 60 * M)

    with pytest.raises(IneligibleError) as excinfo:
        service.claim_units(pool.id, 23, [6])

    assert excinfo.value.reason == "pool_exhausted"


def test_taken_units_conflict(service, pool, identity, chain):
    _stake(identity, chain, 11, 200 * M)
    _stake(identity, chain, 12, 60 * M)
    service.claim_units(pool.id, 11, [5])

    with pytest.raises(ConflictError) as excinfo:
        service.claim_units(pool.id, 12, [5])

    assert "5" in excinfo.value.message
    with pytest.raises(ConflictError):
        service.admin_add(pool.id, 13, [5])


def test_mid_tier_claims_through_open_lower_window(service, pool, identity, chain):
    """Verify a tier-2 staker whose window is upcoming still claims via tier 3."""
    _stake(identity, chain, 14, 120 * M)

    outcome = service.claim_units(pool.id, 14, [7, 8])

    assert outcome.allocation_count == 2
    assert outcome.tier == "tier2"


def test_only_upcoming_window_reports_opening(service, identity, chain):
    opens_at = NOW + timedelta(hours=1)
    upcoming = service.create_pool(
        windows=[TierWindow(min_stake=Decimal(100 * M), allocation_count=2, opens_at=opens_at)]
    )
    _stake(identity, chain, 14, 120 * M)

    with pytest.raises(IneligibleError) as excinfo:
        service.claim_units(upcoming.id, 14, [7])

    assert excinfo.value.reason == "window_not_open"
    assert excinfo.value.opens_at == opens_at


def test_below_minimum_stake(service, pool, identity, chain):
    _stake(identity, chain, 15, 10 * M)

    with pytest.raises(IneligibleError) as excinfo:
        service.claim_units(pool.id, 15, [8])

    assert excinfo.value.reason == "below_minimum"


@pytest.mark.parametrize("units", [[100], [-1], [1, 1], []])
def test_invalid_units(service, pool, identity, chain, units):
    _stake(identity, chain, 11, 200 * M)

    with pytest.raises(ValidationError):
        service.claim_units(pool.id, 11, units)


def test_pool_must_be_claiming(service, pool, db_session):
    pool.status = "locked"
    db_session.commit()

    with pytest.raises(ValidationError):
        service.claim_units(pool.id, 11, [1])


def test_unknown_pool(service):
    with pytest.raises(NotFoundError):
        service.claim_units("missing", 11, [1])


def test_eligibility_report(service, pool, identity, chain, db_session):
    """Verify the eligibility check mirrors the claim rules without writing."""
    _stake(identity, chain, 11, 200 * M)
    _stake(identity, chain, 15, 10 * M)

    eligible = service.eligibility(pool.id, 11)
    ineligible = service.eligibility(pool.id, 15)

    assert eligible.eligible is True
    assert eligible.allocation_count == 3
    assert eligible.window == "tier3"
    assert eligible.stake == Decimal(200 * M)
    assert ineligible.eligible is False
    assert ineligible.reason == "below_minimum"
    assert AllocationRepository(db_session).claimed_units(pool.id) == set()
