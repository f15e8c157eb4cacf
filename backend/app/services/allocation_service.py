"""Player claims and admin placements against fixed-size allocation pools."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.communities import CommunityRegistry
from app.core.errors import ConflictError, IneligibleError, NotFoundError, ValidationError
from app.domain import AllocationOutcome, TierWindow
from app.models import ADMIN_CLAIM_TYPE, AllocationPool, PoolStatus, utcnow
from app.repositories import AllocationRepository

from . import tier_allocator
from .address_directory import AddressDirectory


@dataclass(slots=True)
class EligibilityReport:
    pool_id: str
    fid: int
    stake: Decimal
    eligible: bool
    allocation_count: int | None = None
    tier: str | None = None
    window: str | None = None
    claimed_units: int = 0
    reason: str | None = None
    message: str | None = None
    opens_at: datetime | None = None


def _to_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class AllocationService:
    def __init__(
        self,
        session: Session,
        *,
        directory: AddressDirectory,
        communities: CommunityRegistry,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session = session
        self._repo = AllocationRepository(session)
        self._directory = directory
        self._communities = communities
        self._clock = clock

    # ------------------------------------------------------------------
    # Pools

    def create_pool(
        self,
        *,
        windows: Sequence[TierWindow],
        title: str | None = None,
        community: str | None = None,
        pool_size: int = 100,
        auto_units_limit: int = 90,
    ) -> AllocationPool:
        if not windows:
            raise ValidationError("At least one tier window is required")
        if pool_size <= 0 or not 0 <= auto_units_limit <= pool_size:
            raise ValidationError("auto_units_limit must be between 0 and pool_size")
        for window in windows:
            if window.allocation_count <= 0 or Decimal(window.min_stake) < 0:
                raise ValidationError("Tier windows need a positive allocation and non-negative stake")
            if window.opens_at and window.closes_at and window.closes_at < window.opens_at:
                raise ValidationError(f"Tier window {window.name or '?'} closes before it opens")
        if community:
            self._communities.get(community)

        normalized = [
            replace(window, opens_at=_to_utc(window.opens_at), closes_at=_to_utc(window.closes_at))
            for window in tier_allocator.ordered_windows(windows)
        ]
        pool = self._repo.create_pool(
            title=title,
            community=community,
            pool_size=pool_size,
            auto_units_limit=auto_units_limit,
            windows=normalized,
        )
        self._session.commit()
        logger.info("Created allocation pool {} with {} tier windows", pool.id, len(normalized))
        return pool

    def _get_pool(self, pool_id: str) -> AllocationPool:
        pool = self._repo.get_pool(pool_id)
        if pool is None:
            raise NotFoundError(f"Pool {pool_id} not found")
        return pool

    def _validate_units(self, pool: AllocationPool, units: Sequence[int]) -> list[int]:
        if not units:
            raise ValidationError("requestedUnits must be a non-empty list")
        cleaned: list[int] = []
        for unit in units:
            if isinstance(unit, bool) or not isinstance(unit, int) or not 0 <= unit < pool.pool_size:
                raise ValidationError(f"Invalid unit index: {unit}")
            cleaned.append(unit)
        if len(set(cleaned)) != len(cleaned):
            raise ValidationError("requestedUnits must not repeat")
        return cleaned

    def _ensure_available(self, pool_id: str, units: Sequence[int]) -> None:
        taken = self._repo.claimed_units(pool_id)
        unavailable = sorted(unit for unit in units if unit in taken)
        if unavailable:
            raise ConflictError(f"Units already taken: {', '.join(str(u) for u in unavailable)}")

    def _insert(self, pool_id: str, *, fid: int, units: Sequence[int], claim_type: str) -> None:
        try:
            self._repo.insert_claims(pool_id, fid=fid, units=units, claim_type=claim_type)
            self._session.commit()
        except IntegrityError as exc:
            self._session.rollback()
            raise ConflictError("One or more units were claimed concurrently") from exc

    # ------------------------------------------------------------------
    # Player claims

    def eligibility(self, pool_id: str, fid: int) -> EligibilityReport:
        pool = self._get_pool(pool_id)
        community = self._communities.get(pool.community)
        stake = self._directory.measure_stake(fid, community)
        windows = self._repo.windows_for_pool(pool_id)
        held = self._repo.count_claims(pool_id, fid=fid)
        report = EligibilityReport(pool_id=pool_id, fid=fid, stake=stake, eligible=False, claimed_units=held)

        evaluation = tier_allocator.evaluate(stake, windows, self._clock())
        if evaluation is None:
            error = tier_allocator.ineligibility(stake, windows, self._clock())
            report.reason = error.reason
            report.message = error.message
            report.opens_at = error.opens_at
            report.allocation_count = tier_allocator.max_allocation(stake, windows)
            return report

        report.allocation_count = evaluation.allocation_count
        report.tier = evaluation.tier
        report.window = evaluation.window.name
        if held >= evaluation.allocation_count:
            report.reason = "allocation_exhausted"
            report.message = f"You already hold {held} of {evaluation.allocation_count} units"
        else:
            report.eligible = True
        return report

    def claim_units(self, pool_id: str, fid: int, requested_units: Sequence[int]) -> AllocationOutcome:
        pool = self._get_pool(pool_id)
        if pool.status != PoolStatus.CLAIMING.value:
            raise ValidationError(f"Pool is not in claiming phase (current: {pool.status})")
        units = self._validate_units(pool, requested_units)

        community = self._communities.get(pool.community)
        stake = self._directory.measure_stake(fid, community)
        windows = self._repo.windows_for_pool(pool_id)
        now = self._clock()
        evaluation = tier_allocator.evaluate(stake, windows, now)
        if evaluation is None:
            raise tier_allocator.ineligibility(stake, windows, now)

        allowed = evaluation.allocation_count
        held = self._repo.count_claims(pool_id, fid=fid)
        if held >= allowed:
            raise IneligibleError(
                f"You already have {held} unit(s). {evaluation.tier} allows maximum {allowed}.",
                reason="allocation_exhausted",
                fid=fid,
            )
        if held + len(units) > allowed:
            raise IneligibleError(
                f"You can only claim {allowed - held} more unit(s). Tried to claim {len(units)}.",
                reason="exceeds_allocation",
                fid=fid,
            )
        auto_claimed = self._repo.count_claims(pool_id, exclude_admin=True)
        if auto_claimed + len(units) > pool.auto_units_limit:
            raise IneligibleError(
                f"Only {max(pool.auto_units_limit - auto_claimed, 0)} auto units remaining",
                reason="pool_exhausted",
                fid=fid,
            )
        self._ensure_available(pool_id, units)

        claim_type = evaluation.tier or evaluation.window.name or "tier"
        self._insert(pool_id, fid=fid, units=units, claim_type=claim_type)
        logger.info(
            "fid {} claimed units {} in pool {} via {} window",
            fid,
            units,
            pool_id,
            evaluation.window.name,
        )
        return AllocationOutcome(
            pool_id=pool_id,
            fid=fid,
            allocation_count=allowed,
            claimed_units=list(units),
            total_claimed=held + len(units),
            tier=evaluation.tier,
        )

    # ------------------------------------------------------------------
    # Admin placements

    def admin_add(self, pool_id: str, fid: int, units: Sequence[int]) -> AllocationOutcome:
        """Place units for ``fid`` outside the tier rules; uniqueness still applies."""

        pool = self._get_pool(pool_id)
        if fid <= 0:
            raise ValidationError(f"Invalid fid {fid}")
        cleaned = self._validate_units(pool, units)
        self._ensure_available(pool_id, cleaned)
        self._insert(pool_id, fid=fid, units=cleaned, claim_type=ADMIN_CLAIM_TYPE)
        total = self._repo.count_claims(pool_id, fid=fid)
        logger.info("Admin placed units {} for fid {} in pool {}", cleaned, fid, pool_id)
        return AllocationOutcome(
            pool_id=pool_id,
            fid=fid,
            allocation_count=total,
            claimed_units=cleaned,
            total_claimed=total,
            tier=ADMIN_CLAIM_TYPE,
        )


__all__ = ["AllocationService", "EligibilityReport"]
