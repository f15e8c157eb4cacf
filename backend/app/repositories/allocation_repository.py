"""Allocation pool, tier window and unit claim persistence."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.domain import TierWindow
from app.models import (
    ADMIN_CLAIM_TYPE,
    AllocationClaim,
    AllocationPool,
    PoolStatus,
    TierWindowRecord,
    utcnow,
)


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class AllocationRepository:
    """Encapsulate allocation pool persistence concerns."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def create_pool(
        self,
        *,
        title: str | None,
        community: str | None,
        pool_size: int,
        auto_units_limit: int,
        windows: Sequence[TierWindow],
    ) -> AllocationPool:
        pool = AllocationPool(
            title=title,
            community=community,
            pool_size=pool_size,
            auto_units_limit=auto_units_limit,
            status=PoolStatus.CLAIMING.value,
        )
        for index, window in enumerate(windows, start=1):
            pool.windows.append(
                TierWindowRecord(
                    tier_name=window.name or f"tier{index}",
                    min_stake=window.min_stake,
                    allocation_count=window.allocation_count,
                    opens_at=window.opens_at,
                    closes_at=window.closes_at,
                )
            )
        self._session.add(pool)
        self._session.flush()
        return pool

    def insert_claims(
        self,
        pool_id: str,
        *,
        fid: int,
        units: Iterable[int],
        claim_type: str,
    ) -> list[AllocationClaim]:
        claimed_at = utcnow()
        claims = [
            AllocationClaim(
                pool_id=pool_id,
                fid=fid,
                unit_index=int(unit),
                claim_type=claim_type,
                claimed_at=claimed_at,
            )
            for unit in units
        ]
        self._session.add_all(claims)
        # uq_allocation_pool_unit is the only guard against double-claiming a unit.
        self._session.flush()
        return claims

    # ------------------------------------------------------------------
    # Queries

    def get_pool(self, pool_id: str) -> AllocationPool | None:
        return self._session.get(AllocationPool, pool_id)

    def windows_for_pool(self, pool_id: str) -> list[TierWindow]:
        query = (
            select(TierWindowRecord)
            .where(TierWindowRecord.pool_id == pool_id)
            .order_by(TierWindowRecord.min_stake.desc(), TierWindowRecord.id)
        )
        records = self._session.execute(query).scalars().all()
        return [
            TierWindow(
                min_stake=record.min_stake,
                allocation_count=record.allocation_count,
                opens_at=_as_utc(record.opens_at),
                closes_at=_as_utc(record.closes_at),
                name=record.tier_name,
            )
            for record in records
        ]

    def claimed_units(self, pool_id: str) -> set[int]:
        query = select(AllocationClaim.unit_index).where(AllocationClaim.pool_id == pool_id)
        return set(self._session.execute(query).scalars().all())

    def units_for_fid(self, pool_id: str, fid: int) -> list[int]:
        query = (
            select(AllocationClaim.unit_index)
            .where(AllocationClaim.pool_id == pool_id, AllocationClaim.fid == fid)
            .order_by(AllocationClaim.unit_index)
        )
        return list(self._session.execute(query).scalars().all())

    def count_claims(
        self, pool_id: str, *, fid: int | None = None, exclude_admin: bool = False
    ) -> int:
        query = select(func.count(AllocationClaim.id)).where(AllocationClaim.pool_id == pool_id)
        if fid is not None:
            query = query.where(AllocationClaim.fid == fid)
        if exclude_admin:
            query = query.where(AllocationClaim.claim_type != ADMIN_CLAIM_TYPE)
        return int(self._session.execute(query).scalar_one())


__all__ = ["AllocationRepository"]
