"""Payout address lookup and stake measurement for fids."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from decimal import Decimal

import httpx
from loguru import logger

from app.core.communities import Community
from app.core.errors import GameServiceError
from upstream.normalize import exclude_addresses

from .ports import ChainGateway, IdentityDirectory

_DIRECTORY_ERRORS = (httpx.HTTPError, GameServiceError, ValueError)


def units_to_tokens(units: int, decimals: int = 18) -> Decimal:
    return Decimal(int(units)) / (Decimal(10) ** decimals)


class AddressDirectory:
    """Resolve fids to candidate payout addresses, optionally ordered by stake."""

    def __init__(
        self,
        identity: IdentityDirectory,
        chain: ChainGateway,
        *,
        excluded_addresses: Iterable[str] = (),
        stake_attempts: int = 3,
        stake_backoff_seconds: float = 1.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._identity = identity
        self._chain = chain
        self._excluded = {address.lower() for address in excluded_addresses if address}
        self._stake_attempts = max(1, stake_attempts)
        self._stake_backoff = stake_backoff_seconds
        self._sleep = sleep

    def resolve_addresses(
        self,
        fids: Iterable[int],
        *,
        stake_contract: str | None = None,
        stake_fn: str | None = None,
    ) -> dict[int, list[str]]:
        """Return ``fid -> addresses`` with the highest staker first when ordering is requested.

        A failed directory call yields ``{}`` so each winner surfaces its own
        "address not found" error downstream.
        """

        unique = sorted({int(fid) for fid in fids})
        if not unique:
            return {}
        try:
            raw = self._identity.wallet_addresses(unique)
        except _DIRECTORY_ERRORS as exc:
            logger.warning("Identity directory lookup failed for {} fids: {}", len(unique), exc)
            return {}

        address_map = {
            fid: exclude_addresses(addresses, self._excluded) for fid, addresses in raw.items()
        }
        if stake_contract and stake_fn:
            address_map = self._order_by_stake(address_map, stake_contract, stake_fn)
        return address_map

    def _order_by_stake(
        self, address_map: dict[int, list[str]], stake_contract: str, stake_fn: str
    ) -> dict[int, list[str]]:
        ordered: dict[int, list[str]] = {}
        for fid, addresses in address_map.items():
            if len(addresses) <= 1:
                ordered[fid] = list(addresses)
                continue
            stakes: dict[str, int] = {}
            for address in addresses:
                try:
                    stakes[address] = self._chain.read_uint(stake_contract, stake_fn, address)
                except GameServiceError as exc:
                    logger.warning(
                        "Stake read failed for fid {} address {}; treating as zero: {}",
                        fid,
                        address,
                        exc.message,
                    )
                    stakes[address] = 0
            # sorted() is stable, so equal stakes keep directory order.
            ordered[fid] = sorted(addresses, key=lambda item: stakes[item], reverse=True)
        return ordered

    def measure_stake(self, fid: int, community: Community) -> Decimal:
        """Sum the fid's stake across all candidate addresses.

        Directory failures and addresses that never answer count as zero.
        """

        addresses = self.resolve_addresses([fid]).get(int(fid), [])
        if not addresses:
            return Decimal(0)

        total_units = 0
        for address in addresses:
            units = self._read_with_retry(community, address)
            if units is not None:
                total_units += units
        stake = units_to_tokens(total_units, community.token_decimals)
        logger.debug("Measured stake {} for fid {} across {} addresses", stake, fid, len(addresses))
        return stake

    def _read_with_retry(self, community: Community, address: str) -> int | None:
        for attempt in range(1, self._stake_attempts + 1):
            try:
                return self._chain.read_uint(community.staking_address, community.staking_fn, address)
            except GameServiceError as exc:
                if attempt == self._stake_attempts:
                    logger.warning(
                        "Stake read for {} failed after {} attempts: {}",
                        address,
                        attempt,
                        exc.message,
                    )
                    return None
                delay = self._stake_backoff * attempt
                logger.warning(
                    "Retry {}/{} stake read for {} in {}s",
                    attempt,
                    self._stake_attempts - 1,
                    address,
                    delay,
                )
                self._sleep(delay)
        return None


__all__ = ["AddressDirectory", "units_to_tokens"]
