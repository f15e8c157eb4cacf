from __future__ import annotations

from collections.abc import Iterable
from typing import Any


def _as_address(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped.lower() if stripped else None


def addresses_from_user(user: dict[str, Any]) -> list[str]:
    """Return the custody address then verified ETH addresses, lowercased and deduplicated."""

    ordered: list[str] = []
    seen: set[str] = set()

    candidates: list[Any] = [user.get("custody_address")]
    verified = user.get("verified_addresses")
    if isinstance(verified, dict):
        eth_addresses = verified.get("eth_addresses")
        if isinstance(eth_addresses, list):
            candidates.extend(eth_addresses)

    for candidate in candidates:
        address = _as_address(candidate)
        if address and address not in seen:
            seen.add(address)
            ordered.append(address)
    return ordered


def addresses_by_fid(users: Iterable[dict[str, Any]], fids: Iterable[int]) -> dict[int, list[str]]:
    """Map every requested fid to its candidate addresses; unknown fids map to ``[]``."""

    result: dict[int, list[str]] = {int(fid): [] for fid in fids}
    for user in users:
        if not isinstance(user, dict):
            continue
        try:
            fid = int(user.get("fid"))
        except (TypeError, ValueError):
            continue
        if fid in result:
            result[fid] = addresses_from_user(user)
    return result


def exclude_addresses(addresses: Iterable[str], blocked: set[str]) -> list[str]:
    return [address for address in addresses if address.lower() not in blocked]


__all__ = ["addresses_by_fid", "addresses_from_user", "exclude_addresses"]
