"""Token economies sharing the settlement pipeline.

Each game names a community. The community decides which ERC-20 token pays
prizes and which staking contract orders payout wallets and gates claims.
Two communities are built in; a YAML file with a top-level ``communities``
mapping may override them or add new ones::

    communities:
      betr:
        token_address: "0x..."
        staking_address: "0x..."
        staking_fn: stakedAmount
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping

import yaml
from loguru import logger

from .config import Settings
from .errors import ValidationError

STAKING_FUNCTIONS = frozenset({"stakedAmount", "balanceOf"})


@dataclass(slots=True, frozen=True)
class Community:
    name: str
    token_address: str
    staking_address: str
    staking_fn: str = "stakedAmount"
    token_decimals: int = 18
    token_symbol: str = "BETR"


BUILTIN_COMMUNITIES: dict[str, Community] = {
    "betr": Community(
        name="betr",
        token_address="0x051024B653E8ec69E72693F776c41C2A9401FB07",
        staking_address="0x808a12766632b456a74834f2fa8ae06dfc7482f1",
        staking_fn="stakedAmount",
        token_symbol="BETR",
    ),
    "minted_merch": Community(
        name="minted_merch",
        token_address="0x774EAeFE73Df7959496Ac92a77279A8D7d690b07",
        staking_address="0x38AE5d952FA83eD57c5b5dE59b6e36Ce975a9150",
        staking_fn="balanceOf",
        token_symbol="MINTED",
    ),
}


def _parse_community(name: str, entry: Any, base: Community | None) -> Community:
    if not isinstance(entry, Mapping):
        raise TypeError(f"Community {name!r} must be a mapping, got {type(entry)!r}")

    fields = {key: entry[key] for key in entry if key in Community.__dataclass_fields__}
    fields.pop("name", None)
    if base is not None:
        community = replace(base, **fields)
    else:
        missing = {"token_address", "staking_address"} - set(fields)
        if missing:
            raise ValueError(f"Community {name!r} is missing {', '.join(sorted(missing))}")
        community = Community(name=name, **fields)

    if community.staking_fn not in STAKING_FUNCTIONS:
        raise ValueError(
            f"Community {name!r} staking_fn must be one of {sorted(STAKING_FUNCTIONS)}"
        )
    return community


def load_communities(path: str | Path | None = None) -> dict[str, Community]:
    """Return built-in communities merged with the optional YAML overrides."""

    communities = dict(BUILTIN_COMMUNITIES)
    if not path:
        return communities

    raw = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    entries = raw.get("communities") if isinstance(raw, Mapping) else None
    if not isinstance(entries, Mapping):
        raise ValueError(f"{path} must define a top-level 'communities' mapping")

    for name, entry in entries.items():
        communities[str(name)] = _parse_community(str(name), entry, communities.get(str(name)))
    logger.info("Loaded {} community definitions from {}", len(entries), path)
    return communities


class CommunityRegistry:
    """Lookup of configured communities with a default fallback."""

    def __init__(self, communities: Mapping[str, Community], default: str) -> None:
        if default not in communities:
            raise ValueError(f"Default community {default!r} is not configured")
        self._communities = dict(communities)
        self.default = default

    @classmethod
    def from_settings(cls, settings: Settings) -> "CommunityRegistry":
        return cls(load_communities(settings.communities_config_path), settings.default_community)

    def get(self, name: str | None) -> Community:
        key = name or self.default
        community = self._communities.get(key)
        if community is None:
            raise ValidationError(f"Unknown community {key!r}")
        return community

    def names(self) -> list[str]:
        return sorted(self._communities)

    def contract_addresses(self) -> set[str]:
        addresses: set[str] = set()
        for community in self._communities.values():
            addresses.add(community.token_address.lower())
            addresses.add(community.staking_address.lower())
        return addresses


__all__ = [
    "BUILTIN_COMMUNITIES",
    "Community",
    "CommunityRegistry",
    "load_communities",
]
