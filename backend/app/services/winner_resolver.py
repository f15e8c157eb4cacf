"""Validate declared winners and bind each to a payout address.

Resolution is pure: given the address map produced by
:class:`~app.services.address_directory.AddressDirectory` it performs no I/O.
Game-specific eligibility must be checked by the caller beforehand.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from decimal import Decimal, InvalidOperation

from web3 import Web3

from app.core.errors import ValidationError
from app.domain import ResolvedWinner, WinnerEntry


def select_address(addresses: Sequence[str] | None) -> str | None:
    """Pick the payout address: the first candidate after stake ordering."""

    for address in addresses or ():
        if address:
            return address
    return None


def _coerce_amount(entry: WinnerEntry) -> Decimal:
    try:
        amount = Decimal(str(entry.amount))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(
            f"Invalid amount for winner fid {entry.fid}", fid=entry.fid, position=entry.key
        ) from exc
    if not amount.is_finite():
        raise ValidationError(
            f"Amount for winner fid {entry.fid} must be finite", fid=entry.fid, position=entry.key
        )
    return amount


def ensure_unique(entries: Sequence[WinnerEntry]) -> None:
    """Reject malformed fids and any fid or position key that repeats."""

    seen_fids: set[int] = set()
    seen_keys: set[str] = set()
    for entry in entries:
        fid = entry.fid
        if isinstance(fid, bool) or not isinstance(fid, int) or fid <= 0:
            raise ValidationError(f"Invalid winner fid {fid!r}", position=entry.key)
        if entry.position < 0:
            raise ValidationError(
                f"Invalid position {entry.position} for winner fid {fid}", fid=fid
            )
        if fid in seen_fids:
            raise ValidationError(f"Duplicate winner fid {fid}", fid=fid, position=entry.key)
        seen_fids.add(fid)

        key = entry.key
        if key in seen_keys:
            raise ValidationError(f"Duplicate position {key}", fid=fid, position=key)
        seen_keys.add(key)


def resolve_winners(
    entries: Sequence[WinnerEntry],
    address_map: Mapping[int, Sequence[str]],
    *,
    advantage_only: bool = False,
) -> list[ResolvedWinner]:
    """Return one :class:`ResolvedWinner` per entry, in input order.

    ``advantage_only`` batches must carry amount 0 and skip the transfer step;
    every other batch requires strictly positive amounts.
    """

    if not entries:
        raise ValidationError("At least one winner is required")
    ensure_unique(entries)

    resolved: list[ResolvedWinner] = []
    for entry in entries:
        fid = entry.fid
        key = entry.key
        amount = _coerce_amount(entry)
        if advantage_only:
            if amount != 0:
                raise ValidationError(
                    f"Advantage-only winner fid {fid} must have amount 0", fid=fid, position=key
                )
        elif amount <= 0:
            raise ValidationError(
                f"Amount for winner fid {fid} must be positive", fid=fid, position=key
            )

        address = select_address(address_map.get(fid))
        if not address:
            raise ValidationError(f"No valid wallet for winner fid {fid}", fid=fid, position=key)
        if not Web3.is_address(address):
            raise ValidationError(
                f"Wallet for winner fid {fid} is not a valid address", fid=fid, position=key
            )

        resolved.append(
            ResolvedWinner(
                fid=fid,
                amount=amount,
                position=entry.position,
                address=address,
                position_key=entry.position_key,
            )
        )
    return resolved


__all__ = ["ensure_unique", "resolve_winners", "select_address"]
