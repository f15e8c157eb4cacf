from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from typing import Any

import httpx
from loguru import logger

from app.core.config import settings

from .normalize import addresses_by_fid

BULK_USERS_PATH = "/v2/farcaster/user/bulk"


def _chunked(values: Sequence[int], size: int) -> Iterator[list[int]]:
    for index in range(0, len(values), size):
        yield list(values[index : index + size])


class NeynarClient:
    """Thin wrapper around the Neynar bulk user lookup."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        batch_size: int | None = None,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url or str(settings.neynar_base_url)
        self.batch_size = batch_size or settings.neynar_bulk_batch_size
        key = api_key if api_key is not None else settings.neynar_api_key
        headers = {"accept": "application/json"}
        if key:
            headers["x-api-key"] = key
        else:
            logger.warning("NEYNAR_API_KEY is not configured; bulk user lookups will be unauthenticated")
        self.client = httpx.Client(
            base_url=self.base_url, timeout=timeout, headers=headers, transport=transport
        )

    def fetch_bulk_users(self, fids: Iterable[int]) -> list[dict[str, Any]]:
        unique = sorted({int(fid) for fid in fids if fid})
        users: list[dict[str, Any]] = []
        for chunk in _chunked(unique, self.batch_size):
            params = {"fids": ",".join(str(fid) for fid in chunk)}
            logger.debug("Neynar GET {} fids={}", BULK_USERS_PATH, len(chunk))
            response = self.client.get(BULK_USERS_PATH, params=params)
            response.raise_for_status()
            payload = response.json()
            batch = payload.get("users") if isinstance(payload, dict) else None
            if isinstance(batch, list):
                users.extend(user for user in batch if isinstance(user, dict))
        return users

    def wallet_addresses(self, fids: Iterable[int]) -> dict[int, list[str]]:
        """Candidate payout addresses per fid; raises ``httpx.HTTPError`` on upstream failure."""

        requested = [int(fid) for fid in fids if fid]
        if not requested:
            return {}
        users = self.fetch_bulk_users(requested)
        return addresses_by_fid(users, requested)

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "NeynarClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = ["NeynarClient"]
