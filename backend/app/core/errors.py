"""Error taxonomy shared by the settlement, approval and claim services."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any


class GameServiceError(Exception):
    """Base class for errors rendered to API callers."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(
        self,
        message: str,
        *,
        position: str | None = None,
        fid: int | None = None,
        reason: str | None = None,
        opens_at: datetime | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.position = position
        self.fid = fid
        self.reason = reason
        self.opens_at = opens_at

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"ok": False, "error": self.message, "code": self.code}
        if self.position is not None:
            payload["position"] = self.position
        if self.fid is not None:
            payload["fid"] = self.fid
        if self.reason is not None:
            payload["reason"] = self.reason
        if self.opens_at is not None:
            payload["opensAt"] = self.opens_at.isoformat()
        return payload


class ValidationError(GameServiceError):
    """Malformed or inconsistent input; nothing was attempted."""

    status_code = 400
    code = "validation_error"


class NotFoundError(GameServiceError):
    status_code = 404
    code = "not_found"


class ConflictError(GameServiceError):
    """Another actor already completed this exact operation."""

    status_code = 409
    code = "conflict"


class IneligibleError(GameServiceError):
    """The requester cannot claim right now; ``reason`` is machine readable."""

    status_code = 403
    code = "ineligible"


class CorruptionGuardError(GameServiceError):
    """An internal invariant was violated; no payout is recorded as paid."""

    status_code = 500
    code = "corruption_guard"


class UpstreamError(GameServiceError):
    """Identity directory or chain RPC failure; retryable by an operator."""

    status_code = 502
    code = "upstream_error"


class TransferError(UpstreamError):
    """A payout batch stopped; ``sent_hashes`` are the transfers confirmed before it."""

    code = "transfer_failed"

    def __init__(self, message: str, *, sent_hashes: Sequence[str] = (), **context: Any) -> None:
        super().__init__(message, **context)
        self.sent_hashes = list(sent_hashes)

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        if self.sent_hashes:
            payload["sentTxHashes"] = list(self.sent_hashes)
        return payload


class InsufficientBalanceError(TransferError):
    code = "insufficient_balance"


class TransferTimeoutError(TransferError):
    code = "transfer_timeout"


class InvalidAddressError(TransferError):
    code = "invalid_address"


class AuthenticationError(GameServiceError):
    status_code = 401
    code = "unauthenticated"


class AuthorizationError(GameServiceError):
    status_code = 403
    code = "forbidden"


__all__ = [
    "AuthenticationError",
    "AuthorizationError",
    "ConflictError",
    "CorruptionGuardError",
    "GameServiceError",
    "IneligibleError",
    "InsufficientBalanceError",
    "InvalidAddressError",
    "NotFoundError",
    "TransferError",
    "TransferTimeoutError",
    "UpstreamError",
    "ValidationError",
]
