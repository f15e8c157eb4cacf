"""Game request intake, approval and rejection."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from loguru import logger
from sqlalchemy.orm import Session

from app.core.communities import CommunityRegistry
from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.domain import ClaimResult
from app.models import GameRequest, RequestStatus
from app.repositories import GameRepository, GameRequestRepository

from .claim_coordinator import AtomicClaimCoordinator

ALLOWED_PAYLOAD_FIELDS = frozenset(
    {
        "title",
        "description",
        "game_type",
        "community",
        "prize_amount",
        "required_positions",
        "eligible_fids",
        "is_preview",
        "scheduled_time",
        "max_participants",
    }
)

# Server-controlled columns a requester may never set.
FORBIDDEN_PAYLOAD_FIELDS = frozenset(
    {
        "id",
        "status",
        "created_by_fid",
        "settled_by_fid",
        "settled_at",
        "settle_tx_hash",
        "created_at",
        "updated_at",
        "approval_claim_id",
        "created_game_id",
    }
)


def sanitize_payload(payload: Any) -> dict[str, Any]:
    """Return only allowed fields; forbidden fields or a missing game_type are errors."""

    if not isinstance(payload, Mapping):
        raise ValidationError("Payload must be an object")
    forbidden = sorted(FORBIDDEN_PAYLOAD_FIELDS.intersection(payload))
    if forbidden:
        raise ValidationError(
            f"Field {forbidden[0]!r} is not allowed in request payload (server-controlled)"
        )
    sanitized = {key: value for key, value in payload.items() if key in ALLOWED_PAYLOAD_FIELDS}
    if not sanitized.get("game_type"):
        raise ValidationError("payload.game_type is required")
    return sanitized


def _parse_prize(value: Any) -> Decimal | None:
    if value in (None, ""):
        return None
    try:
        prize = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValidationError(f"Invalid prize_amount {value!r}") from exc
    if not prize.is_finite() or prize < 0:
        raise ValidationError(f"Invalid prize_amount {value!r}")
    return prize


def _parse_positions(value: Any) -> list[str] | None:
    if value is None:
        return None
    if not isinstance(value, list):
        raise ValidationError("required_positions must be a list")
    keys = [str(item).strip() for item in value if str(item).strip()]
    if len(set(keys)) != len(keys):
        raise ValidationError("required_positions must not repeat")
    return keys


def _parse_fids(value: Any) -> list[int] | None:
    if value is None:
        return None
    if not isinstance(value, list):
        raise ValidationError("eligible_fids must be a list")
    try:
        return [int(item) for item in value]
    except (TypeError, ValueError) as exc:
        raise ValidationError("eligible_fids must contain integers") from exc


class ApprovalService:
    def __init__(self, session: Session, *, communities: CommunityRegistry) -> None:
        self._session = session
        self._communities = communities
        self._requests = GameRequestRepository(session)
        self._games = GameRepository(session)
        self._coordinator = AtomicClaimCoordinator(session)

    def create_request(self, *, requester_fid: int, payload: Mapping[str, Any]) -> GameRequest:
        if not isinstance(payload, Mapping) or not payload:
            raise ValidationError("Request payload must be a non-empty object")
        request = self._requests.create(requester_fid=requester_fid, payload=dict(payload))
        self._session.commit()
        logger.info("Game request {} submitted by fid {}", request.id, requester_fid)
        return request

    def get_request(self, request_id: str) -> GameRequest:
        request = self._requests.get(request_id)
        if request is None:
            raise NotFoundError(f"Game request {request_id} not found")
        return request

    def approve(self, request_id: str, *, actor_fid: int) -> ClaimResult:
        def create_game(request: GameRequest, claim_token: str) -> str:
            payload = sanitize_payload(request.payload)
            community = payload.get("community")
            if community:
                self._communities.get(community)
            game = self._games.create_game(
                game_type=str(payload["game_type"]),
                created_by_fid=actor_fid,
                title=payload.get("title"),
                community=community,
                prize_amount=_parse_prize(payload.get("prize_amount")),
                required_positions=_parse_positions(payload.get("required_positions")),
                eligible_fids=_parse_fids(payload.get("eligible_fids")),
                is_preview=bool(payload.get("is_preview", False)),
            )
            # The game and its link land in one commit.
            self._requests.set_created_resource(
                request.id, claim_token=claim_token, resource_id=game.id
            )
            self._session.commit()
            logger.info("Created game {} from request {}", game.id, request.id)
            return game.id

        return self._coordinator.run(request_id, actor_fid, create_game)

    def reject(self, request_id: str, *, actor_fid: int, reason: str | None = None) -> GameRequest:
        affected = self._requests.reject(request_id, actor_fid=actor_fid, reason=reason)
        self._session.commit()
        current = self.get_request(request_id)
        if affected:
            logger.info("Request {} rejected by fid {}", request_id, actor_fid)
            return current
        if current.status == RequestStatus.REJECTED.value and current.rejected_by_fid == actor_fid:
            return current
        raise ConflictError(f"Request is already {current.status}. Cannot reject.")


__all__ = [
    "ALLOWED_PAYLOAD_FIELDS",
    "ApprovalService",
    "FORBIDDEN_PAYLOAD_FIELDS",
    "sanitize_payload",
]
