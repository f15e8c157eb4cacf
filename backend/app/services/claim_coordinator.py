"""Exactly-once approve-and-create for game requests.

One caller wins a request through a conditional ``pending -> approved``
update. The winner then runs the side effect. If it fails, the request goes
back to ``pending`` only while ``created_game_id`` is still empty: once a
resource exists the request stays ``approved`` so nobody can create it twice.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from uuid import uuid4

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import ConflictError, NotFoundError
from app.domain import ClaimResult
from app.models import GameRequest, RequestStatus
from app.repositories import GameRequestRepository

SideEffect = Callable[[GameRequest, str], str]


@dataclass(slots=True)
class RequestClaim:
    claimed: bool
    current: GameRequest


class AtomicClaimCoordinator:
    def __init__(self, session: Session) -> None:
        self._session = session
        self._requests = GameRequestRepository(session)

    def claim(self, request_id: str, actor_fid: int, claim_token: str) -> RequestClaim:
        """Attempt the conditional transition and return the row as it now stands."""

        affected = self._requests.claim(request_id, actor_fid=actor_fid, claim_token=claim_token)
        self._session.commit()
        current = self._requests.get(request_id)
        if current is None:
            raise NotFoundError(f"Game request {request_id} not found")
        if affected:
            logger.info("Request {} claimed by fid {}", request_id, actor_fid)
        return RequestClaim(claimed=bool(affected), current=current)

    def run(
        self,
        request_id: str,
        actor_fid: int,
        side_effect: SideEffect,
        *,
        claim_token: str | None = None,
    ) -> ClaimResult:
        """Claim ``request_id`` and run ``side_effect(request, claim_token)`` once.

        ``side_effect`` returns the created resource id. A repeat call by the
        actor who already completed the request returns that id again.
        """

        existing = self._requests.get(request_id)
        if existing is None:
            raise NotFoundError(f"Game request {request_id} not found")
        repeat = self._completed_by(existing, actor_fid)
        if repeat is not None:
            return repeat

        token = claim_token or str(uuid4())
        claim = self.claim(request_id, actor_fid, token)
        if not claim.claimed:
            repeat = self._completed_by(claim.current, actor_fid)
            if repeat is not None:
                return repeat
            raise ConflictError(
                f"Request is already {claim.current.status}. Cannot approve twice."
            )

        try:
            resource_id = side_effect(claim.current, token)
        except Exception:
            self._rollback(request_id, token)
            raise

        try:
            self._requests.set_created_resource(
                request_id, claim_token=token, resource_id=resource_id
            )
            self._session.commit()
        except SQLAlchemyError as exc:
            self._session.rollback()
            logger.error(
                "Request {} created resource {} but recording it failed: {}",
                request_id,
                resource_id,
                exc.__class__.__name__,
            )
        logger.info("Request {} approved by fid {} -> resource {}", request_id, actor_fid, resource_id)
        return ClaimResult(claimed=True, request_id=request_id, resource_id=resource_id)

    def _completed_by(self, request: GameRequest, actor_fid: int) -> ClaimResult | None:
        if request.status != RequestStatus.APPROVED.value or not request.created_game_id:
            return None
        if request.approved_by_fid != actor_fid:
            raise ConflictError(
                "Request was already approved by another admin. Cannot approve twice."
            )
        logger.info("Idempotent approval retry for request {} by fid {}", request.id, actor_fid)
        return ClaimResult(
            claimed=False,
            request_id=request.id,
            resource_id=request.created_game_id,
            idempotent=True,
        )

    def _rollback(self, request_id: str, claim_token: str) -> None:
        self._session.rollback()
        try:
            reverted = self._requests.revert_if_uncompleted(request_id, claim_token=claim_token)
            self._session.commit()
        except SQLAlchemyError as exc:
            self._session.rollback()
            logger.error(
                "Failed to roll back claim on request {}: {}", request_id, exc.__class__.__name__
            )
            return
        if reverted:
            logger.info("Request {} returned to pending after failed side effect", request_id)
        else:
            current = self._requests.get(request_id)
            logger.warning(
                "Side effect for request {} failed but resource {} exists; keeping approved",
                request_id,
                current.created_game_id if current else None,
            )


__all__ = ["AtomicClaimCoordinator", "RequestClaim", "SideEffect"]
