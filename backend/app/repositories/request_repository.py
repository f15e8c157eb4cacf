"""Game request persistence with conditional status transitions.

Every status change here is a single ``UPDATE ... WHERE`` whose row count
tells the caller whether it won. Nothing reads a row and then writes it back.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.models import GameRequest, RequestStatus, utcnow


class GameRequestRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def create(self, *, requester_fid: int, payload: dict[str, Any]) -> GameRequest:
        request = GameRequest(
            requester_fid=requester_fid,
            payload=dict(payload),
            status=RequestStatus.PENDING.value,
        )
        self._session.add(request)
        self._session.flush()
        return request

    def claim(self, request_id: str, *, actor_fid: int, claim_token: str) -> int:
        statement = (
            update(GameRequest)
            .where(
                GameRequest.id == request_id,
                GameRequest.status == RequestStatus.PENDING.value,
            )
            .values(
                status=RequestStatus.APPROVED.value,
                approved_by_fid=actor_fid,
                approval_claim_id=claim_token,
                approved_at=utcnow(),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return self._session.execute(statement).rowcount or 0

    def revert_if_uncompleted(self, request_id: str, *, claim_token: str) -> int:
        """Return a claimed request to pending unless its resource already exists."""

        statement = (
            update(GameRequest)
            .where(
                GameRequest.id == request_id,
                GameRequest.status == RequestStatus.APPROVED.value,
                GameRequest.approval_claim_id == claim_token,
                GameRequest.created_game_id.is_(None),
            )
            .values(
                status=RequestStatus.PENDING.value,
                approved_by_fid=None,
                approval_claim_id=None,
                approved_at=None,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return self._session.execute(statement).rowcount or 0

    def set_created_resource(self, request_id: str, *, claim_token: str, resource_id: str) -> int:
        statement = (
            update(GameRequest)
            .where(
                GameRequest.id == request_id,
                GameRequest.approval_claim_id == claim_token,
            )
            .values(created_game_id=resource_id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return self._session.execute(statement).rowcount or 0

    def reject(self, request_id: str, *, actor_fid: int, reason: str | None) -> int:
        statement = (
            update(GameRequest)
            .where(
                GameRequest.id == request_id,
                GameRequest.status == RequestStatus.PENDING.value,
            )
            .values(
                status=RequestStatus.REJECTED.value,
                rejected_by_fid=actor_fid,
                rejection_reason=reason,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return self._session.execute(statement).rowcount or 0

    # ------------------------------------------------------------------
    # Queries

    def get(self, request_id: str) -> GameRequest | None:
        # Conditional updates bypass the identity map, so always reload.
        return self._session.get(GameRequest, request_id, populate_existing=True)

    def list_requests(self, *, status: str | None = None, limit: int = 50) -> list[GameRequest]:
        query = select(GameRequest).order_by(GameRequest.created_at.desc()).limit(limit)
        if status:
            query = query.where(GameRequest.status == status)
        return list(self._session.execute(query).scalars().all())


__all__ = ["GameRequestRepository"]
