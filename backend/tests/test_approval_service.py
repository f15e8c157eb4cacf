from __future__ import annotations

from decimal import Decimal

import pytest

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.models import RequestStatus
from app.repositories import GameRepository
from app.services.approval_service import ApprovalService, sanitize_payload


@pytest.fixture
def service(db_session, communities) -> ApprovalService:
    return ApprovalService(db_session, communities=communities)


def _submit(service: ApprovalService, **payload):
    fields = {
        "game_type": "buddy_up",
        "title": "Friday night",
        "prize_amount": "250",
        "required_positions": [1, 2],
    }
    fields.update(payload)
    return service.create_request(requester_fid=7, payload=fields)


def test_approve_creates_game_once(service, db_session):
    """Verify approval creates exactly one game and links it to the request."""
    request = _submit(service)

    result = service.approve(request.id, actor_fid=42)

    game = GameRepository(db_session).get(result.resource_id)
    assert game.game_type == "buddy_up"
    assert game.prize_amount == Decimal("250")
    assert game.required_positions == ["1", "2"]
    assert game.created_by_fid == 42
    stored = service.get_request(request.id)
    assert stored.status == RequestStatus.APPROVED.value
    assert stored.created_game_id == game.id


def test_repeat_approval_by_same_admin_is_idempotent(service, db_session):
    request = _submit(service)
    first = service.approve(request.id, actor_fid=42)

    second = service.approve(request.id, actor_fid=42)

    assert second.idempotent is True
    assert second.resource_id == first.resource_id
    assert len(GameRepository(db_session).list_games()) == 1


def test_forbidden_field_rolls_claim_back(service, db_session):
    """Verify a payload setting server fields fails and leaves the request pending."""
    request = _submit(service, status="settled")

    with pytest.raises(ValidationError):
        service.approve(request.id, actor_fid=42)

    assert service.get_request(request.id).status == RequestStatus.PENDING.value
    assert GameRepository(db_session).list_games() == []


def test_unknown_community_rolls_claim_back(service):
    request = _submit(service, community="nope")

    with pytest.raises(ValidationError):
        service.approve(request.id, actor_fid=42)

    assert service.get_request(request.id).approved_by_fid is None


def test_reject_then_approve_conflicts(service):
    request = _submit(service)
    rejected = service.reject(request.id, actor_fid=43, reason="duplicate")

    assert rejected.status == RequestStatus.REJECTED.value
    assert rejected.rejection_reason == "duplicate"
    assert service.reject(request.id, actor_fid=43).status == RequestStatus.REJECTED.value
    with pytest.raises(ConflictError):
        service.reject(request.id, actor_fid=42)
    with pytest.raises(ConflictError):
        service.approve(request.id, actor_fid=42)


def test_empty_payload_is_rejected(service):
    with pytest.raises(ValidationError):
        service.create_request(requester_fid=7, payload={})


def test_unknown_request(service):
    with pytest.raises(NotFoundError):
        service.approve("missing", actor_fid=42)


def test_sanitize_payload_filters_unknown_fields():
    payload = sanitize_payload({"game_type": "squares", "colour": "red", "title": "Bowl"})

    assert payload == {"game_type": "squares", "title": "Bowl"}


@pytest.mark.parametrize(
    "payload",
    [
        {"title": "no type"},
        {"game_type": "squares", "created_game_id": "x"},
        ["not", "a", "mapping"],
    ],
)
def test_sanitize_payload_rejects(payload):
    with pytest.raises(ValidationError):
        sanitize_payload(payload)
