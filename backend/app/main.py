from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from fastapi import BackgroundTasks, Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.orm import Session

from upstream.chain_client import ChainClient
from upstream.neynar_client import NeynarClient

from . import crud, schemas
from .core.communities import CommunityRegistry
from .core.config import settings
from .core.errors import GameServiceError, NotFoundError, ValidationError
from .db import get_db, init_db
from .domain import SettlementOutcome, TierWindow
from .models import SettlementRecord
from .security import get_actor_fid, require_admin
from .services.address_directory import AddressDirectory
from .services.allocation_service import AllocationService
from .services.approval_service import ApprovalService
from .services.notifications import BackgroundTaskSink, WebhookNotifier
from .services.settlement_service import SettlementService
from .services.transfer_executor import TokenTransferExecutor

app = FastAPI(title="Mini Games Settlement API", version="0.1.0", debug=settings.debug)


@app.on_event("startup")
def on_startup() -> None:
    """Initialize database connections when the API boots."""

    init_db()


@app.exception_handler(GameServiceError)
def handle_game_service_error(request: Request, exc: GameServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("{} {} failed with {}: {}", request.method, request.url.path, exc.code, exc.message)
    else:
        logger.info("{} {} rejected with {}: {}", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/healthz", tags=["system"])
def healthcheck() -> dict[str, str]:
    """Basic readiness check consumed by infrastructure monitors."""

    return {"status": "ok"}


# ----------------------------------------------------------------------
# Collaborators


@lru_cache
def get_communities() -> CommunityRegistry:
    return CommunityRegistry.from_settings(settings)


@lru_cache
def get_identity_client() -> NeynarClient:
    return NeynarClient()


@lru_cache
def get_chain_client() -> ChainClient:
    return ChainClient()


@lru_cache
def get_notifier() -> WebhookNotifier:
    url = str(settings.notification_webhook_url) if settings.notification_webhook_url else None
    return WebhookNotifier(url)


def _address_directory(
    identity: NeynarClient = Depends(get_identity_client),
    chain: ChainClient = Depends(get_chain_client),
    communities: CommunityRegistry = Depends(get_communities),
) -> AddressDirectory:
    """Directory that never selects token, staking or configured contract addresses."""

    excluded = set(settings.known_contract_addresses) | communities.contract_addresses()
    return AddressDirectory(
        identity,
        chain,
        excluded_addresses=excluded,
        stake_attempts=settings.stake_read_attempts,
        stake_backoff_seconds=settings.stake_read_backoff_seconds,
    )


def _settlement_service(
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    directory: AddressDirectory = Depends(_address_directory),
    chain: ChainClient = Depends(get_chain_client),
    communities: CommunityRegistry = Depends(get_communities),
    notifier: WebhookNotifier = Depends(get_notifier),
) -> SettlementService:
    executor = TokenTransferExecutor(chain, default_community=communities.get(None))
    return SettlementService(
        db,
        directory=directory,
        executor=executor,
        communities=communities,
        event_sink=BackgroundTaskSink(background_tasks, notifier),
    )


def _approval_service(
    db: Session = Depends(get_db),
    communities: CommunityRegistry = Depends(get_communities),
) -> ApprovalService:
    return ApprovalService(db, communities=communities)


def _allocation_service(
    db: Session = Depends(get_db),
    directory: AddressDirectory = Depends(_address_directory),
    communities: CommunityRegistry = Depends(get_communities),
) -> AllocationService:
    return AllocationService(db, directory=directory, communities=communities)


def _record_out(record: SettlementRecord) -> schemas.SettlementRecord:
    item = schemas.SettlementRecord.model_validate(record)
    item.tx_url = settings.explorer_tx_url(record.tx_hash)
    return item


def _settle_response(outcome: SettlementOutcome) -> schemas.SettleResponse:
    return schemas.SettleResponse(
        game_id=outcome.game_id,
        tx_hash=outcome.tx_hash,
        tx_hashes=outcome.tx_hashes,
        tx_urls=[settings.explorer_tx_url(tx_hash) for tx_hash in outcome.tx_hashes],
        resolved_winners=[
            schemas.ResolvedWinnerOut(
                fid=winner.fid,
                amount=winner.amount,
                position=winner.position,
                position_key=winner.key,
                address=winner.address,
            )
            for winner in outcome.resolved_winners
        ],
        skipped_positions=outcome.skipped_positions,
        unconfirmed_positions=outcome.unconfirmed_positions,
        game_status=outcome.game_status,
        finalized=outcome.finalized,
    )


# ----------------------------------------------------------------------
# Games and settlement


@app.post("/games", response_model=schemas.Game, status_code=201, tags=["games"])
def create_game(
    body: schemas.GameCreate,
    actor_fid: int = Depends(require_admin),
    db: Session = Depends(get_db),
    communities: CommunityRegistry = Depends(get_communities),
):
    """Create a settleable game directly (without a request)."""

    if body.community:
        communities.get(body.community)
    game = crud.create_game(
        db,
        game_type=body.game_type,
        created_by_fid=actor_fid,
        title=body.title,
        community=body.community,
        prize_amount=body.prize_amount,
        required_positions=body.required_positions,
        eligible_fids=body.eligible_fids,
        is_preview=body.is_preview,
    )
    db.commit()
    return game


@app.get("/games", response_model=schemas.GameList, tags=["games"])
def list_games(
    status: Annotated[str | None, Query(description="Filter by game status")] = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    db: Session = Depends(get_db),
):
    games = crud.list_games(db, status=status, limit=limit)
    return schemas.GameList(
        total=len(games), items=[schemas.Game.model_validate(game) for game in games]
    )


@app.get("/communities", response_model=list[schemas.Community], tags=["games"])
def list_communities(communities: CommunityRegistry = Depends(get_communities)):
    return [
        schemas.Community.model_validate(communities.get(name)) for name in communities.names()
    ]


@app.get("/games/{game_id}", response_model=schemas.Game, tags=["games"])
def get_game(game_id: str, db: Session = Depends(get_db)):
    game = crud.get_game(db, game_id)
    if game is None:
        raise NotFoundError(f"Game {game_id} not found")
    return game


@app.get("/games/{game_id}/settlements", response_model=schemas.SettlementList, tags=["settlement"])
def list_game_settlements(game_id: str, db: Session = Depends(get_db)):
    """Ledger rows for one game, oldest first, including unconfirmed reservations."""

    if crud.get_game(db, game_id) is None:
        raise NotFoundError(f"Game {game_id} not found")
    records = crud.list_settlements(db, game_id, include_pending=True)
    return schemas.SettlementList(total=len(records), items=[_record_out(r) for r in records])


@app.post("/games/{game_id}/settle", response_model=schemas.SettleResponse, tags=["settlement"])
def settle_game(
    game_id: str,
    body: schemas.SettleRequest,
    actor_fid: int = Depends(require_admin),
    service: SettlementService = Depends(_settlement_service),
):
    """Pay and record winners; already settled positions are skipped."""

    if not body.confirm:
        raise ValidationError("Settlement requires confirm: true")
    outcome = service.settle(
        game_id,
        schemas.to_winner_entries(body.winners),
        actor_fid=actor_fid,
        advantage_only=body.advantage_only,
        notes=body.notes,
    )
    return _settle_response(outcome)


@app.post(
    "/games/{game_id}/settle/preview", response_model=schemas.PreviewResponse, tags=["settlement"]
)
def preview_settlement(
    game_id: str,
    body: schemas.PreviewRequest,
    _: int = Depends(require_admin),
    service: SettlementService = Depends(_settlement_service),
):
    lines = service.preview(game_id, schemas.to_winner_entries(body.winners))
    return schemas.PreviewResponse(
        game_id=game_id,
        winners=[
            schemas.PreviewLineOut(
                fid=line.fid,
                amount=line.amount,
                position=line.position,
                position_key=line.position_key,
                address=line.address,
                already_paid=line.already_paid,
                tx_hash=line.tx_hash,
                tx_url=settings.explorer_tx_url(line.tx_hash),
                error=line.error,
            )
            for line in lines
        ],
    )


@app.post("/games/{game_id}/finalize", response_model=schemas.FinalizeResponse, tags=["settlement"])
def finalize_game(
    game_id: str,
    actor_fid: int = Depends(require_admin),
    service: SettlementService = Depends(_settlement_service),
):
    outcome = service.finalize(game_id, actor_fid=actor_fid)
    return schemas.FinalizeResponse(
        game_id=game_id, game_status=outcome.game_status, finalized=outcome.finalized
    )


@app.post(
    "/games/{game_id}/reconcile", response_model=schemas.SettleResponse, tags=["settlement"]
)
def reconcile_position(
    game_id: str,
    body: schemas.ReconcileRequest,
    actor_fid: int = Depends(require_admin),
    service: SettlementService = Depends(_settlement_service),
):
    """Record an unconfirmed transfer as paid by ``txHash``, or release it for a re-run."""

    if not body.confirm:
        raise ValidationError("Reconciliation requires confirm: true")
    outcome = service.reconcile(
        game_id, body.position_key, actor_fid=actor_fid, tx_hash=body.tx_hash
    )
    return _settle_response(outcome)


@app.get("/admin/settlement-history", response_model=schemas.SettlementList, tags=["admin"])
def settlement_history(
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
    game_type: Annotated[str | None, Query(description="Restrict to one game type")] = None,
    _: int = Depends(require_admin),
    db: Session = Depends(get_db),
):
    records = crud.settlement_history(db, limit=limit, game_type=game_type)
    return schemas.SettlementList(total=len(records), items=[_record_out(r) for r in records])


@app.get("/admin/payouts-by-fid/{fid}", response_model=schemas.PayoutsByFid, tags=["admin"])
def payouts_by_fid(
    fid: int,
    _: int = Depends(require_admin),
    db: Session = Depends(get_db),
):
    summary = crud.payouts_for_fid(db, fid)
    return schemas.PayoutsByFid(
        fid=fid,
        total_amount=summary.total_amount,
        items=[_record_out(record) for record in summary.records],
    )


# ----------------------------------------------------------------------
# Game requests


@app.post("/game-requests", response_model=schemas.GameRequest, status_code=201, tags=["requests"])
def submit_game_request(
    body: schemas.GameRequestCreate,
    actor_fid: int = Depends(get_actor_fid),
    service: ApprovalService = Depends(_approval_service),
):
    return service.create_request(requester_fid=actor_fid, payload=body.payload)


@app.get("/game-requests", response_model=schemas.GameRequestList, tags=["requests"])
def list_game_requests(
    status: Annotated[str | None, Query(description="pending, approved or rejected")] = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    _: int = Depends(require_admin),
    db: Session = Depends(get_db),
):
    requests = crud.list_game_requests(db, status=status, limit=limit)
    return schemas.GameRequestList(
        total=len(requests),
        items=[schemas.GameRequest.model_validate(request) for request in requests],
    )


@app.get("/game-requests/{request_id}", response_model=schemas.GameRequest, tags=["requests"])
def get_game_request(
    request_id: str,
    _: int = Depends(require_admin),
    db: Session = Depends(get_db),
):
    request = crud.get_game_request(db, request_id)
    if request is None:
        raise NotFoundError(f"Game request {request_id} not found")
    return request


@app.post(
    "/game-requests/{request_id}/approve", response_model=schemas.ApproveResponse, tags=["requests"]
)
def approve_game_request(
    request_id: str,
    actor_fid: int = Depends(require_admin),
    service: ApprovalService = Depends(_approval_service),
):
    """Approve once and create the game; a repeat by the same admin returns the same game."""

    result = service.approve(request_id, actor_fid=actor_fid)
    return schemas.ApproveResponse(
        request_id=result.request_id,
        resource_id=result.resource_id,
        idempotent=result.idempotent,
    )


@app.post(
    "/game-requests/{request_id}/reject", response_model=schemas.GameRequest, tags=["requests"]
)
def reject_game_request(
    request_id: str,
    body: schemas.RejectRequest | None = None,
    actor_fid: int = Depends(require_admin),
    service: ApprovalService = Depends(_approval_service),
):
    reason = body.reason if body else None
    return service.reject(request_id, actor_fid=actor_fid, reason=reason)


# ----------------------------------------------------------------------
# Allocation pools


@app.post("/pools", response_model=schemas.Pool, status_code=201, tags=["pools"])
def create_pool(
    body: schemas.PoolCreate,
    _: int = Depends(require_admin),
    service: AllocationService = Depends(_allocation_service),
):
    windows = [
        TierWindow(
            min_stake=window.min_stake,
            allocation_count=window.allocation_count,
            opens_at=window.opens_at,
            closes_at=window.closes_at,
            name=window.name,
        )
        for window in body.windows
    ]
    return service.create_pool(
        windows=windows,
        title=body.title,
        community=body.community,
        pool_size=body.pool_size,
        auto_units_limit=body.auto_units_limit,
    )


@app.get("/pools/{pool_id}", response_model=schemas.Pool, tags=["pools"])
def get_pool(pool_id: str, db: Session = Depends(get_db)):
    pool = crud.get_pool(db, pool_id)
    if pool is None:
        raise NotFoundError(f"Pool {pool_id} not found")
    return pool


@app.get("/pools/{pool_id}/units", response_model=schemas.PoolUnits, tags=["pools"])
def pool_units(
    pool_id: str,
    fid: Annotated[int, Query(gt=0)],
    db: Session = Depends(get_db),
):
    """Units already held by ``fid`` in the pool, ascending."""

    if crud.get_pool(db, pool_id) is None:
        raise NotFoundError(f"Pool {pool_id} not found")
    return schemas.PoolUnits(pool_id=pool_id, fid=fid, units=crud.pool_units_for_fid(db, pool_id, fid))


@app.get("/pools/{pool_id}/eligibility", response_model=schemas.Eligibility, tags=["pools"])
def pool_eligibility(
    pool_id: str,
    fid: Annotated[int, Query(gt=0, description="Fid to evaluate")],
    service: AllocationService = Depends(_allocation_service),
):
    """Report the tier evaluation for ``fid`` without claiming anything."""

    report = service.eligibility(pool_id, fid)
    return schemas.Eligibility.model_validate(report)


@app.post("/pools/{pool_id}/claim", response_model=schemas.ClaimResponse, tags=["pools"])
def claim_pool_units(
    pool_id: str,
    body: schemas.ClaimRequest,
    actor_fid: int = Depends(get_actor_fid),
    service: AllocationService = Depends(_allocation_service),
):
    outcome = service.claim_units(pool_id, actor_fid, body.requested_units)
    return schemas.ClaimResponse.model_validate(outcome)


@app.post("/pools/{pool_id}/admin-add", response_model=schemas.ClaimResponse, tags=["pools"])
def admin_add_units(
    pool_id: str,
    body: schemas.AdminAddRequest,
    _: int = Depends(require_admin),
    service: AllocationService = Depends(_allocation_service),
):
    outcome = service.admin_add(pool_id, body.fid, body.units)
    return schemas.ClaimResponse.model_validate(outcome)
