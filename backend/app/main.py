from __future__ import annotations

import secrets
from typing import Annotated, Any

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from pipelines.batch_payout import BatchPayoutOptions, BatchPayoutRunner

from . import schemas
from .core.config import Settings, get_settings, settings
from .db import init_db
from .domain.errors import BattleHubError
from .services.admin_service import AdminService
from .services.battle_service import BattleService
from .services.matchmaking_service import MatchmakingService
from .services.payout_service import PayoutService
from .services.verification_service import VerificationService

app = FastAPI(title="BattleHub API", version="0.1.0", debug=settings.debug)
# Built once so its single-flight guard spans every request in the process.
app.state.batch_payout_runner = BatchPayoutRunner()

_ERROR_STATUS = {
    "validation_error": 400,
    "not_found": 404,
    "batch_already_running": 409,
    "inconsistent_state": 500,
    "store_unavailable": 503,
}


@app.on_event("startup")
async def on_startup() -> None:
    """Create tables when the API boots."""

    await init_db()


@app.exception_handler(BattleHubError)
async def _battlehub_error_handler(_request: Request, exc: BattleHubError) -> JSONResponse:
    return JSONResponse(status_code=_ERROR_STATUS.get(exc.kind, 500), content=exc.to_dict())


@app.get("/healthz", tags=["system"])
def healthcheck() -> dict[str, str]:
    """Basic readiness probe consumed by infrastructure monitors."""

    return {"status": "ok"}


def _settings() -> Settings:
    return get_settings()


def require_admin(
    x_admin_key: Annotated[str | None, Header()] = None,
    current: Settings = Depends(_settings),
) -> None:
    if not x_admin_key or not secrets.compare_digest(x_admin_key, current.admin_key):
        raise HTTPException(status_code=401, detail="Unauthorized")


def _battle_service() -> BattleService:
    return BattleService()


def _matchmaking_service() -> MatchmakingService:
    return MatchmakingService()


def _payout_service() -> PayoutService:
    return PayoutService()


def _verification_service() -> VerificationService:
    return VerificationService()


def _admin_service() -> AdminService:
    return AdminService()


def _batch_runner(request: Request) -> BatchPayoutRunner:
    return request.app.state.batch_payout_runner


# ----------------------------------------------------------------------
# Battles


@app.post("/battles", response_model=schemas.Battle, status_code=201, tags=["battles"])
async def create_battle(
    payload: schemas.BattleCreate,
    service: BattleService = Depends(_battle_service),
):
    """Open a new battle that other users can join."""

    return await service.create_battle(
        creator_id=payload.creator_id,
        title=payload.title,
        sport=payload.sport,
        entry_fee_usd=payload.entry_fee_usd,
        start_at=payload.start_at,
    )


@app.post("/battles/{battle_id}/join", response_model=schemas.Entry, tags=["battles"])
async def join_battle(
    battle_id: str,
    payload: schemas.BattleJoin,
    service: BattleService = Depends(_battle_service),
):
    return await service.join_battle(battle_id=battle_id, user_id=payload.user_id)


@app.get("/battles/{battle_id}/entries", response_model=schemas.EntryList, tags=["battles"])
async def list_entries(battle_id: str, service: BattleService = Depends(_battle_service)):
    entries = await service.list_entries(battle_id)
    return schemas.EntryList(
        total=len(entries),
        items=[schemas.Entry.model_validate(entry) for entry in entries],
    )


@app.post("/entries/{entry_id}/confirm-payment", response_model=schemas.Entry, tags=["battles"])
async def confirm_entry_payment(
    entry_id: str,
    payload: schemas.PaymentConfirmation | None = None,
    service: BattleService = Depends(_battle_service),
):
    """Mark an entry fee as settled; called by the payment integration."""

    reference = payload.payment_reference if payload else None
    return await service.confirm_entry_payment(entry_id, payment_reference=reference)


# ----------------------------------------------------------------------
# Admin

admin = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@admin.post("/run-matchmaking")
async def run_matchmaking(
    service: MatchmakingService = Depends(_matchmaking_service),
) -> dict[str, Any]:
    report = await service.run()
    return report.to_dict()


@admin.get("/match/{match_id}/verify")
async def verify_match(
    match_id: str,
    service: VerificationService = Depends(_verification_service),
) -> dict[str, Any]:
    result = await service.verify(match_id)
    return result.to_dict()


@admin.post("/payout/{match_id}")
async def payout_match(
    match_id: str,
    service: PayoutService = Depends(_payout_service),
) -> dict[str, Any]:
    outcome = await service.payout(match_id)
    return outcome.to_dict()


@admin.post("/batch-payout")
async def batch_payout(
    payload: schemas.BatchPayoutRequest | None = None,
    runner: BatchPayoutRunner = Depends(_batch_runner),
    current: Settings = Depends(_settings),
) -> dict[str, Any]:
    payload = payload or schemas.BatchPayoutRequest()
    options = BatchPayoutOptions.from_settings(
        current,
        apply=payload.apply,
        limit=payload.limit,
        batch_size=payload.batch_size,
        concurrency=payload.concurrency,
    )
    summary = await runner.run(options)
    return summary.to_dict()


@admin.get("/users", response_model=list[schemas.User])
async def list_users(service: AdminService = Depends(_admin_service)):
    return await service.list_users()


@admin.get("/matches", response_model=list[schemas.Match])
async def list_matches(service: AdminService = Depends(_admin_service)):
    return await service.list_matches()


@admin.get("/unpaid-matches", response_model=list[schemas.Match])
async def list_unpaid_matches(service: AdminService = Depends(_admin_service)):
    return await service.list_matches(unpaid_only=True)


@admin.get("/transactions", response_model=list[schemas.Transaction])
async def list_transactions(
    match_id: str | None = None,
    service: AdminService = Depends(_admin_service),
):
    return await service.list_transactions(match_id=match_id)


app.include_router(admin)
