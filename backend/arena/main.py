from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from loguru import logger

from oracles.service import OracleAdapter

from . import schemas
from .core.config import settings
from .db import init_db
from .domain import RoundSubmission, SideSubmission, WarriorTraits
from .errors import ArenaError, InternalError
from .services.arbitrage import ArbitrageTradingClient
from .services.battle_service import BattleLifecycleManager
from .services.betting_service import WageringPool
from .services.mirror import Web3MirrorResolver
from .services.ownership import Web3OwnershipVerifier
from .services.resolution_service import ScheduledResolutionScheduler

app = FastAPI(title="Prediction Arena API", version="0.1.0", debug=settings.debug)


@app.on_event("startup")
def on_startup() -> None:
    """Initialize database connections when the API boots."""

    init_db()


@app.exception_handler(ArenaError)
def handle_arena_error(request: Request, exc: ArenaError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(Exception)
def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on {} {}", request.method, request.url.path)
    error = InternalError("Internal server error")
    return JSONResponse(status_code=error.status_code, content=error.to_payload())


@app.get("/healthz", tags=["system"])
def healthcheck() -> dict[str, str]:
    """Basic readiness probe consumed by infrastructure monitors."""

    return {"status": "ok"}


# ----------------------------------------------------------------------
# Dependencies


@lru_cache
def _oracle_adapter() -> OracleAdapter:
    return OracleAdapter()


def _battle_service() -> BattleLifecycleManager:
    """Provide the battle lifecycle manager wired with the configured collaborators."""

    verifier = Web3OwnershipVerifier(settings=settings) if settings.warrior_contract_address else None
    trader = ArbitrageTradingClient(settings=settings) if settings.arbitrage_service_url else None
    return BattleLifecycleManager(
        ownership_verifier=verifier, arbitrage_trader=trader, settings=settings
    )


def _betting_service() -> WageringPool:
    return WageringPool(settings=settings)


def _resolution_service() -> ScheduledResolutionScheduler:
    mirror = Web3MirrorResolver(settings=settings) if settings.mirror_contract_address else None
    return ScheduledResolutionScheduler(
        oracle=_oracle_adapter(), mirror_resolver=mirror, settings=settings
    )


def _traits(payload: schemas.Traits | None) -> WarriorTraits | None:
    return WarriorTraits(**payload.model_dump()) if payload else None


# ----------------------------------------------------------------------
# Battles


@app.get("/arena/battles", response_model=schemas.BattleList, tags=["battles"])
def list_battles(
    *,
    status: Annotated[str | None, Query(description="Battle status filter")] = None,
    warrior_id: Annotated[int | None, Query(description="Battles involving this warrior")] = None,
    market_id: Annotated[str | None, Query(description="External market id (requires source)")] = None,
    source: Annotated[str | None, Query(description="Market source for market_id")] = None,
    limit: Annotated[int | None, Query()] = None,
    offset: Annotated[int | None, Query()] = None,
    service: BattleLifecycleManager = Depends(_battle_service),
):
    """List battles newest first; limit and offset are clamped rather than rejected."""

    page = service.list_battles(
        status=status,
        warrior_id=warrior_id,
        market_id=market_id,
        source=source,
        limit=limit,
        offset=offset,
    )
    return schemas.BattleList(
        battles=list(page.battles),
        total=page.total,
        limit=page.limit,
        offset=page.offset,
        has_more=page.offset + len(page.battles) < page.total,
    )


@app.post("/arena/battles", response_model=schemas.BattleResponse, status_code=201, tags=["battles"])
def create_challenge(
    payload: schemas.CreateChallengeRequest,
    service: BattleLifecycleManager = Depends(_battle_service),
):
    created = service.create_challenge(
        external_market_id=payload.external_market_id,
        source=payload.source,
        question=payload.question,
        warrior_id=payload.warrior_id,
        owner=payload.owner,
        stakes=payload.stakes,
        challenger_side_yes=payload.challenger_side_yes,
    )
    return schemas.BattleResponse(battle=created.battle, market_key=created.market_key)


@app.post(
    "/arena/battles/arbitrage",
    response_model=schemas.BattleResponse,
    status_code=201,
    tags=["battles"],
)
def create_arbitrage_battle(
    payload: schemas.CreateArbitrageBattleRequest,
    service: BattleLifecycleManager = Depends(_battle_service),
):
    created = service.create_arbitrage_battle(
        polymarket_id=payload.external_market_id,
        kalshi_market_id=payload.kalshi_market_id,
        question=payload.question,
        warrior1_id=payload.warrior1_id,
        warrior2_id=payload.warrior2_id,
        owner=payload.owner,
        stakes=payload.stakes,
    )
    return schemas.BattleResponse(battle=created.battle, market_key=created.market_key)


@app.get("/arena/battles/{battle_id}", response_model=schemas.BattleResponse, tags=["battles"])
def get_battle(battle_id: str, service: BattleLifecycleManager = Depends(_battle_service)):
    return schemas.BattleResponse(battle=service.get_battle(battle_id))


@app.post("/arena/battles/{battle_id}/accept", response_model=schemas.BattleResponse, tags=["battles"])
def accept_challenge(
    battle_id: str,
    payload: schemas.AcceptChallengeRequest,
    service: BattleLifecycleManager = Depends(_battle_service),
):
    battle = service.accept_challenge(
        battle_id, warrior_id=payload.warrior2_id, owner=payload.warrior2_owner
    )
    return schemas.BattleResponse(battle=battle, message="Challenge accepted")


@app.post("/arena/battles/{battle_id}/cancel", response_model=schemas.BattleResponse, tags=["battles"])
def cancel_challenge(battle_id: str, service: BattleLifecycleManager = Depends(_battle_service)):
    battle = service.cancel_challenge(battle_id)
    return schemas.BattleResponse(battle=battle, message="Battle cancelled")


@app.post("/arena/battles/{battle_id}/rounds", response_model=schemas.RoundResponse, tags=["battles"])
def submit_round(
    battle_id: str,
    payload: schemas.SubmitRoundRequest,
    service: BattleLifecycleManager = Depends(_battle_service),
):
    submission = RoundSubmission(
        round_number=payload.round_number,
        warrior1=SideSubmission(**payload.warrior1.model_dump()),
        warrior2=SideSubmission(**payload.warrior2.model_dump()),
        judge_reasoning=payload.judge_reasoning,
    )
    submitted = service.submit_round(battle_id, submission)
    return schemas.RoundResponse(
        battle=submitted.battle, round=submitted.round, completed=submitted.completed
    )


@app.post("/arena/battles/{battle_id}/execute", response_model=schemas.RoundResponse, tags=["battles"])
def execute_round(
    battle_id: str,
    payload: schemas.ExecuteBattleRequest | None = None,
    service: BattleLifecycleManager = Depends(_battle_service),
):
    """Play the current round with the debate engine."""

    payload = payload or schemas.ExecuteBattleRequest()
    submitted = service.execute_round(
        battle_id,
        traits1=_traits(payload.warrior1_traits),
        traits2=_traits(payload.warrior2_traits),
        yes_price=payload.yes_price,
    )
    return schemas.RoundResponse(
        battle=submitted.battle, round=submitted.round, completed=submitted.completed
    )


@app.post(
    "/arena/battles/{battle_id}/execute-all",
    response_model=schemas.BattleResponse,
    tags=["battles"],
)
def execute_full_battle(
    battle_id: str,
    payload: schemas.ExecuteBattleRequest | None = None,
    service: BattleLifecycleManager = Depends(_battle_service),
):
    """Play every remaining round until the battle completes."""

    payload = payload or schemas.ExecuteBattleRequest()
    played = service.execute_full_battle(
        battle_id,
        traits1=_traits(payload.warrior1_traits),
        traits2=_traits(payload.warrior2_traits),
        yes_price=payload.yes_price,
    )
    return schemas.BattleResponse(
        battle=played[-1].battle, message=f"Played {len(played)} round(s)"
    )


@app.get(
    "/arena/warriors/{warrior_id}/stats",
    response_model=schemas.WarriorStatsResponse,
    tags=["battles"],
)
def get_warrior_stats(warrior_id: int, service: BattleLifecycleManager = Depends(_battle_service)):
    return schemas.WarriorStatsResponse(stats=service.get_warrior_stats(warrior_id))


# ----------------------------------------------------------------------
# Betting


@app.get("/arena/betting", response_model=schemas.PoolResponse, tags=["betting"])
def get_pool(
    *,
    battle_id: Annotated[str, Query(description="Battle whose pool to return")],
    bettor: Annotated[str | None, Query(description="Include this bettor's bet")] = None,
    service: WageringPool = Depends(_betting_service),
):
    view = service.get_pool(battle_id, bettor=bettor)
    return schemas.PoolResponse(
        pool=view.pool, odds=view.odds, total_pool=view.total_pool, user_bet=view.user_bet
    )


@app.post("/arena/betting", response_model=schemas.PlaceBetResponse, tags=["betting"])
def place_bet(payload: schemas.PlaceBetRequest, service: WageringPool = Depends(_betting_service)):
    placed = service.place_bet(
        payload.battle_id,
        bettor=payload.bettor_address,
        bet_on_warrior1=payload.bet_on_warrior1,
        amount=payload.amount,
        tx_hash=payload.tx_hash,
    )
    return schemas.PlaceBetResponse(bet=placed.bet, pool=placed.pool, odds=placed.odds)


@app.patch("/arena/betting", response_model=schemas.ClaimResponse, tags=["betting"])
def claim_winnings(payload: schemas.ClaimRequest, service: WageringPool = Depends(_betting_service)):
    claimed = service.claim(payload.battle_id, bettor=payload.bettor_address)
    return schemas.ClaimResponse(
        bet=claimed.bet,
        payout=claimed.quote.payout,
        fee=claimed.quote.fee,
        won=claimed.quote.won,
        is_draw=claimed.quote.is_draw,
    )


@app.delete("/arena/betting", response_model=schemas.CloseBettingResponse, tags=["betting"])
def close_betting(
    battle_id: Annotated[str, Query(description="Battle whose pool to close")],
    service: WageringPool = Depends(_betting_service),
):
    return schemas.CloseBettingResponse(pool=service.close_betting(battle_id))


# ----------------------------------------------------------------------
# Scheduled resolutions


@app.get("/flow/scheduled-resolutions", response_model=schemas.ResolutionList, tags=["resolutions"])
def list_resolutions(
    *,
    resolution_id: Annotated[str | None, Query(alias="id", description="Single resolution id")] = None,
    external_market_id: Annotated[str | None, Query(description="Resolutions for one market")] = None,
    status: Annotated[
        str | None, Query(description="ready | all | pending | executing | completed | failed | cancelled")
    ] = None,
    service: ScheduledResolutionScheduler = Depends(_resolution_service),
):
    resolutions = service.list_resolutions(
        resolution_id=resolution_id, external_market_id=external_market_id, status=status
    )
    return schemas.ResolutionList(resolutions=resolutions, count=len(resolutions))


@app.post(
    "/flow/scheduled-resolutions",
    response_model=schemas.ResolutionResponse,
    status_code=201,
    tags=["resolutions"],
)
def schedule_resolution(
    payload: schemas.ScheduleResolutionRequest,
    service: ScheduledResolutionScheduler = Depends(_resolution_service),
):
    resolution = service.schedule(
        external_market_id=payload.external_market_id,
        mirror_key=payload.mirror_key,
        scheduled_time=payload.scheduled_time,
        oracle_source=payload.oracle_source,
        creator=payload.creator,
    )
    return schemas.ResolutionResponse(resolution=resolution, message="Resolution scheduled")


@app.put(
    "/flow/scheduled-resolutions",
    response_model=schemas.ExecuteResolutionResponse,
    tags=["resolutions"],
)
def execute_resolution(
    payload: schemas.ExecuteResolutionRequest,
    service: ScheduledResolutionScheduler = Depends(_resolution_service),
):
    result = service.execute(payload.resolution_id, manual_outcome=payload.manual_outcome)
    return schemas.ExecuteResolutionResponse(
        resolution=result.resolution,
        outcome=result.outcome,
        mirror_tx_hash=result.mirror_tx_hash,
        message=result.message,
    )


@app.delete(
    "/flow/scheduled-resolutions",
    response_model=schemas.ResolutionResponse,
    tags=["resolutions"],
)
def cancel_resolution(
    resolution_id: Annotated[str, Query(alias="id", description="Resolution to cancel")],
    service: ScheduledResolutionScheduler = Depends(_resolution_service),
):
    resolution = service.cancel(resolution_id)
    return schemas.ResolutionResponse(resolution=resolution, message="Resolution cancelled")
