"""
tournament_api/server.py - FastAPI server for MetaServe tournaments.

Endpoints:
    GET    /api/health                          Server health check
    GET    /api/tournaments                     List tournaments (by start time)
    POST   /api/tournaments                     Create a tournament
    GET    /api/tournaments/{id}                Tournament with entries and matches
    POST   /api/tournaments/{id}/register       Register a card (signed)
    POST   /api/tournaments/{id}/lock           Close registration
    POST   /api/tournaments/{id}/matches        Seed / update bracket
    PATCH  /api/matches/{id}/result             Record a match result
    POST   /api/tournaments/{id}/finish         Finish and snapshot winners
    GET    /api/tournaments/{id}/distributions  Distribution history

Errors come back as {"error": message} with 400/404/409.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from metaserve.chain import pick_chain
from metaserve.config import MetaserveConfig, build_oracle, build_verifier, load_config, validator_bytecode
from metaserve.errors import (
    NotFoundError,
    QuotaExceededError,
    StateConflictError,
    TournamentError,
    UniquenessConflict,
    ValidationError,
    VerificationFailure,
)
from metaserve.models import MatchSeed, RegistrationRequest, Round
from metaserve.ownership import OwnershipOracle
from metaserve.signatures import SignatureVerifier
from metaserve.store import TournamentDB
from metaserve.tournaments import DEFAULT_MAX_ENTRIES_PER_WALLET, TournamentService

logger = logging.getLogger(__name__)

ERROR_STATUS = [
    (NotFoundError, 404),
    (StateConflictError, 409),
    (UniquenessConflict, 409),
    (ValidationError, 400),
    (VerificationFailure, 400),
    (QuotaExceededError, 400),
]


def status_for(error: TournamentError) -> int:
    for cls, status in ERROR_STATUS:
        if isinstance(error, cls):
            return status
    return 400


# ======================================================================
# Request Models
# ======================================================================


class CreateTournamentRequest(BaseModel):
    slug: str
    title: str
    description: str | None = None
    capacity: int
    starts_at: datetime
    max_entries_per_wallet: int = DEFAULT_MAX_ENTRIES_PER_WALLET


class RegisterRequest(BaseModel):
    wallet_address: str
    contract_address: str
    token_id: str | int
    signature: str
    timestamp: int
    signed_message: str | None = None  # Verified as-is when non-empty
    chain_id: int | None = None


class MatchSeedModel(BaseModel):
    id: str | None = None  # Set to update an existing match
    round: Round
    entry_a_id: str | None = None
    entry_b_id: str | None = None
    next_match_id: str | None = None


class SeedMatchesRequest(BaseModel):
    matches: list[MatchSeedModel]


class ResultRequest(BaseModel):
    sets_a: int
    sets_b: int
    winner_entry_id: str
    scoreline: str | None = None


# ======================================================================
# App
# ======================================================================


def get_service(request: Request) -> TournamentService:
    return request.app.state.service


def _log_startup_config(config: MetaserveConfig, service: TournamentService):
    """Log effective configuration so operators can verify env vars."""
    chain = pick_chain(config.chain.default_chain_id)
    logger.info("=" * 50)
    logger.info("Tournament server startup config:")
    logger.info(f"  Database: {config.database_path}")
    logger.info(
        f"  Chain: {chain.name} ({chain.chain_id}) | "
        f"RPC: {service.verifier.resolve_rpc_url(chain)}"
    )
    if validator_bytecode(config):
        logger.info("  Universal validator: configured (predeploy signatures supported)")
    else:
        logger.warning(
            "  Universal validator: NOT configured "
            "(undeployed smart-wallet signatures will be rejected)"
        )
    if service.oracle is not None and service.oracle.configured:
        logger.info(f"  Ownership oracle: {service.oracle.endpoint}")
    else:
        logger.info("  Ownership oracle: NOT configured (ownership checks skipped)")
    logger.info("=" * 50)


def create_app(
    config: MetaserveConfig | None = None,
    verifier: SignatureVerifier | None = None,
    oracle: OwnershipOracle | None = None,
) -> FastAPI:
    """Build the app. verifier/oracle default to ones built from config."""
    config = config or load_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Read at startup so a caller can swap app.state.config before serving.
        cfg: MetaserveConfig = app.state.config
        db = await TournamentDB.open(cfg.database_path)
        logger.info(f"Tournament DB initialized: {cfg.database_path}")
        service = TournamentService(
            db,
            verifier or build_verifier(cfg),
            oracle if oracle is not None else build_oracle(cfg),
        )
        app.state.service = service
        _log_startup_config(cfg, service)
        try:
            yield
        finally:
            await db.close()

    app = FastAPI(title="MetaServe Tournaments", lifespan=lifespan)
    app.state.config = config

    @app.exception_handler(TournamentError)
    async def tournament_error_handler(request: Request, exc: TournamentError):
        return JSONResponse(status_code=status_for(exc), content={"error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": _describe(exc)})

    app.include_router(router)
    return app


def _describe(exc: RequestValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts) or "invalid request"


# ======================================================================
# Endpoints
# ======================================================================

router = APIRouter(prefix="/api")


@router.get("/health")
async def health() -> dict[str, Any]:
    return {"ok": True}


@router.get("/tournaments")
async def list_tournaments(
    service: TournamentService = Depends(get_service),
) -> list[dict[str, Any]]:
    return [t.to_dict() for t in await service.list_tournaments()]


@router.post("/tournaments")
async def create_tournament(
    req: CreateTournamentRequest, service: TournamentService = Depends(get_service)
) -> dict[str, Any]:
    tournament = await service.create(
        slug=req.slug,
        title=req.title,
        capacity=req.capacity,
        starts_at=req.starts_at,
        max_entries_per_wallet=req.max_entries_per_wallet,
        description=req.description or None,
    )
    return tournament.to_dict()


@router.get("/tournaments/{tournament_id}")
async def get_tournament(
    tournament_id: str, service: TournamentService = Depends(get_service)
) -> dict[str, Any]:
    return (await service.detail(tournament_id)).to_dict()


@router.post("/tournaments/{tournament_id}/register")
async def register(
    tournament_id: str, req: RegisterRequest, service: TournamentService = Depends(get_service)
) -> dict[str, Any]:
    entry = await service.register(
        tournament_id,
        RegistrationRequest(
            wallet_address=req.wallet_address,
            contract_address=req.contract_address,
            token_id=str(req.token_id),
            signature=req.signature,
            timestamp=req.timestamp,
            signed_message=req.signed_message,
            chain_id=req.chain_id,
        ),
    )
    return entry.to_dict()


@router.post("/tournaments/{tournament_id}/lock")
async def lock(
    tournament_id: str, service: TournamentService = Depends(get_service)
) -> dict[str, Any]:
    return (await service.lock(tournament_id)).to_dict()


@router.post("/tournaments/{tournament_id}/matches")
async def seed_matches(
    tournament_id: str, req: SeedMatchesRequest, service: TournamentService = Depends(get_service)
) -> list[dict[str, Any]]:
    seeds = [
        MatchSeed(
            round=m.round,
            id=m.id or None,
            entry_a_id=m.entry_a_id or None,
            entry_b_id=m.entry_b_id or None,
            next_match_id=m.next_match_id or None,
        )
        for m in req.matches
    ]
    return [m.to_dict() for m in await service.seed_matches(tournament_id, seeds)]


@router.patch("/matches/{match_id}/result")
async def record_result(
    match_id: str, req: ResultRequest, service: TournamentService = Depends(get_service)
) -> dict[str, Any]:
    match = await service.record_result(
        match_id,
        sets_a=req.sets_a,
        sets_b=req.sets_b,
        winner_entry_id=req.winner_entry_id,
        scoreline=req.scoreline or None,
    )
    return match.to_dict()


@router.post("/tournaments/{tournament_id}/finish")
async def finish(
    tournament_id: str, service: TournamentService = Depends(get_service)
) -> dict[str, Any]:
    return (await service.finish(tournament_id)).to_dict()


@router.get("/tournaments/{tournament_id}/distributions")
async def distributions(
    tournament_id: str, service: TournamentService = Depends(get_service)
) -> list[dict[str, Any]]:
    return [d.to_dict() for d in await service.distributions(tournament_id)]


# `metaserve serve` replaces app.state.config before starting uvicorn.
app = create_app()
