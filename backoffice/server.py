"""
backoffice/server.py - FastAPI front for the prize back office.

Endpoints:
    POST   /events                                  Create or update an event header
    PUT    /events/{event_id}/roster                Replace an event's roster
    GET    /events/{event_id}/assignments           Committed prize fields per player
    GET    /events/{event_id}/ledger                Spent-pool rows for an event
    POST   /events/{event_id}/prizes/preview        Preview end-of-event prizes
    POST   /events/{event_id}/prizes/commit         Commit end-of-event prizes
    POST   /events/{event_id}/rounds/{n}/preview    Preview round prizes
    POST   /events/{event_id}/rounds/{n}/commit     Commit round prizes
    PUT    /catalog/{code}                          Create or update a catalog item
    GET    /catalog                                 List the catalog
    GET    /throttle                                Current throttle policy
    PUT    /throttle                                Update throttle keys
    POST   /batches/{batch_id}/revert               Revert a committed batch
    POST   /admin/sweep                             Drop expired previews
    GET    /health                                  Server health check
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field, field_validator

from prizepool.config import PrizepoolConfig
from prizepool.errors import ErrorCode, Failure, PrizeError
from prizepool.models import CatalogItem, EventInfo, EventType, RosterEntry
from prizepool.protocol import PrizeDesk
from prizepool.throttle import check_throttle, with_defaults

from .db import BackofficeDB

logger = logging.getLogger(__name__)

_STATUS_FOR = {
    ErrorCode.EVENT_NOT_FOUND: 404,
    ErrorCode.BATCH_NOT_FOUND: 404,
    ErrorCode.NO_PREVIEW: 404,
    ErrorCode.HASH_MISMATCH: 409,
    ErrorCode.BUDGET_RED: 409,
    ErrorCode.STOCK_CONFLICT: 409,
    ErrorCode.NO_PLAYERS: 422,
    ErrorCode.NO_PRIZES: 422,
    ErrorCode.SCHEMA_INVALID: 422,
    ErrorCode.THROTTLE_INVALID: 422,
}


# Global desk instance - set during lifespan
_desk: PrizeDesk | None = None


def get_desk() -> PrizeDesk:
    assert _desk is not None, "Desk not initialized"
    return _desk


def get_db() -> BackofficeDB:
    return get_desk().store


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _desk
    config = getattr(app.state, "config", None) or PrizepoolConfig()
    db_path = getattr(app.state, "db_path", None) or config.db_path
    _desk = PrizeDesk(BackofficeDB(db_path), config)
    logger.info(f"Back office DB initialized: {db_path}")
    logger.info(f"  Preview TTL: {config.ttl_hours}h | Round seats: {config.rounds.seats}")
    yield
    _desk.store.close()
    _desk = None


app = FastAPI(title="Prizepool Back Office", lifespan=lifespan)


def _raise_failure(failure: Failure) -> None:
    raise HTTPException(status_code=_STATUS_FOR.get(failure.code, 400), detail=failure.to_dict())


# ======================================================================
# Request/Response Models
# ======================================================================


class EventRequest(BaseModel):
    event_id: str
    name: str = ""
    event_type: EventType = EventType.CONSTRUCTED
    entry_fee: float | None = Field(default=None, ge=0)
    kit_cost_per_player: float | None = Field(default=None, ge=0)
    seed: str | None = None


class RosterRow(BaseModel):
    rank: int = Field(ge=1)
    name: str


class RosterRequest(BaseModel):
    players: list[RosterRow]


class CatalogRequest(BaseModel):
    name: str
    level: str = "L0"
    cogs: float = Field(default=0.0, ge=0)
    expected_value: float = 1.0
    stock: int = Field(default=0, ge=0)
    eligible_for_round: bool = False
    eligible_for_end: bool = True
    min_player_threshold: int = Field(default=0, ge=0)

    @field_validator("cogs")
    @classmethod
    def cogs_to_cents(cls, v: float) -> float:
        return round(v, 2)


class PreviewRequest(BaseModel):
    seed: str | None = None


class CommitRequest(BaseModel):
    hash: str


class AllocationLineModel(BaseModel):
    player: str
    item_code: str
    item_name: str
    level: str
    qty: int
    cogs: float


class PreviewResponse(BaseModel):
    scope_id: str
    seed: str
    allocation: list[AllocationLineModel]
    spend: float
    budget: float
    band: str
    ratio: float
    hash: str
    players: int
    hybrid_cap: float = 0.0


class CommitResponse(BaseModel):
    scope_id: str
    allocated: int
    spend: float
    budget: float
    band: str
    batch_id: str


class SuccessResponse(BaseModel):
    success: bool
    count: int = 0


class HealthResponse(BaseModel):
    status: str
    artifacts: int


# ======================================================================
# Endpoints
# ======================================================================


@app.post("/events", response_model=SuccessResponse)
def upsert_event(req: EventRequest) -> dict[str, Any]:
    """Create or update an event header."""
    db = get_db()
    db.upsert_event(
        EventInfo(
            event_id=req.event_id,
            name=req.name,
            event_type=req.event_type,
            entry_fee=req.entry_fee,
            kit_cost_per_player=req.kit_cost_per_player,
            seed=req.seed,
        )
    )
    logger.info(f"Event saved: {req.event_id} ({req.event_type.value})")
    return {"success": True}


@app.put("/events/{event_id}/roster", response_model=SuccessResponse)
def replace_roster(event_id: str, req: RosterRequest) -> dict[str, Any]:
    """Replace the roster with resolved (rank, name) pairs."""
    db = get_db()
    if db.get_event(event_id) is None:
        _raise_failure(Failure(ErrorCode.EVENT_NOT_FOUND, f"Event not found: {event_id}"))
    try:
        count = db.set_roster(event_id, [RosterEntry(name=r.name, rank=r.rank) for r in req.players])
    except PrizeError as e:
        _raise_failure(e.failure())
    return {"success": True, "count": count}


@app.get("/events/{event_id}/assignments")
def get_assignments(event_id: str) -> dict[str, Any]:
    db = get_db()
    if db.get_event(event_id) is None:
        _raise_failure(Failure(ErrorCode.EVENT_NOT_FOUND, f"Event not found: {event_id}"))
    return {"event_id": event_id, "assignments": db.get_assignments(event_id)}


@app.get("/events/{event_id}/ledger")
def get_ledger(event_id: str) -> dict[str, Any]:
    db = get_db()
    return {
        "event_id": event_id,
        "spend": db.event_spend(event_id),
        "rows": db.ledger_for_event(event_id),
    }


def _preview(scope_id: str, req: PreviewRequest | None) -> dict[str, Any]:
    result = get_desk().preview(scope_id, seed=req.seed if req else None)
    if not result.ok:
        _raise_failure(result)
    return {
        "scope_id": result.scope_id,
        "seed": result.seed,
        "allocation": [line.to_dict() for line in result.allocation],
        "spend": result.spend,
        "budget": result.budget,
        "band": result.band.value,
        "ratio": result.ratio,
        "hash": result.hash,
        "players": result.players,
        "hybrid_cap": result.hybrid_cap,
    }


def _commit(scope_id: str, req: CommitRequest) -> dict[str, Any]:
    result = get_desk().commit(scope_id, req.hash)
    if not result.ok:
        _raise_failure(result)
    return {
        "scope_id": result.scope_id,
        "allocated": result.allocated,
        "spend": result.spend,
        "budget": result.budget,
        "band": result.band.value,
        "batch_id": result.batch_id,
    }


@app.post("/events/{event_id}/prizes/preview", response_model=PreviewResponse)
def preview_end_prizes(event_id: str, req: PreviewRequest | None = None) -> dict[str, Any]:
    """Preview end-of-event prizes. Stores an artifact for the commit."""
    return _preview(event_id, req)


@app.post("/events/{event_id}/prizes/commit", response_model=CommitResponse)
def commit_end_prizes(event_id: str, req: CommitRequest) -> dict[str, Any]:
    """Commit end-of-event prizes previewed with the given hash."""
    return _commit(event_id, req)


@app.post("/events/{event_id}/rounds/{round_no}/preview", response_model=PreviewResponse)
def preview_round(event_id: str, round_no: int, req: PreviewRequest | None = None) -> dict[str, Any]:
    return _preview(f"{event_id}:R{round_no}", req)


@app.post("/events/{event_id}/rounds/{round_no}/commit", response_model=CommitResponse)
def commit_round(event_id: str, round_no: int, req: CommitRequest) -> dict[str, Any]:
    return _commit(f"{event_id}:R{round_no}", req)


@app.put("/catalog/{code}", response_model=SuccessResponse)
def upsert_catalog_item(code: str, req: CatalogRequest) -> dict[str, Any]:
    db = get_db()
    db.upsert_catalog_item(CatalogItem(code=code, **req.model_dump()))
    return {"success": True}


@app.get("/catalog")
def list_catalog() -> dict[str, Any]:
    db = get_db()
    return {"items": [asdict(item) for item in db.get_catalog()]}


@app.get("/throttle")
def get_throttle() -> dict[str, Any]:
    return with_defaults(get_db().get_throttle())


@app.put("/throttle")
def put_throttle(updates: dict[str, Any]) -> dict[str, Any]:
    """Update throttle keys. Takes effect for the next preview or commit."""
    db = get_db()
    try:
        check_throttle(updates)
    except PrizeError as e:
        _raise_failure(e.failure())
    db.set_throttle(updates)
    db.log_action("THROTTLE_CHANGE", details=f"Updated: {', '.join(sorted(updates))}")
    logger.info(f"Throttle updated: {updates}")
    return with_defaults(db.get_throttle())


@app.post("/batches/{batch_id}/revert", response_model=SuccessResponse)
def revert_batch(batch_id: str) -> dict[str, Any]:
    """Revert a committed batch. Reverting an already-reverted batch is a no-op."""
    if not get_db().ledger_for_batch(batch_id):
        _raise_failure(Failure(ErrorCode.BATCH_NOT_FOUND, f"Batch not found: {batch_id}"))
    count = get_desk().revert_batch(batch_id)
    return {"success": count > 0, "count": count}


@app.post("/admin/sweep", response_model=SuccessResponse)
def admin_sweep() -> dict[str, Any]:
    """Drop expired preview artifacts."""
    count = get_desk().sweep_expired()
    return {"success": True, "count": count}


@app.get("/health", response_model=HealthResponse)
def health() -> dict[str, Any]:
    return {"status": "ok", "artifacts": get_db().artifact_count()}
