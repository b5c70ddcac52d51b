import asyncio
import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from sprout.consts import VERSION
from sprout.domain.errors import PersistSafetyViolation, UnknownCardError
from sprout.domain.scheduling import Grade

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("sprout.server")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"Sprout Server v{VERSION} starting up...")
    yield
    # Shutdown
    logger.info("Sprout Server shutting down...")


app = FastAPI(
    title="Sprout Server",
    description="Background server for syncing and scheduling cards kept in Markdown notes.",
    version=VERSION,
    lifespan=lifespan,
)


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float


start_time = time.time()


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Simple health check to verify server is reachable.
    """
    return HealthResponse(status="ok", version=VERSION, uptime_seconds=time.time() - start_time)


@app.get("/version")
async def get_version():
    return {"version": VERSION}


def _http_error(action: str, e: Exception) -> HTTPException:
    if isinstance(e, UnknownCardError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, PersistSafetyViolation):
        return HTTPException(status_code=409, detail=str(e))
    logger.error(f"{action} failed: {e}", exc_info=True)
    return HTTPException(status_code=500, detail=str(e))


_data_file_locks: dict[Path, asyncio.Lock] = {}


@asynccontextmanager
async def _service(vault_root: str | None, root_input: str | None = None):
    """
    A service loaded from the current data file. Requests that share a data
    file run one at a time, so each one reads what the previous one saved.
    """
    from sprout.application.config import resolve_config
    from sprout.application.factory import get_service

    config = resolve_config({"vault_root": vault_root, "root_input": root_input})
    lock = _data_file_locks.setdefault(config.data_file, asyncio.Lock())
    async with lock:
        yield config, await get_service(config)


# ---------- Sync ----------


class SyncRequest(BaseModel):
    # If None, use defaults/config file.
    vault_root: str | None = None
    file_path: str | None = None  # sync single file
    allow_mass_delete: bool = False


class SyncResponse(BaseModel):
    added: int
    updated: int
    removed: int
    quarantined: int
    quarantined_ids: list[str]
    notice: str


@app.post("/sync", response_model=SyncResponse)
async def trigger_sync(req: SyncRequest):
    """
    Trigger a sync of the whole vault, or of one note when file_path is given.
    """
    from sprout.application.reconciler import format_sync_notice

    logger.info(f"Sync requested via API: {req}")
    try:
        async with _service(req.vault_root, req.file_path) as (config, service):
            if config.root_input.is_file():
                rel = config.root_input.relative_to(config.vault_root).as_posix()
                result = await service.sync_file(rel)
            else:
                result = await service.sync_all(allow_mass_delete=req.allow_mass_delete)

            return SyncResponse(
                added=result.added_count,
                updated=result.updated_count,
                removed=result.removed_count,
                quarantined=result.quarantined_count,
                quarantined_ids=result.quarantined_ids,
                notice=format_sync_notice("Sync complete", result),
            )
    except Exception as e:
        raise _http_error("Sync", e) from e


@app.get("/status")
async def get_status(vault_root: str | None = None):
    try:
        async with _service(vault_root) as (_, service):
            return service.status().as_dict()
    except Exception as e:
        raise _http_error("Status", e) from e


# ---------- Cards ----------


class CardsRequest(BaseModel):
    ids: list[str]
    vault_root: str | None = None


class ReviewRequest(BaseModel):
    grade: Grade
    vault_root: str | None = None


def _state_dict(state) -> dict[str, Any]:
    return {
        "id": state.id,
        "stage": state.stage.value,
        "due": state.due,
        "scheduled_days": state.scheduled_days,
        "reps": state.reps,
        "lapses": state.lapses,
    }


@app.get("/cards/{card_id}")
async def get_card(card_id: str, vault_root: str | None = None):
    """A card with its scheduling state (null if never reviewed)."""
    try:
        async with _service(vault_root) as (_, service):
            card = service.store.get_card(card_id)
            if card is None:
                raise UnknownCardError(card_id)
            state = service.store.get_state(card_id)
            return {
                "card": card.model_dump(mode="json"),
                "state": _state_dict(state) if state else None,
                "quarantined": service.store.is_quarantined(card_id),
            }
    except Exception as e:
        raise _http_error("Card lookup", e) from e


@app.post("/cards/suspend")
async def suspend_cards(req: CardsRequest):
    """Suspend cards by id."""
    try:
        async with _service(req.vault_root) as (_, service):
            states = await service.suspend(req.ids)
            return {"ok": True, "states": [_state_dict(s) for s in states]}
    except Exception as e:
        raise _http_error("Suspend", e) from e


@app.post("/cards/unsuspend")
async def unsuspend_cards(req: CardsRequest):
    """Unsuspend cards by id."""
    try:
        async with _service(req.vault_root) as (_, service):
            states = await service.unsuspend(req.ids)
            return {"ok": True, "states": [_state_dict(s) for s in states]}
    except Exception as e:
        raise _http_error("Unsuspend", e) from e


@app.post("/cards/reset")
async def reset_cards(req: CardsRequest):
    """Reset scheduling for cards by id."""
    try:
        async with _service(req.vault_root) as (_, service):
            states = await service.reset_scheduling(req.ids)
            return {"ok": True, "states": [_state_dict(s) for s in states]}
    except Exception as e:
        raise _http_error("Reset", e) from e


@app.post("/cards/{card_id}/review")
async def review_card(card_id: str, req: ReviewRequest):
    """Grade one card."""
    try:
        async with _service(req.vault_root) as (_, service):
            result = await service.grade(card_id, req.grade)
            return {
                "state": _state_dict(result.next_state),
                "prev_due": result.prev_due,
                "next_due": result.next_due,
                "retrievability": result.retrievability,
            }
    except Exception as e:
        raise _http_error("Review", e) from e
