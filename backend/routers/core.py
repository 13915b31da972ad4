from fastapi import APIRouter, Depends, HTTPException, Request

from backend.config import (
    DB_BUSY_TIMEOUT_SECONDS,
    ENABLE_DEBUG_ENDPOINTS,
    WORKER_BATCH_SIZE,
    WORKER_ENABLED,
    WORKER_MAX_CONCURRENCY,
    WORKER_POLL_INTERVAL_SECONDS,
)
from backend.context import PipelineContext
from backend.routers.attendance import get_context

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/debug/dbpath")
def dbpath(ctx: PipelineContext = Depends(get_context)):
    if not ENABLE_DEBUG_ENDPOINTS:
        raise HTTPException(status_code=404, detail="Not found.")
    return {"db_path": str(ctx.db_path)}


@router.get("/config/pipeline")
def pipeline_config(ctx: PipelineContext = Depends(get_context)):
    return {
        "timezone": ctx.timezone or "local",
        "reason_language": ctx.reason_language,
        "db_busy_timeout_seconds": DB_BUSY_TIMEOUT_SECONDS,
        "worker_enabled": WORKER_ENABLED,
        "worker_poll_interval_seconds": WORKER_POLL_INTERVAL_SECONDS,
        "worker_batch_size": WORKER_BATCH_SIZE,
        "worker_max_concurrency": WORKER_MAX_CONCURRENCY,
    }


@router.get("/worker/status")
def worker_status(request: Request):
    worker = getattr(request.app.state, "worker", None)
    if worker is None:
        return {"state": "disabled"}
    return worker.status()
