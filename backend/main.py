import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.config import (
    CORS_ALLOW_CREDENTIALS,
    CORS_ALLOW_HEADERS,
    CORS_ALLOW_METHODS,
    CORS_ALLOW_ORIGINS,
    DB_PATH,
    HOST,
    LOG_LEVEL,
    PORT,
    WORKER_ENABLED,
)
from backend.context import build_context
from backend.routers import attendance, core
from backend.services.scan_worker import ScanWorker
from database.db import create_tables

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
# HTTP client libraries are noisy at DEBUG
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    create_tables(DB_PATH)
    ctx = build_context(db_path=DB_PATH)
    app.state.ctx = ctx
    app.state.worker = None

    if WORKER_ENABLED:
        worker = ScanWorker(ctx)
        worker.start()
        app.state.worker = worker
    else:
        logger.info("Scan worker disabled; serving read API only")

    try:
        yield
    finally:
        if app.state.worker is not None:
            app.state.worker.stop()


app = FastAPI(title="RFID Attendance API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=CORS_ALLOW_CREDENTIALS,
    allow_methods=CORS_ALLOW_METHODS,
    allow_headers=CORS_ALLOW_HEADERS,
)

app.include_router(core.router)
app.include_router(attendance.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("backend.main:app", host=HOST, port=PORT)
