import os

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session

from frontdesk.config import settings
from frontdesk.database import Base, SessionLocal, engine, get_db
from frontdesk.logging_config import get_logger, setup_logging
from frontdesk.routers import chat, meta_webhook, voice
from frontdesk.services.inbound_queue import InboundWorker
from frontdesk.services.pipeline import build_pipeline

setup_logging(settings.log_level)

app = FastAPI(
    title="Front-Desk API",
    description="Multi-tenant AI front desk: inbound message orchestration",
    version="0.1.0",
)

cors_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(chat.router)
app.include_router(meta_webhook.router)
app.include_router(voice.router)

app.state.pipeline = build_pipeline(settings)

worker_logger = get_logger("inbound_worker")
_inbound_worker: InboundWorker | None = None


def _is_inbound_worker_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return settings.inbound_worker_enabled


@app.on_event("startup")
async def start_inbound_worker() -> None:
    global _inbound_worker
    if settings.database_auto_create:
        Base.metadata.create_all(bind=engine)
    if not _is_inbound_worker_enabled():
        worker_logger.info("Inbound worker disabled")
        return
    if _inbound_worker is None:
        _inbound_worker = InboundWorker(
            app.state.pipeline,
            SessionLocal,
            interval_seconds=settings.inbound_worker_interval_seconds,
            batch_limit=settings.inbound_batch_limit,
            max_attempts=settings.inbound_max_attempts,
            retry_backoff_seconds=settings.inbound_retry_backoff_seconds,
        )
    _inbound_worker.start()


@app.on_event("shutdown")
async def stop_inbound_worker() -> None:
    if _inbound_worker is not None:
        await _inbound_worker.stop()


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"status": "ok"}
