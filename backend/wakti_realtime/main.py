"""
FastAPI app entrypoint.

Realtime presence hub, live push router and the notification delivery pipeline (queue drainer + provider-scheduled pushes).
"""
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from apscheduler.schedulers.background import BackgroundScheduler
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load .env from backend/ before any app code
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from wakti_realtime.api.routes import documents, functions, notifications, realtime, reminders
from wakti_realtime.config import settings
from wakti_realtime.core.constants import NOTIFICATION_QUEUE_JOB_ID
from wakti_realtime.core.errors import register_error_handlers
from wakti_realtime.db.events import install_change_stream
from wakti_realtime.db.session import SessionLocal
from wakti_realtime.realtime.broker import broker
from wakti_realtime.scheduler.queue_job import run_notification_queue_job

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Inserts on messages/contacts reach event routers once committed
install_change_stream(SessionLocal, broker)

_scheduler = BackgroundScheduler()


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.scheduler_enabled:
        _scheduler.add_job(
            run_notification_queue_job,
            "interval",
            seconds=settings.notification_queue_poll_seconds,
            id=NOTIFICATION_QUEUE_JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        _scheduler.start()
        logger.info("Notification queue job every %ss", settings.notification_queue_poll_seconds)
    app.state.scheduler = _scheduler
    logger.info("Backend ready")
    yield
    if _scheduler.running:
        _scheduler.shutdown(wait=False)


app = FastAPI(title="Wakti Realtime", version="0.1.0", lifespan=lifespan)

# CORS: dev origins + optional CORS_ORIGINS env (comma-separated) for the production frontend
_cors_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:8080",
    "http://127.0.0.1:8080",
]
if settings.cors_origins:
    _cors_origins.extend(o.strip() for o in settings.cors_origins.split(",") if o.strip())
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

app.include_router(functions.router, prefix="/functions", tags=["functions"])
app.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
app.include_router(reminders.router, prefix="/reminders", tags=["reminders"])
app.include_router(documents.router, prefix="/documents", tags=["documents"])
app.include_router(realtime.router, prefix="/realtime", tags=["realtime"])


@app.get("/", include_in_schema=False)
def root():
    return {"message": "Wakti Realtime API", "docs": "/docs", "health": "/health"}


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
