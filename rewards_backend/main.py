"""FastAPI application entry point."""
import os

# Force UTC before anything caches timezone information
os.environ['TZ'] = 'UTC'

import asyncio
import time

if hasattr(time, "tzset"):
    time.tzset()

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from contextlib import asynccontextmanager

from rewards_backend.config import get_settings
from rewards_backend.version import APP_VERSION
from rewards_backend.routers import events, health, reward_questions
from rewards_backend.services import close_payment_providers

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class SQLTransactionFilter(logging.Filter):
    """Drop transaction chatter from the SQL log and flatten statements to one line."""

    NOISE = ("ROLLBACK", "BEGIN", "COMMIT", "generated in")

    def filter(self, record):
        if record.levelno != logging.INFO:
            return True
        message = record.getMessage()
        if any(keyword in message for keyword in self.NOISE):
            return False
        if any(keyword in message for keyword in ("SELECT", "DELETE", "INSERT", "UPDATE")):
            record.msg = " ".join(message.split())
            record.args = ()
        return True


def _rotating_handler(path: Path, max_mb: int, backups: int, fmt: str = LOG_FORMAT) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=max_mb * 1024 * 1024, backupCount=backups, encoding="utf-8")
    handler.setFormatter(logging.Formatter(fmt))
    return handler


def _isolated_logger(name: str, handler: logging.Handler) -> logging.Logger:
    """A logger that writes only to its own file."""
    isolated = logging.getLogger(name)
    isolated.handlers.clear()
    isolated.addHandler(handler)
    isolated.setLevel(logging.INFO)
    isolated.propagate = False
    return isolated


logs_dir = Path("logs")
logs_dir.mkdir(exist_ok=True)

app_handler = _rotating_handler(logs_dir / "rewards.log", max_mb=1, backups=5)

# force=True overrides uvicorn's configuration
logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, handlers=[logging.StreamHandler(), app_handler], force=True)

logger = logging.getLogger(__name__)

# Request lines and SQL each get their own file
api_logger = _isolated_logger(
    "rewards.api",
    _rotating_handler(logs_dir / "rewards_api.log", max_mb=2, backups=15, fmt="%(asctime)s - %(levelname)s - %(message)s"),
)
sql_logger = _isolated_logger("sqlalchemy.engine.Engine", _rotating_handler(logs_dir / "rewards_sql.log", max_mb=1, backups=5))
sql_logger.addFilter(SQLTransactionFilter())

uvicorn_access_logger = logging.getLogger("uvicorn.access")
if app_handler not in uvicorn_access_logger.handlers:
    uvicorn_access_logger.addHandler(app_handler)

settings = get_settings()


async def payout_reconcile_cycle():
    """
    Background task that retries payouts left PENDING.

    Picks up winners whose dispatch timed out, crashed, or is still pending
    at the provider, and marks them FAILED once their attempts run out.
    """
    from rewards_backend.database import AsyncSessionLocal
    from rewards_backend.services import PayoutDispatcher, get_payment_providers

    startup_delay = 60
    logger.info(f"Payout reconcile cycle starting in {startup_delay}s")
    await asyncio.sleep(startup_delay)

    logger.info("Payout reconcile cycle starting main loop")

    while True:
        try:
            async with AsyncSessionLocal() as db:
                dispatcher = PayoutDispatcher(db, get_payment_providers())
                results = await dispatcher.reconcile_pending()
                if results:
                    logger.info(f"Payout reconcile cycle processed {len(results)} winners")

        except Exception as e:
            logger.error(f"Payout reconcile cycle error: {e}")

        await asyncio.sleep(settings.payout_reconcile_interval_seconds)


async def event_cleanup_cycle():
    """Background task that trims the reward event log."""
    from rewards_backend.database import AsyncSessionLocal
    from rewards_backend.services import NotificationPublisher

    startup_delay = 120
    logger.info(f"Event cleanup cycle starting in {startup_delay}s")
    await asyncio.sleep(startup_delay)

    cleanup_interval = max(settings.event_retention_minutes, 1) * 60

    while True:
        try:
            async with AsyncSessionLocal() as db:
                await NotificationPublisher(db).cleanup_old_events()

        except Exception as e:
            logger.error(f"Event cleanup cycle error: {e}")

        await asyncio.sleep(cleanup_interval)


async def _stop_cycles(cycles: dict[str, asyncio.Task]) -> None:
    """Cancel background cycles, giving each a moment to unwind."""
    for name, task in cycles.items():
        task.cancel()
        try:
            await asyncio.wait_for(task, timeout=2.0)
        except asyncio.CancelledError:
            logger.info(f"{name} cycle cancelled")
        except asyncio.TimeoutError:
            logger.warning(f"{name} cycle did not stop within 2s")


@asynccontextmanager
async def lifespan(app_instance: FastAPI):
    """Manage application startup and shutdown tasks."""
    logger.info("=" * 60)
    logger.info("Instant Rewards API Starting")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Database: {settings.database_url.split('@')[-1] if '@' in settings.database_url else 'SQLite'}")
    logger.info(f"Currency per point: {settings.currency_per_point}")
    logger.info("=" * 60)

    cycles = {
        "Payout reconcile": asyncio.create_task(payout_reconcile_cycle()),
        "Event cleanup": asyncio.create_task(event_cleanup_cycle()),
    }
    logger.info(f"Started background cycles: {', '.join(cycles)}")

    try:
        yield
    finally:
        await _stop_cycles(cycles)
        await close_payment_providers()
        logger.info("Payment provider sessions closed, Instant Rewards API stopped")


app = FastAPI(
    title="Instant Rewards API",
    description="Reward question answers, winner slots and mobile-money payouts",
    version=APP_VERSION,
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Flatten validation errors to field/message/type triples."""
    raw_errors = exc.errors()
    logger.warning(f"Validation error on {request.url.path}: {raw_errors}")

    errors = [
        {
            "field": " -> ".join(str(part) for part in error.get("loc", [])[1:]) or "unknown field",
            "message": error.get("msg", "Validation error"),
            "type": error.get("type", "unknown"),
        }
        for error in raw_errors
    ]
    return JSONResponse(status_code=422, content={"detail": "Request validation failed", "errors": errors})


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """One START and one COMPLETE/EXCEPTION line per request in the API log."""
    started = time.perf_counter()
    route = f"{request.method} {request.url.path}"
    client_ip = request.client.host if request.client else "unknown"
    api_logger.info(f">> {route} | IP: {client_ip}")

    try:
        response = await call_next(request)
    except Exception as e:
        api_logger.error(f"<< {route} | EXCEPTION {str(e)[:100]} | {time.perf_counter() - started:.3f}s")
        raise

    api_logger.info(f"<< {route} | {response.status_code} | {time.perf_counter() - started:.3f}s")
    return response


allowed_origins = os.getenv("ALLOWED_ORIGINS", "").split(",")
if not allowed_origins or allowed_origins == [""]:
    allowed_origins = [
        "http://localhost:8081",   # Expo dev server
        "http://localhost:19006",  # Expo web
        "http://127.0.0.1:8081",
    ]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(health.router, tags=["health"])
app.include_router(reward_questions.router, prefix="/reward-questions", tags=["reward-questions"])
app.include_router(events.router, prefix="/events", tags=["events"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Instant Rewards API",
        "version": APP_VERSION,
        "environment": settings.environment,
        "docs": "/docs",
    }
