# app/backend/main.py
from fastapi import FastAPI
from contextlib import asynccontextmanager
import redis.asyncio as redis
import asyncpg
from apscheduler.schedulers.asyncio import AsyncIOScheduler as Scheduler
import logging

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .config.config import settings
from .logging.logging_config import setup_logging
from .api import kiosk, register, dashboard

from .db.redis_client import RedisClient
from .db.db_client import AsyncPostgresClient
from .tasks.cron import force_clock_out_task

from .api.utilities.limiter import limiter

logger = logging.getLogger(__name__)

from fastapi.middleware.cors import CORSMiddleware


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Creates the shared connection pools and the scheduler on startup and
    releases them on shutdown.
    """
    setup_logging()
    logger.info("Starting the attendance backend...")

    app.state.postgres_pool = None
    app.state.redis_pool = None
    app.state.scheduler = None

    try:
        redis_pool = redis.ConnectionPool.from_url(
            settings.APPLICATION_REDIS_URL, decode_responses=True
        )
        app.state.redis_pool = redis_pool

        # The legacy table is optional; without it the partitions are the only history.
        if settings.DATABASE_URL:
            app.state.postgres_pool = await asyncpg.create_pool(
                dsn=settings.DATABASE_URL, min_size=1, max_size=10
            )
        else:
            logger.warning("DATABASE_URL is not set; legacy attendance logs are unavailable.")
        logger.info("Connection pools created.")

        redis_client = RedisClient(pool=redis_pool)
        db_client = AsyncPostgresClient(pool=app.state.postgres_pool) if app.state.postgres_pool else None

        scheduler = Scheduler(timezone=settings.ATTENDANCE_TIMEZONE)
        scheduler.add_job(
            force_clock_out_task,
            "cron",
            hour=settings.FORCE_CHECKOUT_HOUR,
            minute=settings.FORCE_CHECKOUT_MINUTE,
            args=[redis_client, db_client],
            id="force_clock_out"
        )
        scheduler.start()
        app.state.scheduler = scheduler
        logger.info(
            f"Forced clock-out scheduled daily at {settings.FORCE_CHECKOUT_HOUR:02d}:{settings.FORCE_CHECKOUT_MINUTE:02d}."
        )

    except Exception as e:
        logger.error(f"Startup failed: {e}", exc_info=True)

    yield

    logger.info("Shutting down...")
    if app.state.scheduler:
        app.state.scheduler.shutdown()
        logger.info("Scheduler stopped.")
    if app.state.postgres_pool:
        await app.state.postgres_pool.close()
        logger.info("PostgreSQL pool closed.")
    if app.state.redis_pool:
        await app.state.redis_pool.disconnect()
        logger.info("Redis pool closed.")


app = FastAPI(
    title="Attendance Kiosk API",
    description="Card-based entry/exit recording and attendance statistics.",
    version="1.0.0",
    lifespan=lifespan
)

origins = [
   "*"
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.include_router(kiosk.router, prefix="/api/v1")
app.include_router(register.router, prefix="/api/v1")
app.include_router(dashboard.router, prefix="/api/v1")

@app.get("/health", tags=["System"])
def health_check():
    """Liveness probe."""
    return {"status": "ok", "message": "Attendance API is running."}
