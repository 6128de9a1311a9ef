import asyncio
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
import structlog
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from punchclock.config import settings
from punchclock.database import async_session_factory
from punchclock.errors import PunchclockError
from punchclock.logging_config import configure_logging
from punchclock.metrics import metrics_endpoint
from punchclock.middleware.logging_middleware import RequestLoggingMiddleware
from punchclock.routers import notifications, settings as settings_router, timer
from punchclock.scheduler import RedisScheduler
from punchclock.services.dispatcher import NotificationDispatcher
from punchclock.services.fallback import FallbackDispatcher
from punchclock.services.http_client import ChannelHttpClient
from punchclock.services.transports import WebPushTransport, default_channel_transports
from punchclock.tasks import WorkerContext
from punchclock.worker.reaper import nudge_loop, stale_timer_loop
from punchclock.worker.task_worker import task_worker_loop

log = structlog.get_logger(__name__)

BACKGROUND_TASKS = ("task_worker_task", "stale_timer_task", "nudge_task")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Configure structured logging before anything else
    configure_logging()

    # Startup: Redis connection backs the deferred-task queue
    app.state.redis = aioredis.from_url(
        settings.redis_url, encoding="utf-8", decode_responses=True
    )
    scheduler = RedisScheduler(app.state.redis)
    app.state.scheduler = scheduler

    http = ChannelHttpClient()
    fallback = FallbackDispatcher(async_session_factory, default_channel_transports(http))
    dispatcher = NotificationDispatcher(
        async_session_factory, WebPushTransport(), fallback, scheduler
    )
    ctx = WorkerContext(
        session_factory=async_session_factory,
        scheduler=scheduler,
        dispatcher=dispatcher,
        fallback=fallback,
    )

    # Start background workers and store in app.state for health checks
    app.state.task_worker_task = asyncio.create_task(task_worker_loop(ctx, scheduler))
    app.state.stale_timer_task = asyncio.create_task(
        stale_timer_loop(async_session_factory, scheduler)
    )
    app.state.nudge_task = asyncio.create_task(nudge_loop(async_session_factory, scheduler))
    log.info("punchclock_started")
    try:
        yield
    finally:
        for name in BACKGROUND_TASKS:
            getattr(app.state, name).cancel()
        await http.close()
        # Shutdown: close Redis connection
        await app.state.redis.aclose()


app = FastAPI(title="Punchclock API", version="0.1.0", lifespan=lifespan)

# Register request logging middleware (runs on every request)
app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(PunchclockError)
async def punchclock_error_handler(request: Request, exc: PunchclockError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error("unhandled_domain_error", error=str(exc), error_type=type(exc).__name__)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


app.include_router(timer.router)
app.include_router(notifications.router)
app.include_router(settings_router.router)

# Prometheus metrics endpoint
app.get("/metrics")(metrics_endpoint)


def _task_check(name: str) -> dict:
    task = getattr(app.state, name, None)
    if task is None:
        return {"status": "unhealthy", "error": "Worker not initialized"}
    if task.done() or task.cancelled():
        return {"status": "unhealthy", "error": "Worker task stopped"}
    return {"status": "healthy"}


@app.get("/health")
async def health_check(response: Response):
    """Health check across the database, Redis and the background loops.

    Returns 200 if all components are healthy, 503 if any component is unhealthy.
    """
    from sqlalchemy import text

    checks = {}

    try:
        async with async_session_factory() as db:
            await db.execute(text("SELECT 1"))
        checks["database"] = {"status": "healthy"}
    except Exception as e:
        checks["database"] = {"status": "unhealthy", "error": str(e)}

    try:
        await app.state.redis.ping()
        checks["redis"] = {"status": "healthy"}
    except Exception as e:
        checks["redis"] = {"status": "unhealthy", "error": str(e)}

    for name in BACKGROUND_TASKS:
        checks[name.removesuffix("_task")] = _task_check(name)

    overall_healthy = all(c["status"] == "healthy" for c in checks.values())
    response.status_code = 200 if overall_healthy else 503
    return {"status": "healthy" if overall_healthy else "unhealthy", "checks": checks}
