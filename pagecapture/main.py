"""FastAPI app entrypoint."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from pagecapture.api.routes import router
from pagecapture.api.scheduling_routes import router as scheduling_router
from pagecapture.api.service import CaptureService
from pagecapture.cache.redis import RedisCache, create_redis_client
from pagecapture.capture import CaptureExecutor, PlaywrightEngine, ProgressHub
from pagecapture.config import get_settings
from pagecapture.logging_config import setup_logging
from pagecapture.scheduling.models import SchedulerConfig
from pagecapture.scheduling.notifications import NotificationDispatcher, SmtpConfig
from pagecapture.scheduling.scheduler import TaskScheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()

    # Initialize logging FIRST so all subsequent operations produce JSON logs
    setup_logging(settings.log_level)
    logger.info("starting capture service")

    redis_client = await create_redis_client(settings.redis_url)
    cache = RedisCache(redis_client, default_ttl=settings.result_ttl_seconds)

    engine = PlaywrightEngine(
        headless=settings.browser_headless,
        channel=settings.browser_channel,
        max_sessions=settings.browser_max_sessions,
    )
    await engine.start()

    executor = CaptureExecutor.from_settings(engine, settings)
    hub = ProgressHub(retention_seconds=settings.channel_retention_seconds)
    capture_service = CaptureService(executor, hub, cache, result_ttl_seconds=settings.result_ttl_seconds)

    scheduler = TaskScheduler(
        executor,
        NotificationDispatcher(smtp=SmtpConfig.from_settings(settings)),
        config=SchedulerConfig.from_settings(settings),
    )
    await scheduler.start()

    # Attach to app state for dependency injection
    app.state.settings = settings
    app.state.cache = cache
    app.state.capture_service = capture_service
    app.state.scheduler = scheduler

    logger.info(
        "capture service ready",
        extra={
            "browser_max_sessions": settings.browser_max_sessions,
            "scheduler_enabled": settings.scheduler_enabled,
            "scheduler_max_concurrent": settings.scheduler_max_concurrent,
        },
    )

    yield

    # Cleanup
    logger.info("shutting down capture service")
    await scheduler.stop()
    await capture_service.shutdown()
    hub.shutdown()
    await engine.stop()
    await redis_client.aclose()


app = FastAPI(title="Page Capture Service", lifespan=lifespan)
app.include_router(router)
app.include_router(scheduling_router)


@app.get("/health")
async def health():
    return {"status": "ok"}
