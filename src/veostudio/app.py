"""FastAPI application factory."""

# Import timezone enforcement (sets TZ=UTC)
import asyncio
from contextlib import asynccontextmanager
from typing import Awaitable, Callable

import structlog
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from veostudio.api.routes import videos
from veostudio.core import timezone  # noqa: F401
from veostudio.core.config import Settings, configure_logging
from veostudio.core.database import setup_db_session
from veostudio.core.dependencies import build_video_services
from veostudio.uow import create_uow_factory
from veostudio.workers.reconcile_worker import run_reconcile_worker

logger = structlog.get_logger()


class ResilientWorker:
    """Handle on a self-restarting worker; ``task`` always points at the live task."""

    def __init__(self, name: str, task: asyncio.Task):
        self.name = name
        self.task = task

    async def stop(self) -> None:
        """Cancel the current task and wait for it to finish."""
        self.task.cancel()
        await asyncio.gather(self.task, return_exceptions=True)


def create_resilient_worker(
    worker_factory: Callable[[], Awaitable[None]],
    worker_name: str,
    shutdown_event: asyncio.Event,
    restart_delay: float = 1,
) -> ResilientWorker:
    """Create a worker with automatic restart on failure.

    Args:
        worker_factory: Zero-argument callable returning the worker coroutine
        worker_name: Human-readable worker name for logging
        shutdown_event: Event to signal graceful shutdown
        restart_delay: Seconds to wait before restarting a crashed worker

    Returns:
        Worker handle whose task is replaced on every restart
    """

    def on_worker_done(task: asyncio.Task):
        if shutdown_event.is_set():
            logger.info("worker.shutdown_complete", worker=worker_name)
            return

        if task.cancelled():
            logger.info("worker.cancelled", worker=worker_name)
            return

        exc = task.exception()
        if exc:
            logger.error(
                "worker.crashed",
                worker=worker_name,
                error=str(exc),
                error_type=type(exc).__name__,
                retry_in_seconds=restart_delay,
                exc_info=exc,
            )
        else:
            # Worker loops are infinite; returning is unexpected
            logger.warning(
                "worker.stopped_unexpectedly",
                worker=worker_name,
                retry_in_seconds=restart_delay,
            )

        async def restart_worker():
            await asyncio.sleep(restart_delay)

            if shutdown_event.is_set():
                return

            logger.info("worker.restarting", worker=worker_name)
            new_task = asyncio.create_task(worker_factory())
            new_task.add_done_callback(on_worker_done)
            worker.task = new_task

        asyncio.create_task(restart_worker())

    task = asyncio.create_task(worker_factory())
    task.add_done_callback(on_worker_done)
    worker = ResilientWorker(worker_name, task)
    return worker


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown tasks:
    - Startup: Configure logging, initialize database session factory, wire
      the Vertex services, optionally start the reconcile worker
    - Shutdown: Stop the worker
    """
    settings: Settings = app.state.settings

    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)
    submission_service, reconciler = build_video_services(settings, uow_factory)

    # Store in app.state for access in routes
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.submission_service = submission_service
    app.state.reconciler = reconciler

    shutdown_event = asyncio.Event()
    worker = None
    if settings.reconcile_worker_enabled:
        worker = create_resilient_worker(
            lambda: run_reconcile_worker(uow_factory, reconciler, settings),
            "reconcile",
            shutdown_event,
        )

    logger.info(
        "application.startup",
        db_url=settings.database_url.split("@")[-1],
        reconcile_worker=settings.reconcile_worker_enabled,
    )

    yield

    logger.info("application.shutdown")
    shutdown_event.set()

    if worker is not None:
        await worker.stop()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        settings: Settings to use; loaded from the environment when omitted

    Returns:
        Configured FastAPI application instance
    """
    if settings is None:
        settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="Veo Studio Backend API",
        description="Video generation job orchestration on Vertex AI Veo",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(videos.router)  # Videos router has prefix="/api/videos" in definition

    # Health check endpoint with database validation
    @app.get("/health")
    async def health_check(response: Response):
        """Health check endpoint with database connectivity test.

        Returns:
            200: {"status": "healthy"} if database connection succeeds
            503: {"status": "unhealthy", "error": {...}} if database connection fails
        """
        try:
            async with app.state.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()

            logger.debug("health_check.success")
            return {"status": "healthy"}

        except Exception as e:
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "error": {
                    "type": type(e).__name__,
                    "message": str(e),
                },
            }

    return app


# Create app instance for uvicorn
app = create_app()
