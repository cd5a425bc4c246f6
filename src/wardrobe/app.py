"""FastAPI application factory."""

# Import timezone enforcement (sets TZ=UTC)
import asyncio
from contextlib import asynccontextmanager
from typing import Awaitable, Callable

import structlog
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from wardrobe.api.routes import ai_jobs, images, outfits
from wardrobe.core import timezone  # noqa: F401
from wardrobe.core.config import Settings, configure_logging
from wardrobe.core.database import create_db_engine, create_session_factory
from wardrobe.services.images.asset_store import ImageAssetStore
from wardrobe.services.jobs.reconciliation import ReconciliationSweep
from wardrobe.services.jobs.submission import ModelNames, SubmissionGateway
from wardrobe.services.provider.openrouter_client import OpenRouterClient
from wardrobe.services.queue.job_queue import JobQueue, RetryPolicy
from wardrobe.services.queue.lease import LeaseManager
from wardrobe.uow import create_uow_factory
from wardrobe.workers.dispatcher import WorkerDispatcher, run_ai_job_worker
from wardrobe.workers.reconciliation_worker import run_reconciliation_worker

logger = structlog.get_logger()


def create_resilient_worker(
    worker_factory: Callable[[], Awaitable[None]],
    worker_name: str,
    shutdown_event: asyncio.Event,
):
    """Create a worker with automatic restart on failure.

    Args:
        worker_factory: Zero-argument callable returning the worker coroutine
        worker_name: Human-readable worker name for logging
        shutdown_event: Event to signal graceful shutdown

    Returns:
        Initial task handle (will be auto-recreated on crash)
    """
    RESTART_DELAY = 1  # Fixed 1 second delay between restarts

    def on_worker_done(task: asyncio.Task):
        # Check if shutdown was requested
        if shutdown_event.is_set():
            logger.info("worker.shutdown_complete", worker=worker_name)
            return

        # Check if task was cancelled (normal shutdown)
        if task.cancelled():
            logger.info("worker.cancelled", worker=worker_name)
            return

        # Check for exceptions
        exc = task.exception()
        if exc:
            logger.error(
                "worker.crashed",
                worker=worker_name,
                error=str(exc),
                error_type=type(exc).__name__,
                retry_in_seconds=RESTART_DELAY,
                exc_info=exc,
            )
        else:
            # Worker stopped cleanly (unexpected for infinite loop workers)
            logger.warning(
                "worker.stopped_unexpectedly",
                worker=worker_name,
                retry_in_seconds=RESTART_DELAY,
            )

        # Schedule restart after fixed delay
        async def restart_worker():
            await asyncio.sleep(RESTART_DELAY)

            # Check again if shutdown was requested during sleep
            if shutdown_event.is_set():
                return

            logger.info("worker.restarting", worker=worker_name)
            new_task = asyncio.create_task(worker_factory())
            new_task.add_done_callback(on_worker_done)
            tasks[0] = new_task

        # Create restart task
        asyncio.create_task(restart_worker())

    # Create initial task; tasks[0] always points at the live task
    task = asyncio.create_task(worker_factory())
    task.add_done_callback(on_worker_done)
    tasks = [task]
    return tasks


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown tasks:
    - Startup: Configure logging, create the record store and queue engines,
      connect the queue, wire the gateway, start dispatcher and sweep workers
    - Shutdown: Stop workers, drain the queue connection, dispose engines

    Workers automatically restart on failure.
    """
    # Load settings
    settings = Settings()  # type: ignore[call-arg]

    # Configure logging
    configure_logging(settings)

    # Record store: one process-wide engine
    db_engine = create_db_engine(settings.database_url, settings.db_pool_size)
    session_factory = create_session_factory(db_engine)
    uow_factory = create_uow_factory(session_factory)

    # Queue broker: separate process-wide engine, connected before serving
    queue = JobQueue(
        create_db_engine(settings.effective_queue_database_url, settings.db_pool_size),
        RetryPolicy(
            max_attempts=settings.job_max_attempts,
            backoff_base_seconds=settings.job_backoff_base_seconds,
            keep_completed=settings.queue_keep_completed,
            keep_failed=settings.queue_keep_failed,
            stall_timeout_seconds=settings.lease_ttl_seconds,
        ),
    )
    await queue.connect(attempts=settings.queue_connect_attempts)

    gateway = SubmissionGateway(
        uow_factory,
        queue,
        ai_enabled=settings.ai_enabled,
        models=ModelNames(
            image=settings.openrouter_image_model,
            vision=settings.openrouter_vision_model,
            text=settings.openrouter_text_model,
        ),
    )
    sweep = ReconciliationSweep(uow_factory, queue, grace_seconds=settings.reconcile_grace_seconds)

    # Store in app.state for access in routes
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.queue = queue
    app.state.gateway = gateway

    # Create shutdown event for graceful worker termination
    shutdown_event = asyncio.Event()
    worker_tasks: list[list[asyncio.Task]] = []

    if settings.run_workers and settings.ai_enabled:
        dispatcher = WorkerDispatcher(
            queue=queue,
            leases=LeaseManager(queue.engine, ttl_seconds=settings.lease_ttl_seconds),
            uow_factory=uow_factory,
            provider=OpenRouterClient.from_settings(settings),
            assets=ImageAssetStore(settings.data_dir),
            handler_timeout=settings.handler_timeout_seconds,
            batch_size=settings.worker_batch_size,
        )
        for index in range(settings.worker_concurrency):
            worker_tasks.append(
                create_resilient_worker(
                    lambda: run_ai_job_worker(dispatcher, settings.poll_interval_seconds),
                    f"ai_jobs_{index}",
                    shutdown_event,
                )
            )
    if settings.run_workers:
        worker_tasks.append(
            create_resilient_worker(
                lambda: run_reconciliation_worker(sweep, settings.reconcile_interval_seconds),
                "reconciliation",
                shutdown_event,
            )
        )

    logger.info(
        "application.startup",
        db_url=settings.database_url.split("@")[-1],
        ai_enabled=settings.ai_enabled,
        workers=len(worker_tasks),
    )

    yield

    # Shutdown: Signal workers to stop and close database connections
    logger.info("application.shutdown")
    shutdown_event.set()

    live_tasks = [handle[0] for handle in worker_tasks]
    for task in live_tasks:
        task.cancel()

    # Wait for cancellation to complete (ignore CancelledError)
    await asyncio.gather(*live_tasks, return_exceptions=True)

    await queue.close()
    await db_engine.dispose()


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="Wardrobe Backend API",
        description="Wardrobe AI job orchestration",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register API routers (prefixes are set in each router definition)
    app.include_router(ai_jobs.router)
    app.include_router(outfits.router)
    app.include_router(images.router)

    # Health check endpoint with database validation
    @app.get("/health")
    async def health_check(response: Response):
        """Health check endpoint with database connectivity test.

        Returns:
            200: {"status": "healthy", "queue": {...}} if the database and queue respond
            503: {"status": "unhealthy", "error": {...}} otherwise
        """
        try:
            # Test database connection with simple query
            async with app.state.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()

            queue_counts = await app.state.queue.counts()

            logger.debug("health_check.success")
            return {"status": "healthy", "queue": queue_counts}

        except Exception as e:
            # Log error and return unhealthy status
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
