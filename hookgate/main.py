"""
hookgate - Webhook Ingestion Gateway.
Main FastAPI application entry point.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from hookgate.config import get_settings
from hookgate.api.router import api_router
from hookgate.database import async_session_factory, dispose_engine
from hookgate.services.dispatcher import HandlerRegistry
from hookgate.services.processor import AsyncProcessor
from hookgate.services.providers import build_provider_registry
from hookgate.services.retry_scheduler import RetryPolicy
from hookgate.utils.alerting import AlertType, send_alert
from hookgate.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)
from hookgate.utils.redis_client import close_redis

logger = logging.getLogger("hookgate")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Injects a correlation ID into every request context and response header."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("X-Correlation-ID") or generate_correlation_id()
        set_correlation_id(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response


def _on_worker_done(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Background worker %s crashed: %s", task.get_name(), str(exc))
        asyncio.get_running_loop().create_task(
            send_alert(
                AlertType.WORKER_CRASHED,
                f"Background worker {task.get_name()} crashed: {exc}",
                severity="critical",
                cooldown_key=task.get_name(),
            )
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    logger.info("hookgate starting up (env=%s)", settings.app_env)

    if not settings.admin_api_key:
        logger.warning("ADMIN_API_KEY not set - the audit inspection API is disabled.")

    # Initialize Sentry if configured
    if settings.sentry_dsn:
        try:
            import sentry_sdk
            sentry_sdk.init(
                dsn=settings.sentry_dsn,
                traces_sample_rate=0.1,
                environment=settings.app_env,
            )
            logger.info("Sentry initialized")
        except Exception as e:
            logger.warning("Sentry initialization failed: %s", str(e))

    # Immutable configuration, built once and shared through app.state
    providers = build_provider_registry(settings)
    for name, provider in providers.items():
        if not provider.secret:
            await send_alert(
                AlertType.MISSING_PROVIDER_SECRET,
                f"Provider '{name}' has no webhook secret - its deliveries are rejected",
                severity="warning",
                cooldown_key=name,
            )

    handlers = getattr(app.state, "handlers", None) or HandlerRegistry()
    handlers.load_routes(settings.handler_routes)
    if not len(handlers):
        logger.warning("No handlers registered - every valid event will be acknowledged as unhandled")

    retry_policy = RetryPolicy.from_settings(settings)
    processor = AsyncProcessor(
        async_session_factory,
        retry_policy,
        workers=settings.processor_workers,
        queue_size=settings.processor_queue_size,
        handler_timeout=settings.handler_timeout_seconds,
    )
    await processor.start()

    app.state.providers = providers
    app.state.handlers = handlers
    app.state.retry_policy = retry_policy
    app.state.processor = processor

    # Background workers
    from hookgate.workers.retry_worker import run_retry_worker
    from hookgate.workers.maintenance import run_maintenance

    worker_tasks: list[asyncio.Task] = [
        asyncio.create_task(
            run_retry_worker(
                processor, handlers, retry_policy,
                poll_interval=settings.retry_poll_interval_seconds,
                batch_size=settings.retry_batch_size,
            ),
            name="retry_worker",
        ),
        asyncio.create_task(
            run_maintenance(
                retry_policy,
                interval=settings.maintenance_interval_seconds,
                stall_threshold_seconds=settings.stall_threshold_seconds,
                dedup_retention_days=settings.dedup_retention_days,
            ),
            name="maintenance",
        ),
    ]
    for task in worker_tasks:
        task.add_done_callback(_on_worker_done)
    logger.info("Background workers started (retry_worker, maintenance)")

    yield

    # Graceful shutdown - stop pollers first so nothing new reaches the pool
    logger.info("hookgate shutting down - stopping %d workers...", len(worker_tasks))
    for task in worker_tasks:
        task.cancel()
    await asyncio.gather(*worker_tasks, return_exceptions=True)

    await processor.stop(timeout=10.0)
    await close_redis()
    await dispose_engine()
    logger.info("hookgate shutdown complete")


def create_app(handlers: HandlerRegistry | None = None) -> FastAPI:
    """
    Application factory.
    Pass a HandlerRegistry to register handlers in code; HANDLER_ROUTES are
    loaded into it at startup.
    """
    settings = get_settings()

    # Configure structured JSON logging with correlation IDs
    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title="hookgate",
        description="Webhook Ingestion Gateway",
        version="1.0.0",
        lifespan=lifespan,
    )
    if handlers is not None:
        application.state.handlers = handlers

    application.add_middleware(CorrelationIdMiddleware)

    # Include all routes
    application.include_router(api_router)

    return application


app = create_app()
