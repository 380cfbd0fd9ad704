import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from sqlalchemy import text

from dashboard_etl.config import settings
from dashboard_etl.connectors.base import WebhookAuthError
from dashboard_etl.connectors.registry import ConnectorRegistry
from dashboard_etl.db.base import engine, init_db
from dashboard_etl.db.repositories.etl_runs import LedgerStateError, SweepInProgressError
from dashboard_etl.etl.orchestrator import IngestionOrchestrator
from dashboard_etl.observability import configure_logging
from dashboard_etl.routers import chat, ingest, metrics, webhooks
from dashboard_etl.services.aggregator import DataAggregator

logger = logging.getLogger(__name__)


def create_app(
    *,
    registry: Optional[ConnectorRegistry] = None,
    aggregator: Optional[DataAggregator] = None,
) -> FastAPI:
    registry = registry or ConnectorRegistry.from_settings(settings)
    orchestrator = IngestionOrchestrator(
        registry,
        stale_after_seconds=settings.ETL_RUN_STALE_AFTER_SECONDS,
        fetch_timeout_seconds=settings.SOURCE_FETCH_TIMEOUT_SECONDS,
    )
    aggregator = aggregator or DataAggregator.from_settings(registry, settings)

    @asynccontextmanager
    async def _app_lifespan(_app: FastAPI) -> AsyncIterator[None]:
        configure_logging()
        init_db()
        try:
            yield
        finally:
            await orchestrator.drain()

    app = FastAPI(
        title="Dashboard ETL API",
        default_response_class=ORJSONResponse,
        lifespan=_app_lifespan,
    )
    app.state.registry = registry
    app.state.orchestrator = orchestrator
    app.state.aggregator = aggregator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=sorted(set(settings.cors_origins)),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(WebhookAuthError)
    async def webhook_auth_error_handler(_request: Request, exc: WebhookAuthError) -> ORJSONResponse:
        logger.warning("webhook.unauthorized", extra={"error": str(exc)})
        return ORJSONResponse(status_code=401, content={"error": "Unauthorized"})

    @app.exception_handler(SweepInProgressError)
    async def sweep_in_progress_handler(_request: Request, exc: SweepInProgressError) -> ORJSONResponse:
        return ORJSONResponse(
            status_code=409,
            content={"error": "Sweep already running", "message": str(exc), "etl_run_id": exc.run_id},
        )

    @app.exception_handler(LedgerStateError)
    async def ledger_state_error_handler(_request: Request, exc: LedgerStateError) -> ORJSONResponse:
        logger.error("etl_runs.ledger_state_error", extra={"error": str(exc)})
        return ORJSONResponse(status_code=409, content={"error": str(exc)})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(_request: Request, exc: Exception) -> ORJSONResponse:
        logger.exception("Unhandled server exception", exc_info=exc)
        return ORJSONResponse(status_code=500, content={"detail": "Internal server error."})

    @app.get("/health")
    async def health() -> dict[str, bool]:
        return {"ok": True}

    @app.get("/health/db")
    def health_db() -> dict[str, str]:
        try:
            with engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            return {"db": "ok"}
        except Exception as exc:  # pragma: no cover - simple runtime check
            return {"db": f"error: {exc}"}

    app.include_router(ingest.router)
    app.include_router(webhooks.router)
    app.include_router(metrics.router)
    app.include_router(chat.router)

    return app


app = create_app()
