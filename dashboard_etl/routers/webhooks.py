from __future__ import annotations

import logging

import orjson
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import ORJSONResponse
from starlette.concurrency import run_in_threadpool

from dashboard_etl.connectors.base import WebhookAuthError
from dashboard_etl.db.enums import ALL_SOURCES, resolve_source
from dashboard_etl.dependencies import get_orchestrator
from dashboard_etl.etl.normalization import NormalizationError
from dashboard_etl.etl.orchestrator import IngestionOrchestrator
from dashboard_etl.security import extract_webhook_token

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/{source}")
async def receive_webhook(
    source: str,
    request: Request,
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
) -> ORJSONResponse:
    try:
        canonical = resolve_source(source)
    except ValueError:
        canonical = None
    if canonical is None or canonical == ALL_SOURCES:
        return ORJSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"error": f"Unknown webhook source: {source}"})

    token = extract_webhook_token(request, canonical)
    if not orchestrator.registry.verify_webhook(canonical, token):
        raise WebhookAuthError(f"Invalid webhook token for {canonical}")

    try:
        payload = orjson.loads(await request.body())
    except orjson.JSONDecodeError:
        return ORJSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Invalid JSON payload"})

    try:
        outcome = await run_in_threadpool(orchestrator.ingest_webhook, canonical, payload, token)
    except WebhookAuthError:
        raise
    except NormalizationError as exc:
        logger.warning("webhook.rejected", extra={"source": canonical, "error": str(exc)})
        return ORJSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": str(exc)})
    except Exception as exc:  # noqa: BLE001
        logger.exception("webhook.failed", extra={"source": canonical})
        return ORJSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": str(exc)})

    content = {"success": True}
    if outcome.ignored:
        content.update({"ignored": True, "event": outcome.event})
    return ORJSONResponse(content=content)
