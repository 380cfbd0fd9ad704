from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict

import orjson
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from starlette.concurrency import run_in_threadpool

from dashboard_etl.config import settings
from dashboard_etl.db.base import session_scope
from dashboard_etl.db.repositories.records import RecordsRepository
from dashboard_etl.dependencies import get_aggregator
from dashboard_etl.security import require_internal_api_token
from dashboard_etl.services.aggregator import METRIC_KEYS, DataAggregator

logger = logging.getLogger(__name__)
router = APIRouter(tags=["metrics"])


def _sse(data: Any) -> bytes:
    return b"data: " + orjson.dumps(data) + b"\n\n"


def _kpi_snapshot() -> Dict[str, Any]:
    with session_scope() as session:
        return RecordsRepository(session).kpi_snapshot()


async def kpi_events(
    is_disconnected: Callable[[], Awaitable[bool]],
    *,
    interval_seconds: float,
    snapshot: Callable[[], Dict[str, Any]] = _kpi_snapshot,
) -> AsyncIterator[bytes]:
    """Push a KPI snapshot immediately, then every ``interval_seconds`` until the client goes away."""
    while not await is_disconnected():
        try:
            data = await run_in_threadpool(snapshot)
        except Exception:  # noqa: BLE001
            logger.exception("metrics.kpi_snapshot_failed")
        else:
            yield _sse(data)
        await asyncio.sleep(interval_seconds)
    logger.info("metrics.kpi_stream_closed")


@router.get("/metrics")
async def all_metrics(aggregator: DataAggregator = Depends(get_aggregator)) -> Dict[str, Any]:
    return await aggregator.fetch_all_metrics()


@router.get("/metrics/sources")
def metric_sources(aggregator: DataAggregator = Depends(get_aggregator)) -> Dict[str, Any]:
    return aggregator.source_status()


@router.delete("/metrics/cache", dependencies=[Depends(require_internal_api_token)])
def clear_metrics_cache(aggregator: DataAggregator = Depends(get_aggregator)) -> Dict[str, bool]:
    aggregator.clear()
    return {"success": True}


@router.get("/metrics/{group}")
async def metric_group(group: str, aggregator: DataAggregator = Depends(get_aggregator)) -> Dict[str, Any]:
    if group not in METRIC_KEYS:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown metric group: {group}. Expected one of {', '.join(METRIC_KEYS)}",
        )
    return await aggregator.fetch_metric(group)


@router.get("/sse")
async def kpi_stream(request: Request) -> StreamingResponse:
    return StreamingResponse(
        kpi_events(request.is_disconnected, interval_seconds=settings.KPI_STREAM_INTERVAL_SECONDS),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
