from __future__ import annotations

from typing import Any, Dict

from temporalio import activity
from temporalio.exceptions import ApplicationError

from dashboard_etl.config import settings
from dashboard_etl.connectors.registry import ConnectorRegistry
from dashboard_etl.db.enums import ALL_SOURCES
from dashboard_etl.db.repositories.etl_runs import SweepInProgressError
from dashboard_etl.etl.orchestrator import IngestionOrchestrator


def _build_orchestrator() -> IngestionOrchestrator:
    return IngestionOrchestrator(
        ConnectorRegistry.from_settings(settings),
        stale_after_seconds=settings.ETL_RUN_STALE_AFTER_SECONDS,
        fetch_timeout_seconds=settings.SOURCE_FETCH_TIMEOUT_SECONDS,
    )


@activity.defn
async def run_sweep_activity(params: Dict[str, Any]) -> Dict[str, Any]:
    source = params.get("source") or ALL_SOURCES
    activity.logger.info("etl_sweep.start", extra={"source": source})

    orchestrator = _build_orchestrator()
    try:
        result = await orchestrator.run(source)
    except SweepInProgressError as exc:
        activity.logger.warning(
            "etl_sweep.already_running",
            extra={"source": source, "blocking_run_id": exc.run_id},
        )
        raise ApplicationError(str(exc), type="SweepInProgressError", non_retryable=True) from exc

    activity.logger.info(
        "etl_sweep.done",
        extra={"source": source, "etl_run_id": result.run_id, "status": result.status},
    )
    return {
        "etl_run_id": result.run_id,
        "status": result.status,
        "results": result.results(),
        "skipped": dict(result.skipped),
    }
