from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import ORJSONResponse
from sqlalchemy.orm import Session

from dashboard_etl.db.deps import get_session
from dashboard_etl.db.enums import ALL_SOURCES, SourceEnum
from dashboard_etl.db.repositories.etl_runs import EtlRunsRepository, SweepInProgressError
from dashboard_etl.dependencies import get_orchestrator
from dashboard_etl.etl.orchestrator import IngestionOrchestrator
from dashboard_etl.schemas import EtlRunResponse, IngestRequest, IngestResponse, IngestResults
from dashboard_etl.security import require_internal_api_token

logger = logging.getLogger(__name__)
router = APIRouter(tags=["etl"], dependencies=[Depends(require_internal_api_token)])


async def _run_sweep(orchestrator: IngestionOrchestrator, source: str) -> IngestResponse:
    result = await orchestrator.run_detached(source)
    return IngestResponse(
        success=True,
        etl_run_id=result.run_id,
        results=IngestResults(**result.results()),
    )


@router.post("/ingest", response_model=IngestResponse)
async def ingest(
    payload: Optional[IngestRequest] = None,
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
):
    source = payload.source if payload is not None else ALL_SOURCES
    try:
        return await _run_sweep(orchestrator, source)
    except SweepInProgressError:
        raise
    except Exception as exc:  # noqa: BLE001
        logger.exception("ingest.request_failed", extra={"source": source})
        return ORJSONResponse(status_code=500, content={"error": "Ingest failed", "message": str(exc)})


@router.post("/cron/nightly")
async def nightly(orchestrator: IngestionOrchestrator = Depends(get_orchestrator)):
    try:
        response = await _run_sweep(orchestrator, ALL_SOURCES)
    except SweepInProgressError:
        raise
    except Exception as exc:  # noqa: BLE001
        logger.exception("ingest.nightly_failed")
        return ORJSONResponse(status_code=500, content={"error": "Nightly cron failed", "message": str(exc)})
    return {"success": True, "message": "Nightly ETL completed", "data": response.model_dump()}


@router.get("/etl/runs", response_model=List[EtlRunResponse])
def list_runs(
    limit: int = Query(20, ge=1, le=200),
    source: Optional[str] = None,
    session: Session = Depends(get_session),
) -> List[Any]:
    return EtlRunsRepository(session).list_recent(limit=limit, source=source)


@router.get("/etl/runs/{run_id}", response_model=EtlRunResponse)
def get_run(run_id: str, session: Session = Depends(get_session)) -> Any:
    run = EtlRunsRepository(session).get(run_id)
    if not run:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="ETL run not found")
    return run


@router.get("/etl/watermarks")
def watermarks(session: Session = Depends(get_session)) -> Dict[str, Optional[str]]:
    repo = EtlRunsRepository(session)
    marks: Dict[str, Optional[str]] = {}
    for source in SourceEnum:
        finished = repo.last_successful_run_finish(source.value)
        marks[source.value] = finished.isoformat() if finished else None
    return marks
