from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from dashboard_etl.connectors.base import ConnectorError, WebhookAuthError
from dashboard_etl.connectors.registry import ConnectorRegistry
from dashboard_etl.db.base import SessionLocal
from dashboard_etl.db.enums import ALL_SOURCES, EtlRunStatusEnum, SourceEnum, expand_sources, resolve_source
from dashboard_etl.db.repositories.etl_runs import EtlRunsRepository
from dashboard_etl.db.repositories.records import RecordsRepository
from dashboard_etl.etl.normalization import (
    normalize_batch,
    normalize_call,
    normalize_inspection,
    normalize_lead,
    normalize_message,
)
from dashboard_etl.etl.types import SweepResult, WebhookOutcome

logger = logging.getLogger(__name__)

# entity -> (normalizer, RecordsRepository upsert method name)
_ENTITY_PIPELINES: Dict[str, Tuple[Callable[[Any], Any], str]] = {
    "calls": (normalize_call, "upsert_calls"),
    "messages": (normalize_message, "upsert_messages"),
    "leads": (normalize_lead, "upsert_leads"),
    "inspections": (normalize_inspection, "upsert_inspections"),
}

AIRCALL_CALL_EVENTS = frozenset({"call.created", "call.ended", "call.answered", "call.hungup"})
AIRCALL_MESSAGE_EVENTS = frozenset({"message.sent", "message.received"})


class IngestionOrchestrator:
    """
    Runs sweeps (fetch -> normalize -> upsert for each requested source) and
    the single-record webhook path.

    Every sweep is recorded in the ETL run ledger: a ``running`` row on entry,
    completed exactly once as ``success`` or ``failed``. Sources run
    concurrently; one source failing never aborts the others.
    """

    def __init__(
        self,
        registry: ConnectorRegistry,
        *,
        session_factory: Callable[[], Session] = SessionLocal,
        stale_after_seconds: Optional[int] = None,
        fetch_timeout_seconds: Optional[float] = None,
    ) -> None:
        self.registry = registry
        self._session_factory = session_factory
        self.stale_after_seconds = stale_after_seconds
        self.fetch_timeout_seconds = fetch_timeout_seconds
        self._background: Set[asyncio.Task] = set()

    async def run(self, source: str = ALL_SOURCES) -> SweepResult:
        source = resolve_source(source)
        # Ledger and store calls are blocking; keep them off the event loop.
        run_id = await run_in_threadpool(self._begin, source)
        logger.info("ingest.sweep_started", extra={"etl_run_id": run_id, "source": source})

        result = SweepResult(run_id=run_id, source=source, status=EtlRunStatusEnum.running.value)
        sources = expand_sources(source)
        try:
            outcomes = await asyncio.gather(
                *(self._sweep_source(item) for item in sources),
                return_exceptions=True,
            )
            for item, outcome in zip(sources, outcomes):
                if isinstance(outcome, BaseException):
                    result.errors.append(f"{item}: {outcome}")
                    logger.warning(
                        "ingest.source_failed",
                        extra={"etl_run_id": run_id, "source": item, "error": str(outcome)},
                    )
                    continue
                counts, skipped = outcome
                result.counts.update(counts)
                result.skipped.update({entity: n for entity, n in skipped.items() if n})
        except BaseException as exc:
            result.errors.append(f"{source}: {exc}")
            await run_in_threadpool(self._complete, run_id, EtlRunStatusEnum.failed.value, result.details())
            logger.exception("ingest.sweep_aborted", extra={"etl_run_id": run_id, "source": source})
            raise

        result.status = EtlRunStatusEnum.failed.value if result.errors else EtlRunStatusEnum.success.value
        await run_in_threadpool(self._complete, run_id, result.status, result.details())
        logger.info(
            "ingest.sweep_finished",
            extra={
                "etl_run_id": run_id,
                "source": source,
                "status": result.status,
                "counts": dict(result.counts),
                "error_count": len(result.errors),
            },
        )
        return result

    async def run_detached(self, source: str = ALL_SOURCES) -> SweepResult:
        """Run a sweep as a tracked task that keeps going if the awaiting caller is cancelled."""
        task = asyncio.get_running_loop().create_task(self.run(source))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return await asyncio.shield(task)

    async def _sweep_source(self, source: str) -> Tuple[Dict[str, int], Dict[str, int]]:
        connector = self.registry.require(source)
        watermark = await run_in_threadpool(self._watermark, source)

        try:
            batches = await asyncio.wait_for(connector.fetch(watermark), timeout=self.fetch_timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise ConnectorError("timeout", connector=connector.name) from exc

        counts, skipped = await run_in_threadpool(self._store, batches)
        logger.info(
            "ingest.source_finished",
            extra={
                "source": source,
                "watermark": watermark.isoformat() if watermark else None,
                "counts": counts,
            },
        )
        return counts, skipped

    def _begin(self, source: str) -> str:
        with self._session_factory() as session:
            run = EtlRunsRepository(session).begin(source, stale_after_seconds=self.stale_after_seconds)
            return run.id

    def _watermark(self, source: str) -> Optional[datetime]:
        with self._session_factory() as session:
            return EtlRunsRepository(session).last_successful_run_finish(source)

    def _store(self, batches: Dict[str, List[Any]]) -> Tuple[Dict[str, int], Dict[str, int]]:
        counts: Dict[str, int] = {}
        skipped: Dict[str, int] = {}
        with self._session_factory() as session:
            records = RecordsRepository(session)
            for entity, raw_records in batches.items():
                normalizer, upsert_name = _ENTITY_PIPELINES[entity]
                rows, skipped[entity] = normalize_batch(raw_records, normalizer)
                counts[entity] = getattr(records, upsert_name)(rows)
        return counts, skipped

    def _complete(self, run_id: str, status: str, details: Dict[str, Any]) -> None:
        with self._session_factory() as session:
            EtlRunsRepository(session).complete(run_id, status=status, details=details)

    def ingest_webhook(self, source: str, payload: Any, token: Optional[str]) -> WebhookOutcome:
        """Verify and upsert one pushed record. No ledger row, no watermark interaction."""
        source = resolve_source(source)
        if source == ALL_SOURCES:
            raise ValueError("A webhook must target a single source")
        if not self.registry.verify_webhook(source, token):
            raise WebhookAuthError(f"Invalid webhook token for {source}")

        entity, record, event = self._route_webhook(source, payload)
        if entity is None:
            logger.info("webhook.event_ignored", extra={"source": source, "event": event})
            return WebhookOutcome(entity=None, ignored=True, event=event)

        normalizer, upsert_name = _ENTITY_PIPELINES[entity]
        row = normalizer(record)
        with self._session_factory() as session:
            getattr(RecordsRepository(session), upsert_name)([row])
        logger.info(
            "webhook.record_upserted",
            extra={"source": source, "entity": entity, "record_id": row.id, "event": event},
        )
        return WebhookOutcome(entity=entity, record_id=row.id, event=event)

    @staticmethod
    def _route_webhook(source: str, payload: Any) -> Tuple[Optional[str], Any, Optional[str]]:
        if source != SourceEnum.calls.value:
            # Lead and inspection webhooks deliver the record itself.
            return source, payload, None

        if not isinstance(payload, dict):
            return None, None, None
        event = payload.get("event")
        data = payload.get("data")
        if event in AIRCALL_CALL_EVENTS:
            return "calls", data, event
        if event in AIRCALL_MESSAGE_EVENTS:
            return "messages", data, event
        return None, None, event

    async def drain(self) -> List[Any]:
        """Wait for detached sweeps still in flight (used at shutdown)."""
        if not self._background:
            return []
        return list(await asyncio.gather(*self._background, return_exceptions=True))
