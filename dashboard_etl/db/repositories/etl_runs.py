from __future__ import annotations

import zlib
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import or_, select, text, update

from dashboard_etl.db.enums import ALL_SOURCES, EtlRunStatusEnum, expand_sources
from dashboard_etl.db.models import EtlRun, utcnow
from dashboard_etl.db.repositories.base import Repository

# Transaction-scoped Postgres advisory lock guarding the "is a sweep running?" check.
ETL_LEDGER_LOCK_KEY = zlib.crc32(b"dashboard_etl.etl_runs")

_TERMINAL_STATUSES = {EtlRunStatusEnum.success.value, EtlRunStatusEnum.failed.value}


class SweepInProgressError(RuntimeError):
    def __init__(self, *, source: str, run_id: str) -> None:
        super().__init__(f"A sweep covering '{source}' is already running (etl run {run_id})")
        self.source = source
        self.run_id = run_id


class LedgerStateError(RuntimeError):
    """Raised when a run is completed twice or completed with a non-terminal status."""


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class EtlRunsRepository(Repository):
    """Audit log of ingestion attempts; also the watermark for incremental pulls."""

    def begin(self, source: str, *, stale_after_seconds: Optional[int] = None) -> EtlRun:
        """
        Insert a ``running`` row for ``source``.

        When ``stale_after_seconds`` is given, refuse to start while another
        non-stale running row covers any of the same sources.
        """
        try:
            if stale_after_seconds is not None:
                self._lock_ledger()
                blocking = self._overlapping_running_run(source, stale_after_seconds=stale_after_seconds)
                if blocking is not None:
                    raise SweepInProgressError(source=source, run_id=blocking.id)
            run = EtlRun(
                source=source,
                run_started=utcnow(),
                status=EtlRunStatusEnum.running.value,
                details={},
            )
            self.session.add(run)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(run)
        return run

    def complete(self, run_id: str, *, status: str, details: dict[str, Any]) -> EtlRun:
        if status not in _TERMINAL_STATUSES:
            raise LedgerStateError(f"Cannot complete etl run {run_id} with status {status!r}")
        stmt = (
            update(EtlRun)
            .where(EtlRun.id == run_id, EtlRun.status == EtlRunStatusEnum.running.value)
            .values(status=status, run_finished=utcnow(), details=details)
        )
        result = self.session.execute(stmt)
        if result.rowcount != 1:
            self.session.rollback()
            raise LedgerStateError(f"etl run {run_id} is not running; terminal runs are immutable")
        self.session.commit()
        run = self.session.get(EtlRun, run_id)
        if run is not None:
            self.session.refresh(run)
        return run

    def last_successful_run_finish(self, source: str) -> Optional[datetime]:
        """Most recent ``run_finished`` of a successful run that covered ``source``."""
        covering = [source] if source == ALL_SOURCES else [source, ALL_SOURCES]
        stmt = (
            select(EtlRun.run_finished)
            .where(
                EtlRun.source.in_(covering),
                EtlRun.status == EtlRunStatusEnum.success.value,
                EtlRun.run_finished.is_not(None),
            )
            .order_by(EtlRun.run_finished.desc())
            .limit(1)
        )
        return _as_utc(self.session.scalar(stmt))

    def get(self, run_id: str) -> Optional[EtlRun]:
        return self.session.get(EtlRun, run_id)

    def list_recent(self, *, limit: int = 20, source: Optional[str] = None) -> list[EtlRun]:
        stmt = select(EtlRun).order_by(EtlRun.run_started.desc()).limit(limit)
        if source:
            stmt = stmt.where(EtlRun.source == source)
        return list(self.session.scalars(stmt))

    def _lock_ledger(self) -> None:
        if self.dialect_name == "postgresql":
            self.session.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": ETL_LEDGER_LOCK_KEY})

    def _overlapping_running_run(self, source: str, *, stale_after_seconds: int) -> Optional[EtlRun]:
        requested = set(expand_sources(source))
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=stale_after_seconds)
        candidates = [ALL_SOURCES, *requested] if source != ALL_SOURCES else None
        stmt = select(EtlRun).where(
            EtlRun.status == EtlRunStatusEnum.running.value,
            EtlRun.run_started >= cutoff,
        )
        if candidates is not None:
            stmt = stmt.where(or_(*(EtlRun.source == item for item in candidates)))
        return self.session.scalars(stmt.order_by(EtlRun.run_started.desc())).first()
