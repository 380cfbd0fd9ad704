from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Type

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite

from dashboard_etl.db.models import CallRecord, InspectionRecord, LeadRecord, MessageRecord, utcnow
from dashboard_etl.db.repositories.base import Repository
from dashboard_etl.etl.types import (
    CanonicalCall,
    CanonicalInspection,
    CanonicalLead,
    CanonicalMessage,
    CanonicalRow,
    row_values,
)

UPCOMING_INSPECTION_STATUSES = ("scheduled", "confirmed", "pending")


class RecordsRepository(Repository):
    """Upserts canonical rows by external id (last write wins) and serves dashboard reads."""

    def upsert_calls(self, rows: Sequence[CanonicalCall]) -> int:
        return self._upsert(CallRecord, rows)

    def upsert_messages(self, rows: Sequence[CanonicalMessage]) -> int:
        return self._upsert(MessageRecord, rows)

    def upsert_leads(self, rows: Sequence[CanonicalLead]) -> int:
        return self._upsert(LeadRecord, rows)

    def upsert_inspections(self, rows: Sequence[CanonicalInspection]) -> int:
        return self._upsert(InspectionRecord, rows)

    def _insert(self, model: Type[Any]):
        dialect = self.dialect_name
        if dialect == "postgresql":
            return postgresql.insert(model)
        if dialect == "sqlite":
            return sqlite.insert(model)
        raise NotImplementedError(f"Upsert is not supported for dialect {dialect}")

    def _upsert(self, model: Type[Any], rows: Iterable[CanonicalRow]) -> int:
        # Collapse duplicate ids inside one batch; ON CONFLICT cannot touch a row twice.
        by_id: Dict[str, Dict[str, Any]] = {}
        ingested_at = utcnow()
        for row in rows:
            values = row_values(row)
            values["ingested_at"] = ingested_at
            by_id[values["id"]] = values
        if not by_id:
            return 0

        stmt = self._insert(model).values(list(by_id.values()))
        update_columns = {
            column.name: stmt.excluded[column.name]
            for column in model.__table__.columns
            if column.name != "id"
        }
        stmt = stmt.on_conflict_do_update(index_elements=[model.id], set_=update_columns)
        try:
            self.session.execute(stmt)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return len(by_id)

    def get_call(self, call_id: str) -> Optional[CallRecord]:
        return self.session.get(CallRecord, call_id)

    def get_lead(self, lead_id: str) -> Optional[LeadRecord]:
        return self.session.get(LeadRecord, lead_id)

    def get_inspection(self, inspection_id: str) -> Optional[InspectionRecord]:
        return self.session.get(InspectionRecord, inspection_id)

    def count(self, model: Type[Any]) -> int:
        return int(self.session.scalar(select(func.count()).select_from(model)) or 0)

    def recent_inspections(self, *, limit: int = 5) -> List[InspectionRecord]:
        stmt = select(InspectionRecord).order_by(InspectionRecord.ingested_at.desc()).limit(limit)
        return list(self.session.scalars(stmt))

    def kpi_snapshot(self, *, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Counts pushed by the live KPI stream: today's calls and leads, upcoming inspections."""
        current = now or datetime.now(timezone.utc)
        start_of_day = current.replace(hour=0, minute=0, second=0, microsecond=0)
        today_calls = self.session.scalar(
            select(func.count()).select_from(CallRecord).where(CallRecord.started_at >= start_of_day)
        )
        new_leads = self.session.scalar(
            select(func.count()).select_from(LeadRecord).where(LeadRecord.created_at >= start_of_day)
        )
        upcoming = self.session.scalar(
            select(func.count())
            .select_from(InspectionRecord)
            .where(
                func.lower(InspectionRecord.status).in_(UPCOMING_INSPECTION_STATUSES),
                InspectionRecord.scheduled_at >= current,
            )
        )
        return {
            "todayCalls": int(today_calls or 0),
            "newLeads": int(new_leads or 0),
            "upcomingInspections": int(upcoming or 0),
            "timestamp": current.isoformat(),
        }

    def activity_counts(self, *, since: datetime) -> Dict[str, int]:
        calls = self.session.scalar(
            select(func.count()).select_from(CallRecord).where(CallRecord.started_at >= since)
        )
        leads = self.session.scalar(
            select(func.count()).select_from(LeadRecord).where(LeadRecord.created_at >= since)
        )
        inspections = self.session.scalar(
            select(func.count()).select_from(InspectionRecord).where(InspectionRecord.ingested_at >= since)
        )
        return {"calls": int(calls or 0), "leads": int(leads or 0), "inspections": int(inspections or 0)}

    def activity_counts_for_last(self, *, hours: int) -> Dict[str, int]:
        return self.activity_counts(since=datetime.now(timezone.utc) - timedelta(hours=hours))
