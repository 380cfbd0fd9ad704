from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class CanonicalCall:
    id: str
    direction: Optional[str] = None
    from_number: Optional[str] = None
    to_number: Optional[str] = None
    agent_id: Optional[str] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration: Optional[int] = None
    status: Optional[str] = None
    recording_url: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CanonicalMessage:
    id: str
    direction: Optional[str] = None
    from_number: Optional[str] = None
    to_number: Optional[str] = None
    body: Optional[str] = None
    status: Optional[str] = None
    sent_at: Optional[datetime] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CanonicalLead:
    id: str
    source: Optional[str] = None
    medium: Optional[str] = None
    campaign: Optional[str] = None
    keyword: Optional[str] = None
    caller_number: Optional[str] = None
    email: Optional[str] = None
    conversion_type: Optional[str] = None
    revenue: Optional[float] = None
    created_at: Optional[datetime] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CanonicalInspection:
    id: str
    customer: Optional[str] = None
    address: str = ""
    status: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    assigned_engineer: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


CanonicalRow = CanonicalCall | CanonicalMessage | CanonicalLead | CanonicalInspection


def row_values(row: CanonicalRow) -> Dict[str, Any]:
    return asdict(row)


@dataclass
class SweepResult:
    run_id: str
    source: str
    status: str
    counts: Dict[str, int] = field(
        default_factory=lambda: {"calls": 0, "messages": 0, "leads": 0, "inspections": 0}
    )
    errors: List[str] = field(default_factory=list)
    skipped: Dict[str, int] = field(default_factory=dict)

    def results(self) -> Dict[str, Any]:
        return {**self.counts, "errors": list(self.errors)}

    def details(self) -> Dict[str, Any]:
        return {**self.counts, "errors": list(self.errors), "skipped": dict(self.skipped)}


@dataclass
class WebhookOutcome:
    entity: Optional[str]
    record_id: Optional[str] = None
    ignored: bool = False
    event: Optional[str] = None
