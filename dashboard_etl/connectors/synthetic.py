from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from dashboard_etl.connectors.base import Connector

# Fixed per-day volumes for the last seven days, oldest first.
_DAILY_CALLS = (18, 22, 15, 24, 19, 12, 21)
_DAILY_BOT_CALLS = (14, 17, 11, 19, 16, 9, 15)
_DAILY_INSPECTIONS = (6, 8, 5, 7, 9, 4, 6)

_BOT_INTENTS = ("Schedule Service", "Get Quote", "Check Status", "Billing Inquiry", "Cancel Service")
_INSPECTION_STATUSES = ("completed", "completed", "completed", "pending", "scheduled", "failed")
_INSPECTION_CATEGORIES = ("Lawn Care", "Irrigation", "Landscaping", "Tree Service")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _day_start(now: datetime, days_ago: int) -> datetime:
    midnight = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight - timedelta(days=days_ago)


def sample_calls(now: datetime) -> List[Dict[str, Any]]:
    calls: List[Dict[str, Any]] = []
    for days_ago, volume in zip(range(len(_DAILY_CALLS) - 1, -1, -1), _DAILY_CALLS):
        day = _day_start(now, days_ago)
        for index in range(volume):
            started = day + timedelta(hours=8 + index % 10, minutes=(index * 7) % 60)
            duration = 120 + (index % 9) * 60
            missed = index % 8 == 0
            calls.append(
                {
                    "id": f"sample-call-{days_ago}-{index}",
                    "direction": "inbound" if index % 3 else "outbound",
                    "status": "done",
                    "missed": missed,
                    "started_at": int(started.timestamp()),
                    "ended_at": int((started + timedelta(seconds=duration)).timestamp()),
                    "duration": 0 if missed else duration,
                    "tags": [{"name": "Opportunity"}] if index % 5 == 0 else [],
                }
            )
    return calls


def sample_bot_calls(now: datetime) -> List[Dict[str, Any]]:
    conversations: List[Dict[str, Any]] = []
    for days_ago, volume in zip(range(len(_DAILY_BOT_CALLS) - 1, -1, -1), _DAILY_BOT_CALLS):
        day = _day_start(now, days_ago)
        for index in range(volume):
            started = day + timedelta(hours=7 + (index * 3) % 14, minutes=(index * 11) % 60)
            succeeded = index % 7 != 0
            conversations.append(
                {
                    "conversation_id": f"sample-conversation-{days_ago}-{index}",
                    "status": "done" if succeeded else "failed",
                    "call_successful": "success" if succeeded else "failure",
                    "start_time_unix_secs": int(started.timestamp()),
                    "call_duration_secs": 90 + (index % 6) * 30,
                    "detected_intent": _BOT_INTENTS[index % len(_BOT_INTENTS)],
                    "sentiment": "positive" if index % 4 else "neutral",
                }
            )
    return conversations


def sample_inspections(now: datetime) -> List[Dict[str, Any]]:
    inspections: List[Dict[str, Any]] = []
    for days_ago, volume in zip(range(len(_DAILY_INSPECTIONS) - 1, -1, -1), _DAILY_INSPECTIONS):
        day = _day_start(now, days_ago)
        for index in range(volume):
            status = _INSPECTION_STATUSES[index % len(_INSPECTION_STATUSES)]
            category = _INSPECTION_CATEGORIES[index % len(_INSPECTION_CATEGORIES)]
            inspections.append(
                {
                    "id": f"sample-inspection-{days_ago}-{index}",
                    "status": status,
                    "inspection_date": (day + timedelta(hours=9 + index)).isoformat(),
                    "score": 80 + (index * 3) % 20 if status == "completed" else None,
                    "categories": [{"name": category, "passed": index % 5 != 4}] if status == "completed" else [],
                }
            )
    return inspections


_SAMPLE_BUILDERS: Dict[str, Callable[[datetime], List[Dict[str, Any]]]] = {
    "calls": sample_calls,
    "botCalls": sample_bot_calls,
    "inspections": sample_inspections,
}


class SyntheticConnector(Connector):
    """
    Stand-in for an upstream whose credentials are missing.

    Produces a fixed, deterministic record set (relative to the current day) so
    dashboards render the same shapes they would with live data.
    """

    configured = False

    def __init__(self, source: str, name: str, *, clock: Optional[Callable[[], datetime]] = None) -> None:
        if source not in _SAMPLE_BUILDERS:
            raise ValueError(f"No sample data for source {source!r}")
        super().__init__()
        self.source = source
        self.name = name
        self._clock = clock or _utcnow

    async def list_records(self, updated_since: Optional[datetime] = None) -> List[Dict[str, Any]]:
        return _SAMPLE_BUILDERS[self.source](self._clock())
