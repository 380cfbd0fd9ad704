from __future__ import annotations

from collections import Counter
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Sequence

from dashboard_etl.etl.normalization import coerce_instant


def _window(today: date, window_days: int) -> List[date]:
    return [today - timedelta(days=offset) for offset in range(window_days - 1, -1, -1)]


def _number(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return 0.0
    return 0.0


def _day_of(value: Any) -> Optional[date]:
    instant = coerce_instant(value)
    return instant.date() if instant is not None else None


def _is_missed_call(call: Dict[str, Any]) -> bool:
    if call.get("missed") is True:
        return True
    return bool(call.get("missed_call_reason"))


def _is_opportunity(call: Dict[str, Any]) -> bool:
    tags = call.get("tags")
    if not isinstance(tags, list):
        return False
    for tag in tags:
        name = tag.get("name") if isinstance(tag, dict) else tag
        if isinstance(name, str) and "opportunity" in name.lower():
            return True
    return False


def compute_call_metrics(calls: Sequence[Dict[str, Any]], *, today: date, window_days: int = 7) -> Dict[str, Any]:
    """Call-center summary: volume, missed/answered split, mean duration in minutes, daily trend."""
    total = len(calls)
    missed = sum(1 for call in calls if _is_missed_call(call))
    answered = total - missed
    total_seconds = sum(_number(call.get("duration")) for call in calls)
    opportunities = sum(1 for call in calls if _is_opportunity(call))

    by_day: Dict[date, List[Dict[str, Any]]] = {}
    for call in calls:
        day = _day_of(call.get("started_at"))
        if day is not None:
            by_day.setdefault(day, []).append(call)

    trends = []
    for day in _window(today, window_days):
        day_calls = by_day.get(day, [])
        trends.append(
            {
                "date": day.isoformat(),
                "calls": len(day_calls),
                "duration": round(sum(_number(call.get("duration")) for call in day_calls) / 60, 1),
                "opportunities": sum(1 for call in day_calls if _is_opportunity(call)),
            }
        )

    return {
        "totalCalls": total,
        "missedCalls": missed,
        "answeredCalls": answered,
        "averageDuration": round(total_seconds / total / 60) if total else 0,
        "salesOpportunities": opportunities,
        "conversionRate": round(opportunities / answered * 100, 1) if answered else 0.0,
        "trends": trends,
    }


def _bot_call_succeeded(conversation: Dict[str, Any]) -> bool:
    outcome = conversation.get("call_successful")
    if isinstance(outcome, str):
        return outcome.lower() == "success"
    return conversation.get("success") is True


def _bot_call_failed(conversation: Dict[str, Any]) -> bool:
    status = str(conversation.get("status") or "").lower()
    return status == "failed" or not _bot_call_succeeded(conversation)


def compute_bot_call_metrics(conversations: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    """Voice-bot summary: outcomes, handle time, satisfaction, intents and the hour-of-day histogram."""
    total = len(conversations)
    successful = sum(1 for conv in conversations if _bot_call_succeeded(conv))
    failed = sum(1 for conv in conversations if _bot_call_failed(conv))
    handle_seconds = sum(
        _number(conv.get("call_duration_secs", conv.get("duration_seconds"))) for conv in conversations
    )
    positive = sum(1 for conv in conversations if str(conv.get("sentiment") or "").lower() == "positive")

    intent_counts: Counter[str] = Counter()
    intent_successes: Counter[str] = Counter()
    for conv in conversations:
        intent = conv.get("detected_intent") or conv.get("intent") or "Unknown"
        intent_counts[intent] += 1
        if _bot_call_succeeded(conv):
            intent_successes[intent] += 1

    hourly = [0] * 24
    for conv in conversations:
        started = coerce_instant(conv.get("start_time_unix_secs", conv.get("started_at")))
        if started is not None:
            hourly[started.hour] += 1

    return {
        "totalBotCalls": total,
        "successfulCalls": successful,
        "failedCalls": failed,
        "averageHandleTime": round(handle_seconds / total / 60, 1) if total else 0.0,
        "customerSatisfaction": round(positive / total * 5, 1) if total else 0.0,
        "intents": [
            {
                "intent": intent,
                "count": count,
                "successRate": round(intent_successes[intent] / count * 100, 1),
            }
            for intent, count in intent_counts.most_common()
        ],
        "hourlyDistribution": [{"hour": hour, "calls": calls} for hour, calls in enumerate(hourly)],
    }


def _inspection_status(inspection: Dict[str, Any]) -> str:
    return str(inspection.get("status") or "unknown").lower()


def _inspection_day(inspection: Dict[str, Any]) -> Optional[date]:
    return _day_of(
        inspection.get("inspection_date") or inspection.get("scheduled_date") or inspection.get("datetime")
    )


def _average_score(inspections: Sequence[Dict[str, Any]]) -> float:
    scores = [
        _number(item.get("score"))
        for item in inspections
        if _inspection_status(item) == "completed" and item.get("score") is not None
    ]
    return round(sum(scores) / len(scores), 1) if scores else 0.0


def compute_inspection_metrics(
    inspections: Sequence[Dict[str, Any]],
    *,
    today: date,
    window_days: int = 7,
) -> Dict[str, Any]:
    total = len(inspections)
    by_status = Counter(_inspection_status(item) for item in inspections)

    by_day: Dict[date, List[Dict[str, Any]]] = {}
    for item in inspections:
        day = _inspection_day(item)
        if day is not None:
            by_day.setdefault(day, []).append(item)

    trends = []
    for day in _window(today, window_days):
        day_items = by_day.get(day, [])
        trends.append(
            {
                "date": day.isoformat(),
                "completed": sum(1 for item in day_items if _inspection_status(item) == "completed"),
                "pending": sum(1 for item in day_items if _inspection_status(item) == "pending"),
                "score": _average_score(day_items),
            }
        )

    categories: Dict[str, List[int]] = {}
    for item in inspections:
        if _inspection_status(item) != "completed" or not isinstance(item.get("categories"), list):
            continue
        for category in item["categories"]:
            if not isinstance(category, dict) or not category.get("name"):
                continue
            tally = categories.setdefault(str(category["name"]), [0, 0])
            tally[0] += 1
            if category.get("passed"):
                tally[1] += 1

    return {
        "totalInspections": total,
        "completedInspections": by_status.get("completed", 0),
        "pendingInspections": by_status.get("pending", 0),
        "averageScore": _average_score(inspections),
        "failureRate": round(by_status.get("failed", 0) / total * 100, 1) if total else 0.0,
        "byStatus": dict(sorted(by_status.items())),
        "trends": trends,
        "byCategory": [
            {"category": name, "count": count, "passRate": round(passed / count * 100, 1)}
            for name, (count, passed) in categories.items()
        ],
    }
