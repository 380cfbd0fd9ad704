from __future__ import annotations

import logging
import re
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from dashboard_etl.etl.types import (
    CanonicalCall,
    CanonicalInspection,
    CanonicalLead,
    CanonicalMessage,
)

logger = logging.getLogger(__name__)

_NUMERIC_RE = re.compile(r"^-?\d+(\.\d+)?$")
_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_WHITESPACE_RE = re.compile(r"\s+")
_FALLBACK_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S.%fZ",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y",
)

DEFAULT_LEAD_SOURCE = "unknown"

RowT = TypeVar("RowT")


class NormalizationError(ValueError):
    """Raised when a single upstream record cannot produce a canonical row."""

    def __init__(self, message: str, *, entity: str | None = None) -> None:
        super().__init__(message)
        self.entity = entity


def coerce_instant(value: Any) -> Optional[datetime]:
    """
    Coerce an upstream timestamp into a tz-aware UTC datetime.

    Accepts epoch seconds (int, float or numeric string), date-only strings
    (``YYYY-MM-DD``, read as midnight UTC), ISO-8601 strings with or without an
    offset (naive values are read as UTC) and a few vendor formats. Unparseable
    values become ``None`` so an optional field never drops its record.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return _from_epoch(value)

    text = str(value).strip()
    if not text:
        return None
    if _NUMERIC_RE.match(text):
        return _from_epoch(float(text))
    if _DATE_ONLY_RE.match(text):
        parsed_date = date.fromisoformat(text)
        return datetime(parsed_date.year, parsed_date.month, parsed_date.day, tzinfo=timezone.utc)

    candidate = text[:-1] + "+00:00" if text.endswith("Z") else text
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        parsed = None
        for fmt in _FALLBACK_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        logger.debug("normalization.unparseable_timestamp", extra={"value": text})
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _from_epoch(value: float) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def compose_address(*parts: Any) -> str:
    """Join the optional address/city/state/zip parts into one trimmed display line."""
    cleaned = [str(part).strip() for part in parts if part is not None and str(part).strip()]
    return _WHITESPACE_RE.sub(" ", " ".join(cleaned)).strip()


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def _optional_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _optional_amount(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).replace("$", "").replace(",", "").strip()
    if not text:
        return None
    try:
        return float(Decimal(text))
    except InvalidOperation:
        return None


def _require_id(raw: Dict[str, Any], *keys: str, entity: str) -> str:
    for key in keys:
        candidate = _optional_str(raw.get(key))
        if candidate:
            return candidate
    raise NormalizationError(f"{entity} record is missing {keys[0]}", entity=entity)


def _require_mapping(raw: Any, entity: str) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        raise NormalizationError(f"{entity} record must be an object", entity=entity)
    return raw


def normalize_call(raw: Any) -> CanonicalCall:
    data = _require_mapping(raw, "call")
    user = data.get("user") if isinstance(data.get("user"), dict) else {}
    recording = data.get("recording")
    return CanonicalCall(
        id=_require_id(data, "id", entity="call"),
        direction=_optional_str(data.get("direction")),
        from_number=_optional_str(data.get("from") or data.get("raw_digits")),
        to_number=_optional_str(data.get("to")),
        agent_id=_optional_str(user.get("id")),
        started_at=coerce_instant(data.get("started_at")),
        ended_at=coerce_instant(data.get("ended_at")),
        duration=_optional_int(data.get("duration")),
        status=_optional_str(data.get("status")),
        recording_url=recording if isinstance(recording, str) and recording else None,
        raw=data,
    )


def normalize_message(raw: Any) -> CanonicalMessage:
    data = _require_mapping(raw, "message")
    return CanonicalMessage(
        id=_require_id(data, "id", entity="message"),
        direction=_optional_str(data.get("direction")),
        from_number=_optional_str(data.get("from")),
        to_number=_optional_str(data.get("to")),
        body=data.get("content") if isinstance(data.get("content"), str) else _optional_str(data.get("body")),
        status=_optional_str(data.get("status")),
        sent_at=coerce_instant(data.get("sent_at") or data.get("created_at")),
        raw=data,
    )


def normalize_lead(raw: Any) -> CanonicalLead:
    data = _require_mapping(raw, "lead")
    return CanonicalLead(
        id=_require_id(data, "lead_id", "id", entity="lead"),
        source=_optional_str(data.get("lead_source")) or DEFAULT_LEAD_SOURCE,
        medium=_optional_str(data.get("lead_medium")),
        campaign=_optional_str(data.get("lead_campaign")),
        keyword=_optional_str(data.get("lead_keyword")),
        caller_number=_optional_str(data.get("caller_number")),
        email=_optional_str(data.get("contact_email") or data.get("email_address")),
        conversion_type=_optional_str(data.get("lead_type")),
        revenue=_optional_amount(data.get("lead_value")),
        created_at=coerce_instant(data.get("date_created")),
        raw=data,
    )


def normalize_inspection(raw: Any) -> CanonicalInspection:
    data = _require_mapping(raw, "inspection")
    return CanonicalInspection(
        id=_require_id(data, "id", "inspection_id", entity="inspection"),
        customer=_optional_str(data.get("customer_name") or data.get("customer")),
        address=compose_address(
            data.get("address") or data.get("address1"),
            data.get("city"),
            data.get("state"),
            data.get("zip") or data.get("postal_code"),
        ),
        status=_optional_str(data.get("status")),
        scheduled_at=coerce_instant(data.get("scheduled_date") or data.get("datetime")),
        completed_at=coerce_instant(data.get("completed_date")),
        assigned_engineer=_optional_str(data.get("inspector_name") or data.get("inspector")),
        raw=data,
    )


def normalize_batch(
    records: Iterable[Any],
    normalizer: Callable[[Any], RowT],
) -> Tuple[List[RowT], int]:
    """Normalize a batch, skipping (and counting) records that fail on their own."""
    rows: List[RowT] = []
    skipped = 0
    for record in records:
        try:
            rows.append(normalizer(record))
        except NormalizationError as exc:
            skipped += 1
            logger.warning(
                "normalization.record_skipped",
                extra={"entity": exc.entity, "error": str(exc)},
            )
    return rows, skipped
