from datetime import datetime, timezone

import pytest

from dashboard_etl.etl.normalization import (
    DEFAULT_LEAD_SOURCE,
    NormalizationError,
    coerce_instant,
    compose_address,
    normalize_batch,
    normalize_call,
    normalize_inspection,
    normalize_lead,
    normalize_message,
    to_iso,
)


def test_coerce_instant_accepts_epoch_seconds_and_numeric_strings():
    expected = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
    assert coerce_instant(1709294400) == expected
    assert coerce_instant("1709294400") == expected


def test_coerce_instant_reads_date_only_as_midnight_utc():
    assert coerce_instant("2024-03-01") == datetime(2024, 3, 1, tzinfo=timezone.utc)


def test_coerce_instant_converts_offsets_to_utc():
    parsed = coerce_instant("2024-03-01T07:00:00-05:00")
    assert parsed == datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
    assert parsed.tzinfo is not None
    assert coerce_instant("2024-03-01T12:00:00Z") == parsed


def test_coerce_instant_returns_none_for_garbage():
    assert coerce_instant("not a date") is None
    assert coerce_instant("") is None
    assert coerce_instant(None) is None


def test_to_iso_serializes_utc():
    assert to_iso(datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)) == "2024-03-01T12:00:00+00:00"
    assert to_iso(None) is None


def test_compose_address_collapses_and_trims_whitespace():
    assert compose_address("  12  Main St ", None, "TX", "") == "12 Main St TX"
    assert compose_address(None, None, None, None) == ""
    assert compose_address("1 Elm", "Austin", "TX", 78701) == "1 Elm Austin TX 78701"


def test_normalize_call_maps_fields_and_keeps_raw():
    raw = {
        "id": 9001,
        "direction": "inbound",
        "raw_digits": "+15125550100",
        "to": "+15125550199",
        "user": {"id": 42},
        "started_at": 1709294400,
        "ended_at": 1709294700,
        "duration": 300,
        "status": "done",
        "recording": "https://recordings.example/9001.mp3",
    }
    row = normalize_call(raw)
    assert row.id == "9001"
    assert row.from_number == "+15125550100"
    assert row.agent_id == "42"
    assert row.started_at == datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
    assert row.duration == 300
    assert row.recording_url == "https://recordings.example/9001.mp3"
    assert row.raw is raw


def test_normalize_message_prefers_content():
    row = normalize_message(
        {"id": "m1", "direction": "outbound", "content": "On our way", "sent_at": "2024-03-01T10:00:00Z"}
    )
    assert row.body == "On our way"
    assert row.sent_at == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)


def test_normalize_lead_defaults_source_and_parses_value():
    row = normalize_lead({"lead_id": 77, "lead_value": "$1,250.50", "date_created": "2024-03-01"})
    assert row.id == "77"
    assert row.source == DEFAULT_LEAD_SOURCE
    assert row.revenue == pytest.approx(1250.5)
    assert row.created_at == datetime(2024, 3, 1, tzinfo=timezone.utc)


def test_normalize_inspection_composes_address():
    row = normalize_inspection(
        {
            "id": "insp-1",
            "customer_name": "Acme",
            "address": "500  Oak Ave",
            "city": "Austin",
            "state": "TX",
            "zip": "78701",
            "status": "scheduled",
            "scheduled_date": "2024-03-05T15:00:00Z",
            "inspector_name": "Dana",
        }
    )
    assert row.address == "500 Oak Ave Austin TX 78701"
    assert row.assigned_engineer == "Dana"
    assert row.scheduled_at == datetime(2024, 3, 5, 15, 0, tzinfo=timezone.utc)
    assert row.completed_at is None


def test_missing_id_raises_for_that_record_only():
    with pytest.raises(NormalizationError) as excinfo:
        normalize_call({"direction": "inbound"})
    assert excinfo.value.entity == "call"

    rows, skipped = normalize_batch([{"id": "a"}, {"direction": "inbound"}, "junk", {"id": "b"}], normalize_call)
    assert [row.id for row in rows] == ["a", "b"]
    assert skipped == 2


def test_unparseable_optional_timestamp_does_not_drop_record():
    row = normalize_call({"id": "c1", "started_at": "whenever"})
    assert row.id == "c1"
    assert row.started_at is None
