import asyncio

import pytest
from fastapi.testclient import TestClient

from dashboard_etl.config import settings
from dashboard_etl.connectors.base import ConnectorError
from dashboard_etl.connectors.registry import ConnectorRegistry
from dashboard_etl.db.models import CallRecord, LeadRecord
from dashboard_etl.db.repositories.etl_runs import EtlRunsRepository
from dashboard_etl.db.repositories.records import RecordsRepository
from dashboard_etl.main import create_app
from dashboard_etl.routers.metrics import kpi_events

AUTH = {"Authorization": "Bearer internal_token"}


@pytest.fixture()
def connectors(fake_connector):
    return {
        "calls": fake_connector(
            "calls",
            {"calls": [{"id": "c1"}, {"id": "c2"}], "messages": [{"id": "m1", "content": "hi"}]},
            webhook_secret="aircall-secret",
        ),
        "leads": fake_connector("leads", {"leads": [{"lead_id": "l1"}]}, webhook_secret="wc-secret"),
        "inspections": fake_connector("inspections", {"inspections": [{"id": "i1"}]}),
    }


@pytest.fixture()
def api_client(db_session, connectors):
    app = create_app(registry=ConnectorRegistry(connectors))
    with TestClient(app) as client:
        yield client


def test_health(api_client):
    assert api_client.get("/health").json() == {"ok": True}
    assert api_client.get("/health/db").json() == {"db": "ok"}


def test_ingest_requires_internal_token(api_client):
    response = api_client.post("/ingest", json={"source": "all"})
    assert response.status_code == 401
    response = api_client.post("/ingest", json={"source": "all"}, headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401


def test_ingest_all_returns_counts_and_run_id(api_client, db_session):
    response = api_client.post("/ingest", json={"source": "all"}, headers=AUTH)

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["results"] == {"calls": 2, "messages": 1, "leads": 1, "inspections": 1, "errors": []}
    run = EtlRunsRepository(db_session).get(payload["etl_run_id"])
    assert run.status == "success"
    assert run.source == "all"


def test_ingest_accepts_vendor_alias_and_reports_source_errors(api_client, connectors, db_session):
    connectors["leads"].error = ConnectorError("timeout")
    response = api_client.post("/ingest", json={"source": "whatconverts"}, headers=AUTH)

    assert response.status_code == 200
    payload = response.json()
    assert payload["results"]["errors"] == ["leads: timeout"]
    assert EtlRunsRepository(db_session).get(payload["etl_run_id"]).status == "failed"


def test_ingest_without_body_sweeps_everything(api_client, db_session):
    response = api_client.post("/ingest", headers=AUTH)
    assert response.status_code == 200
    assert EtlRunsRepository(db_session).get(response.json()["etl_run_id"]).source == "all"


def test_ingest_rejects_unknown_source(api_client):
    response = api_client.post("/ingest", json={"source": "salesforce"}, headers=AUTH)
    assert response.status_code == 422


def test_ingest_conflicts_with_running_sweep(api_client, db_session):
    blocking = EtlRunsRepository(db_session).begin("all")
    response = api_client.post("/ingest", json={"source": "calls"}, headers=AUTH)

    assert response.status_code == 409
    assert response.json()["etl_run_id"] == blocking.id


def test_unexpected_failure_returns_ingest_failed(api_client, monkeypatch):
    async def explode(self, source="all"):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr("dashboard_etl.etl.orchestrator.IngestionOrchestrator.run", explode)
    response = api_client.post("/ingest", json={"source": "all"}, headers=AUTH)

    assert response.status_code == 500
    assert response.json() == {"error": "Ingest failed", "message": "database unavailable"}


def test_nightly_cron_runs_full_sweep(api_client, db_session):
    response = api_client.post("/cron/nightly", headers=AUTH)

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["message"] == "Nightly ETL completed"
    assert payload["data"]["results"]["calls"] == 2
    assert EtlRunsRepository(db_session).get(payload["data"]["etl_run_id"]).source == "all"


def test_etl_runs_read_api(api_client):
    created = api_client.post("/ingest", json={"source": "inspections"}, headers=AUTH).json()

    runs = api_client.get("/etl/runs", headers=AUTH).json()
    assert runs[0]["id"] == created["etl_run_id"]
    assert runs[0]["details"]["inspections"] == 1

    run = api_client.get(f"/etl/runs/{created['etl_run_id']}", headers=AUTH).json()
    assert run["status"] == "success"
    assert api_client.get("/etl/runs/missing", headers=AUTH).status_code == 404

    marks = api_client.get("/etl/watermarks", headers=AUTH).json()
    assert marks["inspections"] is not None
    assert marks["calls"] is None


def test_webhook_accepts_query_token(api_client, db_session):
    response = api_client.post(
        "/webhooks/calls?token=aircall-secret",
        json={"event": "call.ended", "data": {"id": 77, "status": "done", "duration": 42}},
    )
    assert response.status_code == 200
    assert response.json() == {"success": True}
    assert RecordsRepository(db_session).get_call("77").duration == 42


def test_webhook_accepts_vendor_header(api_client, db_session):
    response = api_client.post(
        "/webhooks/leads",
        json={"lead_id": 5, "lead_source": "google"},
        headers={"x-whatconverts-token": "wc-secret"},
    )
    assert response.status_code == 200
    assert RecordsRepository(db_session).count(LeadRecord) == 1


def test_webhook_rejects_bad_token_without_writing(api_client, db_session):
    response = api_client.post(
        "/webhooks/calls",
        json={"event": "call.created", "data": {"id": 1}},
        headers={"x-aircall-token": "wrong"},
    )
    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}
    assert RecordsRepository(db_session).count(CallRecord) == 0


def test_webhook_without_configured_secret_is_rejected(api_client):
    response = api_client.post("/webhooks/inspections", json={"id": "i9"}, headers={"x-webhook-token": "x"})
    assert response.status_code == 401


def test_webhook_ignores_unhandled_events(api_client):
    response = api_client.post(
        "/webhooks/calls",
        json={"event": "user.opened", "data": {}},
        headers={"x-aircall-token": "aircall-secret"},
    )
    assert response.status_code == 200
    assert response.json() == {"success": True, "ignored": True, "event": "user.opened"}


def test_webhook_record_without_id_is_a_server_error(api_client):
    response = api_client.post(
        "/webhooks/leads",
        json={"lead_source": "google"},
        headers={"x-whatconverts-token": "wc-secret"},
    )
    assert response.status_code == 500
    assert "lead_id" in response.json()["error"]


def test_unknown_webhook_source_is_404(api_client):
    assert api_client.post("/webhooks/all", json={}).status_code == 404
    assert api_client.post("/webhooks/stripe", json={}).status_code == 404


def test_metrics_endpoints(api_client, monkeypatch):
    metrics = api_client.get("/metrics").json()
    assert set(metrics) >= {"calls", "botCalls", "inspections", "timestamp", "sources"}
    assert metrics["sources"]["elevenlabs"] is False
    assert metrics["botCalls"]["synthetic"] is True

    calls = api_client.get("/metrics/calls").json()
    assert calls["totalCalls"] == 2
    assert api_client.get("/metrics/weather").status_code == 404

    sources = api_client.get("/metrics/sources").json()
    assert sources["calls"]["configured"] is True
    assert sources["botCalls"]["configured"] is False

    assert api_client.delete("/metrics/cache").status_code == 401
    assert api_client.delete("/metrics/cache", headers=AUTH).json() == {"success": True}


def test_internal_token_is_optional_when_unset(api_client, monkeypatch):
    monkeypatch.setattr(settings, "INTERNAL_API_TOKEN", None)
    assert api_client.post("/ingest", json={"source": "calls"}).status_code == 200


def test_kpi_events_push_until_disconnect():
    checks = iter([False, False, True])

    async def is_disconnected():
        return next(checks)

    async def collect():
        return [
            event
            async for event in kpi_events(
                is_disconnected,
                interval_seconds=0,
                snapshot=lambda: {"todayCalls": 3},
            )
        ]

    events = asyncio.run(collect())
    assert events == [b'data: {"todayCalls":3}\n\n'] * 2
