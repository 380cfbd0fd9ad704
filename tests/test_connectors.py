import asyncio
import base64
from datetime import datetime, timezone

import httpx
import pytest

from dashboard_etl.config import Settings
from dashboard_etl.connectors.aircall import AircallConnector
from dashboard_etl.connectors.base import ConfigurationError, ConnectorError, WebhookVerifier, extract_items
from dashboard_etl.connectors.elevenlabs import ElevenLabsConnector
from dashboard_etl.connectors.isn import IsnConnector
from dashboard_etl.connectors.registry import ConnectorRegistry
from dashboard_etl.connectors.synthetic import SyntheticConnector
from dashboard_etl.connectors.whatconverts import WhatConvertsConnector

WATERMARK = datetime(2024, 3, 1, 12, 30, tzinfo=timezone.utc)


def _recording_transport(handler, seen):
    def wrapped(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    return httpx.MockTransport(wrapped)


def test_missing_credentials_raise_configuration_error():
    with pytest.raises(ConfigurationError):
        AircallConnector(api_id="id", api_token=None)
    with pytest.raises(ConfigurationError):
        WhatConvertsConnector(api_key="")
    with pytest.raises(ConfigurationError):
        IsnConnector(api_key=None)
    with pytest.raises(ConfigurationError):
        ElevenLabsConnector(api_key=None)


def test_aircall_uses_basic_auth_and_paginates_with_watermark():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        page = int(request.url.params["page"])
        if request.url.path == "/v1/calls":
            if page == 1:
                return httpx.Response(
                    200,
                    json={"calls": [{"id": 1}, {"id": 2}], "meta": {"next_page_link": "https://api/next"}},
                )
            return httpx.Response(200, json={"calls": [{"id": 3}], "meta": {"next_page_link": None}})
        return httpx.Response(200, json={"messages": [{"id": "m1"}], "meta": {}})

    connector = AircallConnector(
        api_id="abc",
        api_token="xyz",
        base_url="https://aircall.test",
        page_size=2,
        transport=_recording_transport(handler, seen),
    )
    batches = asyncio.run(connector.fetch(WATERMARK))

    assert [call["id"] for call in batches["calls"]] == [1, 2, 3]
    assert [msg["id"] for msg in batches["messages"]] == ["m1"]
    expected_auth = "Basic " + base64.b64encode(b"abc:xyz").decode("ascii")
    assert all(request.headers["Authorization"] == expected_auth for request in seen)
    first = seen[0]
    assert first.url.params["updated_since"] == "2024-03-01T12:30:00+00:00"
    assert first.url.params["per_page"] == "2"


def test_no_watermark_means_no_filter_parameter():
    seen = []
    connector = IsnConnector(
        api_key="isn-key",
        company_key="company",
        base_url="https://isn.test",
        transport=_recording_transport(lambda request: httpx.Response(200, json={"inspections": []}), seen),
    )
    assert asyncio.run(connector.list_records(None)) == []
    assert "updated_since" not in seen[0].url.params
    assert seen[0].headers["X-ISN-API-Key"] == "isn-key"
    assert seen[0].headers["X-ISN-Company-Key"] == "company"


def test_isn_accepts_data_envelope():
    connector = IsnConnector(
        api_key="isn-key",
        base_url="https://isn.test",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"data": [{"id": "i1"}]})),
    )
    assert asyncio.run(connector.list_records(WATERMARK)) == [{"id": "i1"}]


def test_whatconverts_uses_date_floor_and_bearer_token():
    seen = []
    connector = WhatConvertsConnector(
        api_key="wc-key",
        base_url="https://wc.test",
        transport=_recording_transport(
            lambda request: httpx.Response(200, json={"leads": [{"lead_id": 1}], "total_pages": 1}),
            seen,
        ),
    )
    leads = asyncio.run(connector.list_records(WATERMARK))
    assert leads == [{"lead_id": 1}]
    assert seen[0].url.params["date_start"] == "2024-03-01"
    assert seen[0].headers["Authorization"] == "Bearer wc-key"
    assert len(seen) == 1


def test_non_2xx_raises_connector_error_with_status_and_body():
    connector = WhatConvertsConnector(
        api_key="wc-key",
        base_url="https://wc.test",
        transport=httpx.MockTransport(lambda request: httpx.Response(503, text="upstream down")),
    )
    with pytest.raises(ConnectorError) as excinfo:
        asyncio.run(connector.list_records(None))
    assert excinfo.value.status_code == 503
    assert excinfo.value.body == "upstream down"


def test_timeout_raises_connector_error_timeout():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    connector = IsnConnector(api_key="isn-key", base_url="https://isn.test", transport=httpx.MockTransport(handler))
    with pytest.raises(ConnectorError) as excinfo:
        asyncio.run(connector.list_records(None))
    assert str(excinfo.value) == "timeout"


def test_network_error_raises_connector_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    connector = IsnConnector(api_key="isn-key", base_url="https://isn.test", transport=httpx.MockTransport(handler))
    with pytest.raises(ConnectorError) as excinfo:
        asyncio.run(connector.list_records(None))
    assert excinfo.value.status_code is None


def test_single_record_lookups_return_none_on_404():
    not_found = httpx.MockTransport(lambda request: httpx.Response(404, json={"error": "missing"}))
    aircall = AircallConnector(api_id="a", api_token="b", base_url="https://aircall.test", transport=not_found)
    whatconverts = WhatConvertsConnector(api_key="k", base_url="https://wc.test", transport=not_found)
    isn = IsnConnector(api_key="k", base_url="https://isn.test", transport=not_found)

    assert asyncio.run(aircall.get_recording("1")) is None
    assert asyncio.run(whatconverts.get_lead("1")) is None
    assert asyncio.run(isn.get_inspection("1")) is None


def test_get_recording_returns_url():
    transport = httpx.MockTransport(
        lambda request: httpx.Response(200, json={"recording": {"url": "https://rec.test/1.mp3"}})
    )
    aircall = AircallConnector(api_id="a", api_token="b", base_url="https://aircall.test", transport=transport)
    assert asyncio.run(aircall.get_recording("1")) == "https://rec.test/1.mp3"


def _assert_page_limit(connector, seen):
    with pytest.raises(ConnectorError) as excinfo:
        asyncio.run(connector.list_records(None))
    assert "page limit 3 reached" in str(excinfo.value)
    assert len(seen) == 3


def test_aircall_fails_when_more_pages_remain_at_the_cap():
    seen = []
    endless = lambda request: httpx.Response(  # noqa: E731
        200, json={"calls": [{"id": 1}, {"id": 2}], "meta": {"next_page_link": "https://api/next"}}
    )
    connector = AircallConnector(
        api_id="abc",
        api_token="xyz",
        base_url="https://aircall.test",
        page_size=2,
        max_pages=3,
        transport=_recording_transport(endless, seen),
    )
    _assert_page_limit(connector, seen)


def test_isn_fails_when_last_page_is_full_at_the_cap():
    seen = []
    connector = IsnConnector(
        api_key="isn-key",
        base_url="https://isn.test",
        page_size=2,
        max_pages=3,
        transport=_recording_transport(
            lambda request: httpx.Response(200, json={"inspections": [{"id": "a"}, {"id": "b"}]}),
            seen,
        ),
    )
    _assert_page_limit(connector, seen)


def test_whatconverts_fails_when_total_pages_exceeds_the_cap():
    seen = []
    connector = WhatConvertsConnector(
        api_key="wc-key",
        base_url="https://wc.test",
        page_size=2,
        max_pages=3,
        transport=_recording_transport(
            lambda request: httpx.Response(200, json={"leads": [{"lead_id": 1}, {"lead_id": 2}], "total_pages": 9}),
            seen,
        ),
    )
    _assert_page_limit(connector, seen)


def test_whatconverts_last_page_at_the_cap_is_complete():
    connector = WhatConvertsConnector(
        api_key="wc-key",
        base_url="https://wc.test",
        page_size=1,
        max_pages=3,
        transport=httpx.MockTransport(
            lambda request: httpx.Response(
                200, json={"leads": [{"lead_id": request.url.params["page_number"]}], "total_pages": 3}
            )
        ),
    )
    assert [lead["lead_id"] for lead in asyncio.run(connector.list_records(None))] == ["1", "2", "3"]


def test_elevenlabs_fails_when_cursor_continues_past_the_cap():
    seen = []
    connector = ElevenLabsConnector(
        api_key="xi",
        base_url="https://eleven.test",
        max_pages=3,
        transport=_recording_transport(
            lambda request: httpx.Response(
                200, json={"conversations": [{"conversation_id": "c"}], "has_more": True, "next_cursor": "n"}
            ),
            seen,
        ),
    )
    _assert_page_limit(connector, seen)


def test_elevenlabs_follows_cursor():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        if "cursor" not in request.url.params:
            return httpx.Response(
                200,
                json={"conversations": [{"conversation_id": "c1"}], "has_more": True, "next_cursor": "n2"},
            )
        return httpx.Response(200, json={"conversations": [{"conversation_id": "c2"}], "has_more": False})

    connector = ElevenLabsConnector(
        api_key="xi",
        base_url="https://eleven.test",
        transport=_recording_transport(handler, seen),
    )
    conversations = asyncio.run(connector.list_records(None))
    assert [conv["conversation_id"] for conv in conversations] == ["c1", "c2"]
    assert seen[0].headers["xi-api-key"] == "xi"
    assert seen[1].url.params["cursor"] == "n2"


def test_webhook_verifier_is_fail_safe_without_secret():
    assert WebhookVerifier("secret").verify("secret") is True
    assert WebhookVerifier("secret").verify("wrong") is False
    assert WebhookVerifier("secret").verify(None) is False
    assert WebhookVerifier(None).verify("anything") is False
    assert WebhookVerifier(None, allow_unconfigured=True).verify(None) is True


def test_extract_items_tolerates_shapes():
    assert extract_items([{"id": 1}, "x"], "calls") == [{"id": 1}]
    assert extract_items({"calls": [{"id": 2}]}, "calls") == [{"id": 2}]
    assert extract_items({"other": []}, "calls") == []
    assert extract_items(None, "calls") == []


def test_registry_reports_missing_credentials_and_falls_back_to_synthetic():
    registry = ConnectorRegistry.from_settings(
        Settings(
            AIRCALL_API_ID="id",
            AIRCALL_API_TOKEN="token",
            WHATCONVERTS_API_KEY=None,
            ISN_API_KEY=None,
            ELEVENLABS_API_KEY=None,
        )
    )

    assert isinstance(registry.require("calls"), AircallConnector)
    with pytest.raises(ConfigurationError):
        registry.require("leads")
    assert isinstance(registry.get("inspections"), SyntheticConnector)
    assert registry.get("inspections").configured is False

    status = registry.status()
    assert status["calls"] == {"name": "Aircall", "configured": True, "available": True}
    assert status["leads"]["available"] is False
    assert status["botCalls"]["available"] is True


def test_registry_webhook_verification_is_independent_of_api_credentials():
    registry = ConnectorRegistry.from_settings(
        Settings(ISN_API_KEY=None, ISN_WEBHOOK_TOKEN="hook-secret", WEBHOOK_ALLOW_UNCONFIGURED_SECRET=False)
    )
    assert registry.verify_webhook("inspections", "hook-secret") is True
    assert registry.verify_webhook("inspections", "nope") is False
    assert registry.verify_webhook("leads", "anything") is False
