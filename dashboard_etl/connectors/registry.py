from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import httpx

from dashboard_etl.config import Settings
from dashboard_etl.connectors.aircall import AircallConnector
from dashboard_etl.connectors.base import ConfigurationError, Connector, WebhookVerifier
from dashboard_etl.connectors.elevenlabs import ElevenLabsConnector
from dashboard_etl.connectors.isn import IsnConnector
from dashboard_etl.connectors.synthetic import SyntheticConnector
from dashboard_etl.connectors.whatconverts import WhatConvertsConnector

logger = logging.getLogger(__name__)

CONNECTOR_NAMES: Dict[str, str] = {
    "calls": AircallConnector.name,
    "leads": WhatConvertsConnector.name,
    "inspections": IsnConnector.name,
    "botCalls": ElevenLabsConnector.name,
}

WEBHOOK_HEADERS: Dict[str, str] = {
    "calls": AircallConnector.webhook_header,
    "leads": WhatConvertsConnector.webhook_header,
    "inspections": IsnConnector.webhook_header,
}

# Sources with placeholder data for the metrics views.
SYNTHETIC_SOURCES = ("calls", "botCalls", "inspections")


class ConnectorRegistry:
    """
    Holds the connectors built at startup, keyed by source.

    ``require`` is for sweeps: it raises the construction error of a connector
    that could not be built. ``get`` is for metrics: it falls back to a
    synthetic connector when live credentials are missing.
    """

    def __init__(
        self,
        connectors: Optional[Dict[str, Connector]] = None,
        *,
        errors: Optional[Dict[str, ConfigurationError]] = None,
        webhook_verifiers: Optional[Dict[str, WebhookVerifier]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._connectors: Dict[str, Connector] = dict(connectors or {})
        self._errors: Dict[str, ConfigurationError] = dict(errors or {})
        self._webhook_verifiers: Dict[str, WebhookVerifier] = dict(webhook_verifiers or {})
        self._synthetic: Dict[str, SyntheticConnector] = {
            source: SyntheticConnector(source, CONNECTOR_NAMES[source], clock=clock) for source in SYNTHETIC_SOURCES
        }

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "ConnectorRegistry":
        allow = settings.WEBHOOK_ALLOW_UNCONFIGURED_SECRET
        verifiers = {
            "calls": WebhookVerifier(settings.AIRCALL_WEBHOOK_TOKEN, allow_unconfigured=allow),
            "leads": WebhookVerifier(settings.WHATCONVERTS_WEBHOOK_TOKEN, allow_unconfigured=allow),
            "inspections": WebhookVerifier(settings.ISN_WEBHOOK_TOKEN, allow_unconfigured=allow),
        }
        shared: Dict[str, Any] = {
            "timeout_seconds": settings.CONNECTOR_TIMEOUT_SECONDS,
            "page_size": settings.CONNECTOR_PAGE_SIZE,
            "max_pages": settings.CONNECTOR_MAX_PAGES,
            "transport": transport,
        }
        factories: Dict[str, Callable[[], Connector]] = {
            "calls": lambda: AircallConnector(
                api_id=settings.AIRCALL_API_ID,
                api_token=settings.AIRCALL_API_TOKEN,
                base_url=settings.AIRCALL_BASE_URL,
                webhook_verifier=verifiers["calls"],
                **shared,
            ),
            "leads": lambda: WhatConvertsConnector(
                api_key=settings.WHATCONVERTS_API_KEY,
                base_url=settings.WHATCONVERTS_BASE_URL,
                webhook_verifier=verifiers["leads"],
                **shared,
            ),
            "inspections": lambda: IsnConnector(
                api_key=settings.ISN_API_KEY,
                company_key=settings.ISN_COMPANY_KEY,
                base_url=settings.ISN_BASE_URL,
                webhook_verifier=verifiers["inspections"],
                **shared,
            ),
            "botCalls": lambda: ElevenLabsConnector(
                api_key=settings.ELEVENLABS_API_KEY,
                base_url=settings.ELEVENLABS_BASE_URL,
                **shared,
            ),
        }

        connectors: Dict[str, Connector] = {}
        errors: Dict[str, ConfigurationError] = {}
        for source, factory in factories.items():
            try:
                connectors[source] = factory()
            except ConfigurationError as exc:
                errors[source] = exc
                logger.warning(
                    "connectors.not_configured",
                    extra={"source": source, "connector": CONNECTOR_NAMES[source], "error": str(exc)},
                )
        for source, verifier in verifiers.items():
            if not verifier.configured:
                logger.warning("connectors.webhook_secret_missing", extra={"source": source})
        return cls(connectors, errors=errors, webhook_verifiers=verifiers)

    def require(self, source: str) -> Connector:
        connector = self._connectors.get(source)
        if connector is not None:
            return connector
        error = self._errors.get(source)
        if error is not None:
            raise error
        raise ConfigurationError(f"No connector registered for source {source!r}")

    def get(self, source: str) -> Connector:
        connector = self._connectors.get(source)
        if connector is not None:
            return connector
        synthetic = self._synthetic.get(source)
        if synthetic is not None:
            return synthetic
        return self.require(source)

    def synthetic(self, source: str) -> SyntheticConnector:
        return self._synthetic[source]

    def is_configured(self, source: str) -> bool:
        return source in self._connectors

    def verify_webhook(self, source: str, candidate_token: Optional[str]) -> bool:
        verifier = self._webhook_verifiers.get(source)
        if verifier is None:
            connector = self._connectors.get(source)
            verifier = connector.webhook_verifier if connector is not None else WebhookVerifier(None)
        return verifier.verify(candidate_token)

    def status(self) -> Dict[str, Dict[str, Any]]:
        return {
            source: {
                "name": name,
                "configured": source in self._connectors,
                "available": source in self._connectors or source in self._synthetic,
            }
            for source, name in CONNECTOR_NAMES.items()
        }
