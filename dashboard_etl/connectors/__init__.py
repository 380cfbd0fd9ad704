from dashboard_etl.connectors.aircall import AircallConnector
from dashboard_etl.connectors.base import (
    ConfigurationError,
    Connector,
    ConnectorError,
    HttpConnector,
    WebhookAuthError,
    WebhookVerifier,
)
from dashboard_etl.connectors.elevenlabs import ElevenLabsConnector
from dashboard_etl.connectors.isn import IsnConnector
from dashboard_etl.connectors.registry import ConnectorRegistry
from dashboard_etl.connectors.synthetic import SyntheticConnector
from dashboard_etl.connectors.whatconverts import WhatConvertsConnector

__all__ = [
    "AircallConnector",
    "ConfigurationError",
    "Connector",
    "ConnectorError",
    "ConnectorRegistry",
    "ElevenLabsConnector",
    "HttpConnector",
    "IsnConnector",
    "SyntheticConnector",
    "WebhookAuthError",
    "WebhookVerifier",
    "WhatConvertsConnector",
]
