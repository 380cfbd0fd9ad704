from fastapi import Request

from dashboard_etl.connectors.registry import ConnectorRegistry
from dashboard_etl.etl.orchestrator import IngestionOrchestrator
from dashboard_etl.services.aggregator import DataAggregator


def get_registry(request: Request) -> ConnectorRegistry:
    return request.app.state.registry


def get_orchestrator(request: Request) -> IngestionOrchestrator:
    return request.app.state.orchestrator


def get_aggregator(request: Request) -> DataAggregator:
    return request.app.state.aggregator
