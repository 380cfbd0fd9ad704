from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from dashboard_etl.config import Settings
from dashboard_etl.connectors.registry import ConnectorRegistry
from dashboard_etl.services.metrics import (
    compute_bot_call_metrics,
    compute_call_metrics,
    compute_inspection_metrics,
)

logger = logging.getLogger(__name__)

METRIC_KEYS = ("calls", "botCalls", "inspections")
ALL_METRICS_KEY = "all_metrics"

# Dashboard-facing availability flags, keyed by vendor.
SOURCE_FLAGS = {"calls": "aircall", "botCalls": "elevenlabs", "inspections": "isn"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DataAggregator:
    """
    Process-local cache in front of the connectors for dashboard metrics.

    Entries live for ``ttl_seconds``. Concurrent misses for the same key share
    one in-flight fetch. A group whose connector is unconfigured, or whose
    live fetch fails, is served from synthetic sample data instead.
    """

    def __init__(
        self,
        registry: ConnectorRegistry,
        *,
        ttl_seconds: float = 30.0,
        window_days: int = 7,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.registry = registry
        self.ttl_seconds = ttl_seconds
        self.window_days = window_days
        self._clock = clock or _utcnow
        self._cache: Dict[str, Tuple[Any, datetime]] = {}
        self._inflight: Dict[str, asyncio.Task] = {}

    @classmethod
    def from_settings(cls, registry: ConnectorRegistry, settings: Settings) -> "DataAggregator":
        return cls(
            registry,
            ttl_seconds=settings.METRICS_CACHE_TTL_SECONDS,
            window_days=settings.METRICS_WINDOW_DAYS,
        )

    async def fetch_all_metrics(self) -> Dict[str, Any]:
        return await self._cached_or_fetch(ALL_METRICS_KEY, self._load_all)

    async def fetch_metric(self, key: str) -> Dict[str, Any]:
        if key not in METRIC_KEYS:
            raise KeyError(key)
        combined = self._inflight.get(ALL_METRICS_KEY)
        if combined is not None and self._get_cached(key) is None:
            # The combined load already covers this group.
            logger.debug("metrics.joined_combined_fetch", extra={"key": key})
            return (await asyncio.shield(combined))[key]
        return await self._cached_or_fetch(key, lambda: self._load_group_payload(key))

    def clear(self) -> None:
        self._cache.clear()

    def source_status(self) -> Dict[str, Dict[str, Any]]:
        return self.registry.status()

    def _get_cached(self, key: str) -> Optional[Any]:
        entry = self._cache.get(key)
        if entry is None:
            return None
        value, fetched_at = entry
        if (self._clock() - fetched_at).total_seconds() < self.ttl_seconds:
            return value
        del self._cache[key]
        return None

    def _set_cached(self, key: str, value: Any) -> None:
        self._cache[key] = (value, self._clock())

    async def _cached_or_fetch(self, key: str, loader: Callable[[], Awaitable[Any]]) -> Any:
        cached = self._get_cached(key)
        if cached is not None:
            logger.debug("metrics.cache_hit", extra={"key": key})
            return cached

        task = self._inflight.get(key)
        if task is None:
            logger.info("metrics.cache_miss", extra={"key": key})
            task = asyncio.get_running_loop().create_task(self._load_and_store(key, loader))
            self._inflight[key] = task
            task.add_done_callback(lambda _: self._inflight.pop(key, None))
        return await asyncio.shield(task)

    async def _load_and_store(self, key: str, loader: Callable[[], Awaitable[Any]]) -> Any:
        value = await loader()
        self._set_cached(key, value)
        return value

    async def _load_all(self) -> Dict[str, Any]:
        outcomes = await asyncio.gather(
            *(self._load_group(key) for key in METRIC_KEYS),
            return_exceptions=True,
        )
        metrics: Dict[str, Any] = {}
        sources: Dict[str, bool] = {}
        for key, outcome in zip(METRIC_KEYS, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("metrics.group_failed", extra={"key": key, "error": str(outcome)})
                payload, live = await self._placeholder(key), False
            else:
                payload, live = outcome
            metrics[key] = payload
            sources[SOURCE_FLAGS[key]] = live
            self._set_cached(key, payload)
        return {
            **metrics,
            "timestamp": self._clock().isoformat(),
            "sources": sources,
        }

    async def _load_group_payload(self, key: str) -> Dict[str, Any]:
        payload, _ = await self._load_group(key)
        return payload

    async def _load_group(self, key: str) -> Tuple[Dict[str, Any], bool]:
        """Return ``(payload, live)``; ``live`` is False when the payload is synthetic."""
        if not self.registry.is_configured(key):
            logger.info("metrics.using_synthetic", extra={"key": key, "reason": "not_configured"})
            return await self._placeholder(key), False

        connector = self.registry.get(key)
        try:
            records = await connector.list_records(None)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "metrics.live_fetch_failed",
                extra={"key": key, "connector": connector.name, "error": str(exc)},
            )
            return await self._placeholder(key, configured=True), False
        return self._build(key, records, configured=True, synthetic=False), True

    async def _placeholder(self, key: str, *, configured: Optional[bool] = None) -> Dict[str, Any]:
        records = await self.registry.synthetic(key).list_records(None)
        if configured is None:
            configured = self.registry.is_configured(key)
        return self._build(key, records, configured=configured, synthetic=True)

    def _build(
        self,
        key: str,
        records: List[Dict[str, Any]],
        *,
        configured: bool,
        synthetic: bool,
    ) -> Dict[str, Any]:
        today = self._clock().astimezone(timezone.utc).date()
        if key == "calls":
            payload = compute_call_metrics(records, today=today, window_days=self.window_days)
        elif key == "botCalls":
            payload = compute_bot_call_metrics(records)
        else:
            payload = compute_inspection_metrics(records, today=today, window_days=self.window_days)
        payload["configured"] = configured
        payload["synthetic"] = synthetic
        return payload
