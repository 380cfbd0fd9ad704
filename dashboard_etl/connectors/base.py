from __future__ import annotations

import asyncio
import hmac
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx


class ConnectorError(RuntimeError):
    """Upstream HTTP or network failure; carries the upstream status and body when there is one."""

    def __init__(
        self,
        message: str,
        *,
        connector: str | None = None,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.connector = connector
        self.status_code = status_code
        self.body = body


class ConfigurationError(RuntimeError):
    """Raised at connector construction when required credentials are missing."""


class WebhookAuthError(PermissionError):
    """Raised when a webhook delivery does not carry the configured token."""


class WebhookVerifier:
    """
    Constant-time comparison of a candidate webhook token against a configured secret.

    With no secret configured, every delivery is rejected unless
    ``allow_unconfigured`` is set, in which case verification is skipped.
    """

    def __init__(self, secret: Optional[str], *, allow_unconfigured: bool = False) -> None:
        self.secret = secret or None
        self.allow_unconfigured = allow_unconfigured

    @property
    def configured(self) -> bool:
        return self.secret is not None

    def verify(self, candidate: Optional[str]) -> bool:
        if self.secret is None:
            return self.allow_unconfigured
        if not candidate:
            return False
        return hmac.compare_digest(candidate.encode("utf-8"), self.secret.encode("utf-8"))


class Connector(ABC):
    """Pull capability shared by every upstream: list records changed since a watermark."""

    source: str
    name: str
    webhook_header: Optional[str] = None
    configured: bool = True

    def __init__(self, *, webhook_verifier: Optional[WebhookVerifier] = None) -> None:
        self.webhook_verifier = webhook_verifier or WebhookVerifier(None)

    @abstractmethod
    async def list_records(self, updated_since: Optional[datetime] = None) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def fetch(self, updated_since: Optional[datetime] = None) -> Dict[str, List[Dict[str, Any]]]:
        """Every entity this connector feeds, keyed by entity name."""
        return {self.source: await self.list_records(updated_since)}

    def verify_webhook(self, candidate_token: Optional[str]) -> bool:
        return self.webhook_verifier.verify(candidate_token)


class HttpConnector(Connector):
    """JSON-over-HTTP connector with bounded waits, bounded pagination and typed failures."""

    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float,
        page_size: int,
        max_pages: int,
        webhook_verifier: Optional[WebhookVerifier] = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(webhook_verifier=webhook_verifier)
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self.page_size = page_size
        self.max_pages = max(1, max_pages)
        self._transport = transport

    @abstractmethod
    def _headers(self) -> Dict[str, str]:
        raise NotImplementedError

    def _page_limit_error(self) -> ConnectorError:
        # A truncated pull must fail the source so the watermark does not skip the rest.
        return ConnectorError(
            f"{self.name}: page limit {self.max_pages} reached before end of results",
            connector=self.name,
        )

    async def _get_json(
        self,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        allow_not_found: bool = False,
    ) -> Optional[Any]:
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        headers = {"Content-Type": "application/json", **self._headers()}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await asyncio.wait_for(
                    client.get(url, params=params, headers=headers),
                    timeout=self._timeout,
                )
        except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
            raise ConnectorError("timeout", connector=self.name) from exc
        except httpx.RequestError as exc:
            raise ConnectorError(f"Network error while calling {self.name}: {exc}", connector=self.name) from exc

        if allow_not_found and response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise ConnectorError(
                f"{self.name} API call failed ({response.status_code}): {response.text}",
                connector=self.name,
                status_code=response.status_code,
                body=response.text,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ConnectorError(
                f"{self.name} API returned invalid JSON",
                connector=self.name,
                status_code=response.status_code,
                body=response.text,
            ) from exc


def extract_items(body: Any, *keys: str) -> List[Dict[str, Any]]:
    """Pull the record list out of an upstream envelope, tolerating a bare list."""
    if isinstance(body, list):
        return [item for item in body if isinstance(item, dict)]
    if not isinstance(body, dict):
        return []
    for key in keys:
        items = body.get(key)
        if isinstance(items, list):
            return [item for item in items if isinstance(item, dict)]
    return []
