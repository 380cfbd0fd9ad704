from __future__ import annotations

import base64
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from dashboard_etl.connectors.base import (
    ConfigurationError,
    HttpConnector,
    WebhookVerifier,
    extract_items,
)


class AircallConnector(HttpConnector):
    """Call-center API: calls and SMS messages, basic auth with an API id/token pair."""

    source = "calls"
    name = "Aircall"
    webhook_header = "x-aircall-token"

    def __init__(
        self,
        *,
        api_id: Optional[str],
        api_token: Optional[str],
        base_url: str = "https://api.aircall.io",
        timeout_seconds: float = 30.0,
        page_size: int = 100,
        max_pages: int = 20,
        webhook_verifier: Optional[WebhookVerifier] = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_id or not api_token:
            raise ConfigurationError("Missing Aircall credentials: AIRCALL_API_ID and AIRCALL_API_TOKEN required")
        super().__init__(
            base_url=base_url,
            timeout_seconds=timeout_seconds,
            page_size=page_size,
            max_pages=max_pages,
            webhook_verifier=webhook_verifier,
            transport=transport,
        )
        self._api_id = api_id
        self._api_token = api_token

    def _headers(self) -> Dict[str, str]:
        credentials = base64.b64encode(f"{self._api_id}:{self._api_token}".encode("utf-8")).decode("ascii")
        return {"Authorization": f"Basic {credentials}"}

    async def list_records(self, updated_since: Optional[datetime] = None) -> List[Dict[str, Any]]:
        return await self.list_calls(updated_since)

    async def fetch(self, updated_since: Optional[datetime] = None) -> Dict[str, List[Dict[str, Any]]]:
        return {
            "calls": await self.list_calls(updated_since),
            "messages": await self.list_messages(updated_since),
        }

    async def list_calls(self, updated_since: Optional[datetime] = None) -> List[Dict[str, Any]]:
        return await self._paginate("/v1/calls", "calls", updated_since)

    async def list_messages(self, updated_since: Optional[datetime] = None) -> List[Dict[str, Any]]:
        return await self._paginate("/v1/messages", "messages", updated_since)

    async def get_recording(self, call_id: str) -> Optional[str]:
        body = await self._get_json(f"/v1/calls/{call_id}/recording", allow_not_found=True)
        if not isinstance(body, dict):
            return None
        recording = body.get("recording")
        if isinstance(recording, dict):
            url = recording.get("url")
            return url if isinstance(url, str) and url else None
        return recording if isinstance(recording, str) and recording else None

    async def _paginate(
        self,
        path: str,
        envelope_key: str,
        updated_since: Optional[datetime],
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"per_page": self.page_size}
        if updated_since is not None:
            params["updated_since"] = updated_since.astimezone(timezone.utc).isoformat()

        items: List[Dict[str, Any]] = []
        for page in range(1, self.max_pages + 1):
            body = await self._get_json(path, params={**params, "page": page})
            page_items = extract_items(body, envelope_key)
            items.extend(page_items)
            meta = body.get("meta") if isinstance(body, dict) else None
            next_link = meta.get("next_page_link") if isinstance(meta, dict) else None
            if not next_link or len(page_items) < self.page_size:
                break
        else:
            raise self._page_limit_error()
        return items
