from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from dashboard_etl.connectors.base import (
    ConfigurationError,
    HttpConnector,
    WebhookVerifier,
    extract_items,
)


class WhatConvertsConnector(HttpConnector):
    """Lead-tracking API, bearer token auth."""

    source = "leads"
    name = "WhatConverts"
    webhook_header = "x-whatconverts-token"

    def __init__(
        self,
        *,
        api_key: Optional[str],
        base_url: str = "https://app.whatconverts.com/api/v1",
        timeout_seconds: float = 30.0,
        page_size: int = 100,
        max_pages: int = 20,
        webhook_verifier: Optional[WebhookVerifier] = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("Missing WhatConverts credentials: WHATCONVERTS_API_KEY required")
        super().__init__(
            base_url=base_url,
            timeout_seconds=timeout_seconds,
            page_size=page_size,
            max_pages=max_pages,
            webhook_verifier=webhook_verifier,
            transport=transport,
        )
        self._api_key = api_key

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"}

    async def list_records(self, updated_since: Optional[datetime] = None) -> List[Dict[str, Any]]:
        return await self.list_leads(updated_since)

    async def list_leads(self, updated_since: Optional[datetime] = None) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"per_page": self.page_size}
        if updated_since is not None:
            # The API filters by calendar date only; a date floor returns a superset of ">= T".
            params["date_start"] = updated_since.astimezone(timezone.utc).date().isoformat()

        leads: List[Dict[str, Any]] = []
        for page in range(1, self.max_pages + 1):
            body = await self._get_json("/leads", params={**params, "page_number": page})
            page_items = extract_items(body, "leads")
            leads.extend(page_items)
            total_pages = body.get("total_pages") if isinstance(body, dict) else None
            if isinstance(total_pages, int) and page >= total_pages:
                break
            if len(page_items) < self.page_size:
                break
        else:
            raise self._page_limit_error()
        return leads

    async def get_lead(self, lead_id: str) -> Optional[Dict[str, Any]]:
        body = await self._get_json(f"/leads/{lead_id}", allow_not_found=True)
        return body if isinstance(body, dict) else None
