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


class IsnConnector(HttpConnector):
    """Inspection-scheduling API, authenticated with a custom key header (plus optional company key)."""

    source = "inspections"
    name = "ISN"
    webhook_header = "x-isn-token"

    def __init__(
        self,
        *,
        api_key: Optional[str],
        company_key: Optional[str] = None,
        base_url: str = "https://api.inspectionsupport.net",
        timeout_seconds: float = 30.0,
        page_size: int = 100,
        max_pages: int = 20,
        webhook_verifier: Optional[WebhookVerifier] = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("Missing ISN credentials: ISN_API_KEY required")
        super().__init__(
            base_url=base_url,
            timeout_seconds=timeout_seconds,
            page_size=page_size,
            max_pages=max_pages,
            webhook_verifier=webhook_verifier,
            transport=transport,
        )
        self._api_key = api_key
        self._company_key = company_key

    def _headers(self) -> Dict[str, str]:
        headers = {"X-ISN-API-Key": self._api_key}
        if self._company_key:
            headers["X-ISN-Company-Key"] = self._company_key
        return headers

    async def list_records(self, updated_since: Optional[datetime] = None) -> List[Dict[str, Any]]:
        return await self.list_inspections(updated_since)

    async def list_inspections(self, updated_since: Optional[datetime] = None) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"limit": self.page_size}
        if updated_since is not None:
            params["updated_since"] = updated_since.astimezone(timezone.utc).isoformat()

        inspections: List[Dict[str, Any]] = []
        for page in range(self.max_pages):
            body = await self._get_json("/inspections", params={**params, "offset": page * self.page_size})
            page_items = extract_items(body, "inspections", "data")
            inspections.extend(page_items)
            if len(page_items) < self.page_size:
                break
        else:
            raise self._page_limit_error()
        return inspections

    async def get_inspection(self, inspection_id: str) -> Optional[Dict[str, Any]]:
        body = await self._get_json(f"/inspections/{inspection_id}", allow_not_found=True)
        if isinstance(body, dict) and isinstance(body.get("inspection"), dict):
            return body["inspection"]
        return body if isinstance(body, dict) else None
