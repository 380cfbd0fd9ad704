from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from dashboard_etl.connectors.base import ConfigurationError, HttpConnector, extract_items


class ElevenLabsConnector(HttpConnector):
    """Voice-bot conversations; feeds the bot-call metrics only and is never swept into the store."""

    source = "botCalls"
    name = "ElevenLabs"

    def __init__(
        self,
        *,
        api_key: Optional[str],
        base_url: str = "https://api.elevenlabs.io",
        timeout_seconds: float = 30.0,
        page_size: int = 100,
        max_pages: int = 20,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("Missing ElevenLabs credentials: ELEVENLABS_API_KEY required")
        super().__init__(
            base_url=base_url,
            timeout_seconds=timeout_seconds,
            page_size=page_size,
            max_pages=max_pages,
            transport=transport,
        )
        self._api_key = api_key

    def _headers(self) -> Dict[str, str]:
        return {"xi-api-key": self._api_key}

    async def list_records(self, updated_since: Optional[datetime] = None) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"page_size": self.page_size}
        if updated_since is not None:
            params["call_start_after_unix"] = int(updated_since.timestamp())

        conversations: List[Dict[str, Any]] = []
        cursor: Optional[str] = None
        for _ in range(self.max_pages):
            page_params = {**params, "cursor": cursor} if cursor else params
            body = await self._get_json("/v1/convai/conversations", params=page_params)
            conversations.extend(extract_items(body, "conversations"))
            if not isinstance(body, dict) or not body.get("has_more") or not body.get("next_cursor"):
                break
            cursor = str(body["next_cursor"])
        else:
            raise self._page_limit_error()
        return conversations
