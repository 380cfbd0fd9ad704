from __future__ import annotations

import hmac
from typing import Optional

from fastapi import Header, HTTPException, Request, status

from dashboard_etl.config import settings
from dashboard_etl.connectors.registry import WEBHOOK_HEADERS

GENERIC_WEBHOOK_HEADER = "x-webhook-token"


def require_internal_api_token(authorization: str | None = Header(default=None)) -> None:
    """Guard operational endpoints with a shared bearer token when one is configured."""
    expected = settings.INTERNAL_API_TOKEN
    if not expected:
        return
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
        )
    token = authorization.split(" ", 1)[1].strip()
    if not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid bearer token",
        )


def extract_webhook_token(request: Request, source: str) -> Optional[str]:
    """Token from the ``token`` query parameter, the vendor header, or the generic header, in that order."""
    token = request.query_params.get("token")
    if token:
        return token
    vendor_header = WEBHOOK_HEADERS.get(source)
    if vendor_header:
        token = request.headers.get(vendor_header)
        if token:
            return token
    return request.headers.get(GENERIC_WEBHOOK_HEADER) or None
