from __future__ import annotations

import logging

from dashboard_etl.config import settings

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once for the API process and the Temporal worker."""
    resolved = (level or settings.LOG_LEVEL or "INFO").upper()
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=resolved, format=_LOG_FORMAT)
    root.setLevel(resolved)
    # httpx logs every request at INFO; keep connector chatter out of the sweep logs.
    logging.getLogger("httpx").setLevel(logging.WARNING)
