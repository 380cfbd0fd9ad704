import asyncio
import os
import sys
from pathlib import Path

import pytest
from sqlalchemy import delete

ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_dashboard_etl.db")
os.environ.setdefault("INTERNAL_API_TOKEN", "internal_token")
os.environ.setdefault("WEBHOOK_ALLOW_UNCONFIGURED_SECRET", "false")
os.environ.setdefault("ETL_RUN_STALE_AFTER_SECONDS", "7200")
# Keep a developer .env from leaking live credentials into the suite.
for _key in (
    "AIRCALL_API_ID",
    "AIRCALL_API_TOKEN",
    "AIRCALL_WEBHOOK_TOKEN",
    "WHATCONVERTS_API_KEY",
    "WHATCONVERTS_WEBHOOK_TOKEN",
    "ISN_API_KEY",
    "ISN_WEBHOOK_TOKEN",
    "ELEVENLABS_API_KEY",
    "ANTHROPIC_API_KEY",
):
    os.environ.setdefault(_key, "")

from dashboard_etl.connectors.base import Connector, WebhookVerifier  # noqa: E402
from dashboard_etl.db.base import SessionLocal, init_db  # noqa: E402
from dashboard_etl.db.models import (  # noqa: E402
    CallRecord,
    ChatMessage,
    EtlRun,
    InspectionRecord,
    LeadRecord,
    MessageRecord,
)

_TABLES = (CallRecord, MessageRecord, LeadRecord, InspectionRecord, EtlRun, ChatMessage)


class FakeConnector(Connector):
    """In-memory connector: returns canned batches, or raises, and records each watermark it saw."""

    def __init__(
        self,
        source,
        batches=None,
        *,
        error=None,
        delay=0.0,
        webhook_secret=None,
        configured=True,
    ):
        super().__init__(webhook_verifier=WebhookVerifier(webhook_secret))
        self.source = source
        self.name = f"fake-{source}"
        self.batches = batches if batches is not None else {source: []}
        self.error = error
        self.delay = delay
        self.configured = configured
        self.watermarks = []

    async def list_records(self, updated_since=None):
        batches = await self.fetch(updated_since)
        return batches.get(self.source, [])

    async def fetch(self, updated_since=None):
        self.watermarks.append(updated_since)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return {entity: list(records) for entity, records in self.batches.items()}


def _clear_tables(session) -> None:
    for model in _TABLES:
        session.execute(delete(model))
    session.commit()


@pytest.fixture()
def db_session():
    init_db()
    session = SessionLocal()
    _clear_tables(session)
    try:
        yield session
    finally:
        session.rollback()
        _clear_tables(session)
        session.close()


@pytest.fixture()
def fake_connector():
    return FakeConnector
