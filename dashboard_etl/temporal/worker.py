from __future__ import annotations

import asyncio

from temporalio.worker import Worker

from dashboard_etl.config import settings
from dashboard_etl.db.base import init_db
from dashboard_etl.observability import configure_logging
from dashboard_etl.temporal.activities.ingestion_activities import run_sweep_activity
from dashboard_etl.temporal.client import get_temporal_client
from dashboard_etl.temporal.workflows.nightly_sweep import NightlySweepWorkflow


async def main() -> None:
    configure_logging()
    init_db()
    client = await get_temporal_client()
    worker = Worker(
        client,
        task_queue=settings.TEMPORAL_TASK_QUEUE,
        workflows=[NightlySweepWorkflow],
        activities=[run_sweep_activity],
    )
    await worker.run()


if __name__ == "__main__":
    asyncio.run(main())
