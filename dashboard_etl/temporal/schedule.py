from __future__ import annotations

import asyncio
import logging

from temporalio.client import (
    Client,
    Schedule,
    ScheduleActionStartWorkflow,
    ScheduleAlreadyRunningError,
    ScheduleSpec,
)

from dashboard_etl.config import settings
from dashboard_etl.observability import configure_logging
from dashboard_etl.temporal.client import get_temporal_client
from dashboard_etl.temporal.workflows.nightly_sweep import NightlySweepInput, NightlySweepWorkflow

logger = logging.getLogger(__name__)


def build_nightly_schedule() -> Schedule:
    return Schedule(
        action=ScheduleActionStartWorkflow(
            NightlySweepWorkflow.run,
            NightlySweepInput(source="all"),
            id=f"{settings.NIGHTLY_SWEEP_SCHEDULE_ID}-run",
            task_queue=settings.TEMPORAL_TASK_QUEUE,
        ),
        spec=ScheduleSpec(cron_expressions=[settings.NIGHTLY_SWEEP_CRON]),
    )


async def ensure_nightly_schedule(client: Client) -> bool:
    """Register the nightly sweep schedule; returns False when it already exists."""
    try:
        await client.create_schedule(settings.NIGHTLY_SWEEP_SCHEDULE_ID, build_nightly_schedule())
    except ScheduleAlreadyRunningError:
        logger.info("nightly_sweep.schedule_exists", extra={"schedule_id": settings.NIGHTLY_SWEEP_SCHEDULE_ID})
        return False
    logger.info(
        "nightly_sweep.schedule_created",
        extra={"schedule_id": settings.NIGHTLY_SWEEP_SCHEDULE_ID, "cron": settings.NIGHTLY_SWEEP_CRON},
    )
    return True


async def main() -> None:
    configure_logging()
    await ensure_nightly_schedule(await get_temporal_client())


if __name__ == "__main__":
    asyncio.run(main())
