from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from dashboard_etl.temporal.activities.ingestion_activities import run_sweep_activity

SWEEP_START_TO_CLOSE = timedelta(minutes=30)


@dataclass
class NightlySweepInput:
    source: str = "all"


@workflow.defn
class NightlySweepWorkflow:
    @workflow.run
    async def run(self, input: NightlySweepInput) -> Dict[str, Any]:
        workflow.logger.info(
            "nightly_sweep.start",
            extra={"workflow_id": workflow.info().workflow_id, "source": input.source},
        )
        result = await workflow.execute_activity(
            run_sweep_activity,
            {"source": input.source},
            start_to_close_timeout=SWEEP_START_TO_CLOSE,
            retry_policy=RetryPolicy(maximum_attempts=1),
        )
        workflow.logger.info(
            "nightly_sweep.done",
            extra={
                "workflow_id": workflow.info().workflow_id,
                "etl_run_id": result.get("etl_run_id"),
                "status": result.get("status"),
            },
        )
        return result
