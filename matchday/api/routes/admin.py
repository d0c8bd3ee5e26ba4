"""Admin API endpoints.

Manual triggers for the scheduled tasks. Triggered runs go through the
same job coordinator as scheduled ones, so a manual trigger while the job
is already running is simply skipped.
"""

import structlog
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

router = APIRouter(prefix="/api/admin", tags=["admin"])
logger = structlog.get_logger(__name__)


class TaskTriggerResponse(BaseModel):
    """Response from task trigger."""
    task_name: str
    task_id: str
    status: str
    message: str


# Map of friendly names to actual Celery task names
TASK_MAP = {
    "run-results-pipeline": "matchday.tasks.pipeline.run_results_pipeline_task",
    "evaluate-resolved-cycles": "matchday.tasks.evaluation.evaluate_resolved_cycles_task",
    "sweep-coordination-state": "matchday.tasks.maintenance.sweep_coordination_state_task",
    "coordination-health": "matchday.tasks.maintenance.coordination_health_task",
}

# Extra arguments for manually triggered runs
TASK_KWARGS = {
    "run-results-pipeline": {"trigger": "manual"},
}


@router.post("/trigger-task/{task_name}", response_model=TaskTriggerResponse)
async def trigger_task(task_name: str) -> TaskTriggerResponse:
    """
    Manually trigger a background task.

    Available tasks:
    - run-results-pipeline: Statuses, results, outcomes and cycle resolution
    - evaluate-resolved-cycles: Score slips of resolved cycles
    - sweep-coordination-state: Expired locks, abandoned runs, old history
    - coordination-health: Log current coordination health issues
    """
    if task_name not in TASK_MAP:
        raise HTTPException(
            status_code=404,
            detail=f"Unknown task: {task_name}. Available: {list(TASK_MAP.keys())}"
        )

    celery_task_name = TASK_MAP[task_name]

    try:
        from matchday.tasks import celery_app

        result = celery_app.send_task(celery_task_name, kwargs=TASK_KWARGS.get(task_name, {}))

        logger.info(
            "task_triggered_manually",
            task_name=task_name,
            celery_task=celery_task_name,
            task_id=result.id,
        )

        return TaskTriggerResponse(
            task_name=task_name,
            task_id=result.id,
            status="submitted",
            message=f"Task {task_name} submitted successfully. Check Celery logs for progress."
        )

    except Exception as e:
        logger.error(
            "task_trigger_failed",
            task_name=task_name,
            error=str(e),
        )
        raise HTTPException(
            status_code=500,
            detail=f"Failed to trigger task: {str(e)}"
        )


@router.get("/tasks", response_model=dict[str, str])
async def list_tasks() -> dict[str, str]:
    """List all available tasks that can be triggered manually."""
    return TASK_MAP
