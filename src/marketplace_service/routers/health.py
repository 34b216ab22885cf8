"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from marketplace_service.core.state import get_app_state
from marketplace_service.schemas import HealthResponse
from marketplace_service.services.engagement import TASK_STATUSES

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check service health and return task counts by status."""
    state = get_app_state()
    total_tasks = 0
    tasks_by_status: dict[str, int] = dict.fromkeys(TASK_STATUSES, 0)
    if state.task_state_machine is not None:
        stats = state.task_state_machine.get_stats()
        total_tasks = stats["total_tasks"]
        tasks_by_status = stats["tasks_by_status"]
    return HealthResponse(
        status="ok",
        uptime_seconds=state.uptime_seconds,
        started_at=state.started_at,
        total_tasks=total_tasks,
        tasks_by_status=tasks_by_status,
    )
