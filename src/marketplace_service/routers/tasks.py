"""Task creation, reading, edition and lifecycle endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from marketplace_service.core.exceptions import ServiceError
from marketplace_service.core.state import get_app_state
from marketplace_service.routers.validation import authenticate, parse_json_body
from marketplace_service.schemas import TaskDetailResponse, TaskListResponse
from marketplace_service.services.task_state_machine import TaskStateMachine

router = APIRouter()


def _task_state_machine() -> TaskStateMachine:
    state = get_app_state()
    if state.task_state_machine is None:
        msg = "TaskStateMachine not initialized"
        raise RuntimeError(msg)
    return state.task_state_machine


def _parse_int(raw: str | None, name: str, minimum: int) -> int | None:
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError as exc:
        raise ServiceError("INVALID_PARAMETER", f"{name} must be an integer", 400, {}) from exc
    if value < minimum:
        raise ServiceError("INVALID_PARAMETER", f"{name} must be >= {minimum}", 400, {})
    return value


# ---------------------------------------------------------------------------
# POST /tasks: create task (MUST be before GET /tasks/{task_id})
# ---------------------------------------------------------------------------


@router.post("/tasks", status_code=201)
async def create_task(request: Request) -> JSONResponse:
    """Create an open task owned by the caller."""
    actor = await authenticate(request)
    data = parse_json_body(await request.body())

    result = await _task_state_machine().create(actor, data)
    return JSONResponse(status_code=201, content=result)


# ---------------------------------------------------------------------------
# GET /tasks: list tasks
# ---------------------------------------------------------------------------


@router.get("/tasks", response_model=TaskListResponse)
async def list_tasks(request: Request) -> dict[str, Any]:
    """List tasks newest first, optionally filtered by status, category or requester."""
    params = request.query_params
    limit = _parse_int(params.get("limit"), "limit", 1)
    offset = _parse_int(params.get("offset"), "offset", 0)

    tasks = _task_state_machine().list_tasks(
        status=params.get("status"),
        category=params.get("category"),
        requester_id=params.get("requester_id"),
        limit=limit,
        offset=offset,
    )
    return {"tasks": tasks}


# ---------------------------------------------------------------------------
# /tasks/{task_id}
# ---------------------------------------------------------------------------


@router.get("/tasks/{task_id}", response_model=TaskDetailResponse)
async def get_task(task_id: str) -> dict[str, Any]:
    """Read one task with its bids and live contract."""
    return _task_state_machine().get_task(task_id)


@router.patch("/tasks/{task_id}")
async def update_task(task_id: str, request: Request) -> JSONResponse:
    """Edit a task's fields."""
    actor = await authenticate(request)
    data = parse_json_body(await request.body())

    result = await _task_state_machine().update(task_id, actor, data)
    return JSONResponse(status_code=200, content=result)


@router.delete("/tasks/{task_id}", status_code=204)
async def delete_task(task_id: str, request: Request) -> Response:
    """Delete a task and its bids."""
    actor = await authenticate(request)
    await _task_state_machine().delete(task_id, actor)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Completion-approval workflow
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/start")
async def start_task(task_id: str, request: Request) -> JSONResponse:
    """The assigned helper starts work."""
    actor = await authenticate(request)
    result = await _task_state_machine().start_task(task_id, actor)
    return JSONResponse(status_code=200, content=result)


@router.post("/tasks/{task_id}/complete-request")
async def request_completion(task_id: str, request: Request) -> JSONResponse:
    """The assigned helper asks the requester to approve the work."""
    actor = await authenticate(request)
    result = await _task_state_machine().request_completion(task_id, actor)
    return JSONResponse(status_code=200, content=result)


@router.post("/tasks/{task_id}/complete-approve")
async def approve_completion(task_id: str, request: Request) -> JSONResponse:
    """The requester approves the work."""
    actor = await authenticate(request)
    result = await _task_state_machine().approve_completion(task_id, actor)
    return JSONResponse(status_code=200, content=result)


@router.post("/tasks/{task_id}/complete-reject")
async def reject_completion(task_id: str, request: Request) -> JSONResponse:
    """The requester sends the work back to the helper."""
    actor = await authenticate(request)
    result = await _task_state_machine().reject_completion(task_id, actor)
    return JSONResponse(status_code=200, content=result)


@router.post("/tasks/{task_id}/reopen")
async def reopen_task(task_id: str, request: Request) -> JSONResponse:
    """The requester reopens a recently completed task."""
    actor = await authenticate(request)
    result = await _task_state_machine().reopen_task(task_id, actor)
    return JSONResponse(status_code=200, content=result)
