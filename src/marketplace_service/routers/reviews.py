"""Review creation and listing endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from marketplace_service.core.state import get_app_state
from marketplace_service.routers.validation import authenticate, parse_json_body
from marketplace_service.schemas import ReviewListResponse
from marketplace_service.services.review_manager import ReviewManager

router = APIRouter()


def _review_manager() -> ReviewManager:
    state = get_app_state()
    if state.review_manager is None:
        msg = "ReviewManager not initialized"
        raise RuntimeError(msg)
    return state.review_manager


@router.post("/reviews", status_code=201)
async def create_review(request: Request) -> JSONResponse:
    """Rate the other party of a completed task."""
    actor = await authenticate(request)
    data = parse_json_body(await request.body())

    result = await _review_manager().create_review(actor, data)
    return JSONResponse(status_code=201, content=result)


@router.get("/reviews/task/{task_id}", response_model=ReviewListResponse)
async def list_reviews_for_task(task_id: str) -> dict[str, Any]:
    """List the reviews left on a task, oldest first."""
    return {"reviews": _review_manager().list_for_task(task_id)}


@router.get("/reviews/user/{user_id}", response_model=ReviewListResponse)
async def list_reviews_for_user(user_id: str, request: Request) -> dict[str, Any]:
    """List the reviews about a user, newest first, optionally for one role."""
    role = request.query_params.get("role")
    return {"reviews": _review_manager().list_for_user(user_id, role)}
