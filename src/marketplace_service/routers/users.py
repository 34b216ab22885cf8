"""User profile endpoint."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from marketplace_service.core.state import get_app_state
from marketplace_service.schemas import UserProfileResponse

router = APIRouter()


@router.get("/users/{user_id}", response_model=UserProfileResponse)
async def get_user_profile(user_id: str) -> dict[str, Any]:
    """Public profile with helper and requester rating averages."""
    state = get_app_state()
    if state.review_manager is None:
        msg = "ReviewManager not initialized"
        raise RuntimeError(msg)

    return state.review_manager.get_profile(user_id)
