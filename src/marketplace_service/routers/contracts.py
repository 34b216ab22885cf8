"""Contract listing endpoint."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from marketplace_service.core.state import get_app_state
from marketplace_service.schemas import ContractListResponse

router = APIRouter()


@router.get("/contracts/user/{user_id}", response_model=ContractListResponse)
async def list_contracts_for_user(user_id: str) -> dict[str, Any]:
    """List a helper's contracts, newest first."""
    state = get_app_state()
    if state.contract_tracker is None:
        msg = "ContractTracker not initialized"
        raise RuntimeError(msg)

    return {"contracts": state.contract_tracker.list_for_user(user_id)}
