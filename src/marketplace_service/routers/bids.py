"""Bid placement, listing, edition, acceptance, rejection and withdrawal endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from marketplace_service.core.exceptions import ServiceError
from marketplace_service.core.state import get_app_state
from marketplace_service.routers.validation import authenticate, parse_json_body
from marketplace_service.schemas import BidListResponse
from marketplace_service.services.bid_ledger import BidLedger

router = APIRouter()


def _bid_ledger() -> BidLedger:
    state = get_app_state()
    if state.bid_ledger is None:
        msg = "BidLedger not initialized"
        raise RuntimeError(msg)
    return state.bid_ledger


def _require_amount(data: dict[str, Any]) -> object:
    if "amount" not in data:
        raise ServiceError("INVALID_PAYLOAD", "Missing required field: amount", 400, {})
    return data["amount"]


# ---------------------------------------------------------------------------
# POST /tasks/{task_id}/bids: place bid
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/bids", status_code=201)
async def place_bid(task_id: str, request: Request) -> JSONResponse:
    """Place a bid on an open task."""
    actor = await authenticate(request)
    data = parse_json_body(await request.body())
    amount = _require_amount(data)

    result = await _bid_ledger().place_bid(task_id, actor, amount, data.get("message"))
    return JSONResponse(status_code=201, content=result)


# ---------------------------------------------------------------------------
# GET /tasks/{task_id}/bids: list bids, lowest amount first
# ---------------------------------------------------------------------------


@router.get("/tasks/{task_id}/bids", response_model=BidListResponse)
async def list_bids(task_id: str) -> dict[str, Any]:
    """List the bids on a task."""
    return {"task_id": task_id, "bids": _bid_ledger().get_bids_for_task(task_id)}


# ---------------------------------------------------------------------------
# /bids/{bid_id}
# ---------------------------------------------------------------------------


@router.patch("/bids/{bid_id}")
async def update_bid(bid_id: str, request: Request) -> JSONResponse:
    """Edit a bid; editing an accepted bid renegotiates it."""
    actor = await authenticate(request)
    data = parse_json_body(await request.body())
    amount = _require_amount(data)

    result = await _bid_ledger().update_bid(bid_id, actor, amount, data.get("message"))
    return JSONResponse(status_code=200, content=result)


@router.delete("/bids/{bid_id}", status_code=204)
async def withdraw_bid(bid_id: str, request: Request) -> Response:
    """Withdraw (delete) the caller's bid."""
    actor = await authenticate(request)
    await _bid_ledger().withdraw_bid(bid_id, actor)
    return Response(status_code=204)


@router.post("/bids/{bid_id}/accept")
async def accept_bid(bid_id: str, request: Request) -> JSONResponse:
    """Accept a bid and open a contract."""
    actor = await authenticate(request)
    result = await _bid_ledger().accept_bid(bid_id, actor)
    return JSONResponse(status_code=200, content=result)


@router.post("/bids/{bid_id}/reject")
async def reject_bid(bid_id: str, request: Request) -> JSONResponse:
    """Reject a pending bid."""
    actor = await authenticate(request)
    result = await _bid_ledger().reject_bid(bid_id, actor)
    return JSONResponse(status_code=200, content=result)
