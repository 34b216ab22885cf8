"""Category listing and admin maintenance endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from marketplace_service.core.state import get_app_state
from marketplace_service.routers.validation import authenticate, parse_json_body
from marketplace_service.schemas import CategoryListResponse, CategoryResponse
from marketplace_service.services.category_manager import CategoryManager

router = APIRouter()


def _category_manager() -> CategoryManager:
    state = get_app_state()
    if state.category_manager is None:
        msg = "CategoryManager not initialized"
        raise RuntimeError(msg)
    return state.category_manager


@router.get("/categories", response_model=CategoryListResponse)
async def list_categories() -> dict[str, Any]:
    """List every category, alphabetically. No authentication."""
    return {"categories": _category_manager().list_categories()}


@router.post("/categories", status_code=201)
async def create_category(request: Request) -> JSONResponse:
    """Create a category (admins only)."""
    actor = await authenticate(request)
    data = parse_json_body(await request.body())

    result = _category_manager().create(actor, data)
    return JSONResponse(status_code=201, content=result)


@router.get("/categories/{category_id}", response_model=CategoryResponse)
async def get_category(category_id: str) -> dict[str, Any]:
    """Fetch one category."""
    return _category_manager().get_category(category_id)


@router.patch("/categories/{category_id}", response_model=CategoryResponse)
async def update_category(category_id: str, request: Request) -> dict[str, Any]:
    """Rename a category or change its icon or color (admins only)."""
    actor = await authenticate(request)
    data = parse_json_body(await request.body())

    return _category_manager().update(category_id, actor, data)


@router.delete("/categories/{category_id}", status_code=204)
async def delete_category(category_id: str, request: Request) -> Response:
    """Delete a category (admins only). Its tasks become uncategorised."""
    actor = await authenticate(request)
    _category_manager().delete(category_id, actor)
    return Response(status_code=204)
