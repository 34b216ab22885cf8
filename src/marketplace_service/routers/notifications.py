"""In-app notification inbox endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request, Response

from marketplace_service.core.exceptions import NotFoundError
from marketplace_service.core.state import get_app_state
from marketplace_service.routers.validation import authenticate
from marketplace_service.schemas import NotificationListResponse, NotificationResponse
from marketplace_service.services.notification_store import NotificationStore

router = APIRouter()


def _notification_store() -> NotificationStore:
    state = get_app_state()
    if state.notification_store is None:
        msg = "NotificationStore not initialized"
        raise RuntimeError(msg)
    return state.notification_store


@router.get("/notifications", response_model=NotificationListResponse)
async def list_notifications(request: Request) -> dict[str, Any]:
    """List the caller's notices, newest first."""
    actor = await authenticate(request)
    notifications = _notification_store().list_for_user(actor.user_id)
    unread = sum(1 for notification in notifications if not notification["is_read"])
    return {"notifications": notifications, "unread_count": unread}


# MUST be before POST /notifications/{notification_id}/read
@router.post("/notifications/read-all")
async def mark_all_read(request: Request) -> dict[str, Any]:
    """Mark every notice of the caller as read."""
    actor = await authenticate(request)
    updated = _notification_store().mark_all_read(actor.user_id)
    return {"updated": updated}


@router.post("/notifications/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(notification_id: str, request: Request) -> dict[str, Any]:
    """Mark one of the caller's notices as read."""
    actor = await authenticate(request)
    store = _notification_store()
    if store.mark_read(notification_id, actor.user_id) == 0:
        raise NotFoundError("NOTIFICATION_NOT_FOUND", "Notification not found")

    notification = store.get(notification_id, actor.user_id)
    if notification is None:
        raise NotFoundError("NOTIFICATION_NOT_FOUND", "Notification not found")
    return notification


@router.delete("/notifications/{notification_id}", status_code=204)
async def delete_notification(notification_id: str, request: Request) -> Response:
    """Delete one of the caller's notices."""
    actor = await authenticate(request)
    if _notification_store().delete(notification_id, actor.user_id) == 0:
        raise NotFoundError("NOTIFICATION_NOT_FOUND", "Notification not found")
    return Response(status_code=204)
