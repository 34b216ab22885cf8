"""Pydantic response models for the API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict


class HealthResponse(BaseModel):
    """Response model for GET /health."""

    model_config = ConfigDict(extra="forbid")
    status: Literal["ok"]
    uptime_seconds: float
    started_at: str
    total_tasks: int
    tasks_by_status: dict[str, int]


class ErrorResponse(BaseModel):
    """Standard error response model."""

    model_config = ConfigDict(extra="forbid")
    error: str
    message: str
    details: dict[str, object]


class BidResponse(BaseModel):
    """A bid on a task."""

    model_config = ConfigDict(extra="forbid")
    bid_id: str
    task_id: str
    helper_id: str
    amount: float
    message: str | None
    status: Literal["pending", "accepted", "rejected"]
    created_at: str
    updated_at: str


class ContractResponse(BaseModel):
    """A contract between a requester's task and the accepted helper."""

    model_config = ConfigDict(extra="forbid")
    contract_id: str
    task_id: str
    helper_id: str
    agreed_amount: float
    status: Literal["pending", "started", "delivered", "approved", "cancelled"]
    created_at: str
    updated_at: str


class TaskResponse(BaseModel):
    """Task fields as stored."""

    model_config = ConfigDict(extra="forbid")
    task_id: str
    requester_id: str
    title: str
    description: str | None
    category: str | None
    budget_min: float | None
    budget_max: float | None
    latitude: float | None
    longitude: float | None
    address: str | None
    country: str | None
    zip_code: str | None
    status: Literal["open", "accepted", "in_progress", "review_pending", "completed", "cancelled"]
    completed_at: str | None
    created_at: str
    updated_at: str


class TaskDetailResponse(TaskResponse):
    """A task with its bids, lowest amount first, and its live contract."""

    bids: list[BidResponse]
    contract: ContractResponse | None


class TaskListResponse(BaseModel):
    """Response model for GET /tasks."""

    model_config = ConfigDict(extra="forbid")
    tasks: list[TaskResponse]


class BidListResponse(BaseModel):
    """Response model for GET /tasks/{task_id}/bids."""

    model_config = ConfigDict(extra="forbid")
    task_id: str
    bids: list[BidResponse]


class ContractListResponse(BaseModel):
    """Response model for GET /contracts/user/{user_id}."""

    model_config = ConfigDict(extra="forbid")
    contracts: list[ContractResponse]


class NotificationResponse(BaseModel):
    """An in-app notice."""

    model_config = ConfigDict(extra="forbid")
    notification_id: str
    user_id: str
    message: str
    type: Literal["info", "success", "warning", "error"]
    resource_id: str | None
    is_read: bool
    created_at: str


class NotificationListResponse(BaseModel):
    """Response model for GET /notifications."""

    model_config = ConfigDict(extra="forbid")
    notifications: list[NotificationResponse]
    unread_count: int


class ReviewResponse(BaseModel):
    """A rating left on a completed task."""

    model_config = ConfigDict(extra="forbid")
    review_id: str
    task_id: str
    reviewer_id: str
    target_user_id: str
    target_role: Literal["helper", "requester"]
    rating: int
    comment: str | None
    created_at: str


class ReviewListResponse(BaseModel):
    """Response model for review listings."""

    model_config = ConfigDict(extra="forbid")
    reviews: list[ReviewResponse]


class CategoryResponse(BaseModel):
    """A task category."""

    model_config = ConfigDict(extra="forbid")
    category_id: str
    name: str
    icon: str | None
    color: str | None
    created_at: str
    updated_at: str


class CategoryListResponse(BaseModel):
    """Response model for GET /categories."""

    model_config = ConfigDict(extra="forbid")
    categories: list[CategoryResponse]


class UserProfileResponse(BaseModel):
    """Public profile with rating aggregates."""

    model_config = ConfigDict(extra="forbid")
    user_id: str
    display_name: str | None
    role: Literal["user", "admin"]
    helper_rating: float
    helper_rating_count: int
    requester_rating: float
    requester_rating_count: int
    created_at: str
