"""API routers."""

from marketplace_service.routers import (
    bids,
    categories,
    contracts,
    health,
    notifications,
    reviews,
    tasks,
    users,
)

__all__ = [
    "bids",
    "categories",
    "contracts",
    "health",
    "notifications",
    "reviews",
    "tasks",
    "users",
]
