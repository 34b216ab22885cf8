"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI

from marketplace_service.config import get_settings
from marketplace_service.core.exceptions import register_exception_handlers
from marketplace_service.core.lifespan import lifespan
from marketplace_service.core.middleware import RequestValidationMiddleware
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
from marketplace_service.schemas import ErrorResponse


def create_app() -> FastAPI:
    """
    Create and configure FastAPI application.

    Returns:
        Configured FastAPI instance with all routers registered.
    """
    settings = get_settings()

    app = FastAPI(
        title=f"{settings.service.name} Service",
        version=settings.service.version,
        lifespan=lifespan,
        responses={
            400: {"model": ErrorResponse},
            403: {"model": ErrorResponse},
            404: {"model": ErrorResponse},
            409: {"model": ErrorResponse},
            429: {"model": ErrorResponse},
        },
    )

    register_exception_handlers(app)

    app.include_router(health.router, tags=["Operations"])
    app.include_router(tasks.router, tags=["Tasks"])
    app.include_router(categories.router, tags=["Categories"])
    app.include_router(bids.router, tags=["Bids"])
    app.include_router(contracts.router, tags=["Contracts"])
    app.include_router(notifications.router, tags=["Notifications"])
    app.include_router(reviews.router, tags=["Reviews"])
    app.include_router(users.router, tags=["Users"])

    app.add_middleware(
        RequestValidationMiddleware,
        max_body_size=settings.request.max_body_size,
    )

    return app
