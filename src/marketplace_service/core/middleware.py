"""ASGI middleware for request validation."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, cast

from fastapi.responses import JSONResponse

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Receive, Scope, Send


# Endpoints that carry a JSON body. Lifecycle actions (start, reopen, ...) take none.
_JSON_BODY_ENDPOINTS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("POST", re.compile(r"^/tasks$")),
    ("PATCH", re.compile(r"^/tasks/[^/]+$")),
    ("POST", re.compile(r"^/tasks/[^/]+/bids$")),
    ("PATCH", re.compile(r"^/bids/[^/]+$")),
    ("POST", re.compile(r"^/reviews$")),
    ("POST", re.compile(r"^/categories$")),
    ("PATCH", re.compile(r"^/categories/[^/]+$")),
)


def _expects_json(method: str, path: str) -> bool:
    return any(
        candidate == method and pattern.match(path) is not None
        for candidate, pattern in _JSON_BODY_ENDPOINTS
    )


def _content_type(scope: Scope) -> str:
    raw_headers = cast("list[tuple[bytes, bytes]]", scope.get("headers", []))
    for name, value in raw_headers:
        if name.lower() == b"content-type":
            return value.decode().lower()
    return ""


def _error(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "message": message, "details": {}},
    )


class RequestValidationMiddleware:
    """
    ASGI middleware that validates Content-Type and body size.

    Runs before FastAPI routes. For endpoints that take a JSON body it
    returns 415 when the Content-Type is not application/json and 413 when
    the body exceeds ``max_body_size``. Everything else passes through.
    """

    def __init__(self, app: ASGIApp, max_body_size: int) -> None:
        self.app = app
        self.max_body_size = max_body_size

    async def _read_body(self, receive: Receive) -> bytes | None:
        """Buffer the request body. Returns None as soon as it exceeds the limit."""
        buffer = bytearray()
        more_body = True
        while more_body:
            message = cast("dict[str, Any]", await receive())
            buffer.extend(cast("bytes", message.get("body", b"")))
            if len(buffer) > self.max_body_size:
                return None
            more_body = bool(message.get("more_body", False))
        return bytes(buffer)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        method = cast("str", scope.get("method", "GET"))
        path = cast("str", scope.get("path", ""))
        if not _expects_json(method, path):
            await self.app(scope, receive, send)
            return

        if not _content_type(scope).startswith("application/json"):
            response = _error(
                415, "UNSUPPORTED_MEDIA_TYPE", "Content-Type must be application/json"
            )
            await response(scope, receive, send)
            return

        body = await self._read_body(receive)
        if body is None:
            response = _error(
                413, "PAYLOAD_TOO_LARGE", "Request body exceeds maximum allowed size"
            )
            await response(scope, receive, send)
            return

        replayed = False

        async def replay_body() -> dict[str, Any]:
            nonlocal replayed
            if replayed:
                return {"type": "http.disconnect"}
            replayed = True
            return {"type": "http.request", "body": body, "more_body": False}

        await self.app(scope, replay_body, send)
