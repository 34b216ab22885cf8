"""Shared request helpers for marketplace routers."""

from __future__ import annotations

import json
import math
from typing import TYPE_CHECKING, Any

from marketplace_service.core.exceptions import ServiceError
from marketplace_service.core.state import get_app_state

if TYPE_CHECKING:
    from fastapi import Request

    from marketplace_service.services.token_validator import Actor


def _reject_constant(name: str) -> float:
    msg = f"Non-finite number {name} is not valid JSON"
    raise ValueError(msg)


def _finite_float(text: str) -> float:
    value = float(text)
    if not math.isfinite(value):
        return _reject_constant(text)
    return value


def parse_json_body(raw_body: bytes) -> dict[str, Any]:
    """Parse JSON body, raising ServiceError on failure. NaN and Infinity are refused."""
    try:
        data = json.loads(raw_body, parse_constant=_reject_constant, parse_float=_finite_float)
    except ValueError as exc:
        raise ServiceError(
            "INVALID_JSON",
            "Request body is not valid JSON",
            400,
            {},
        ) from exc

    if not isinstance(data, dict):
        raise ServiceError(
            "INVALID_JSON",
            "Request body must be a JSON object",
            400,
            {},
        )

    return data


def extract_bearer_token(authorization: str | None) -> str:
    """Extract the JWS from a required ``Authorization: Bearer`` header."""
    if authorization is None:
        raise ServiceError("INVALID_JWS", "Missing Authorization header", 400, {})

    if not authorization.startswith("Bearer "):
        raise ServiceError(
            "INVALID_JWS",
            "Authorization header must use Bearer scheme",
            400,
            {},
        )

    token = authorization[len("Bearer ") :]
    if not token:
        raise ServiceError("INVALID_JWS", "Bearer token must not be empty", 400, {})

    return token


async def authenticate(request: Request) -> Actor:
    """Verify the request's bearer token and return the caller."""
    token = extract_bearer_token(request.headers.get("authorization"))

    state = get_app_state()
    if state.token_validator is None:
        msg = "TokenValidator not initialized"
        raise RuntimeError(msg)

    return await state.token_validator.authenticate(token)
