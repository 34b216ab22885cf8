"""Async HTTP client for the Identity service."""

from __future__ import annotations

from typing import Any

import httpx

from marketplace_service.core.exceptions import ServiceError
from marketplace_service.logging import get_logger


def _unavailable(message: str) -> ServiceError:
    return ServiceError(
        error="IDENTITY_SERVICE_UNAVAILABLE",
        message=message,
        status_code=502,
        details={},
    )


class IdentityClient:
    """
    Client for bearer-token verification.

    The marketplace never holds user keys. Every bearer JWS is posted to
    the Identity service, which answers with the signer and the claims.
    """

    def __init__(
        self,
        base_url: str,
        verify_jws_path: str,
        timeout_seconds: int,
    ) -> None:
        self._base_url = base_url
        self._verify_jws_path = verify_jws_path
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def verify_jws(self, token: str) -> dict[str, Any]:
        """
        Verify a JWS compact token.

        Returns:
            dict with keys: valid (bool), agent_id (str), payload (dict)

        Raises:
            ServiceError: FORBIDDEN (403) when the Identity service says valid=false
            ServiceError: IDENTITY_SERVICE_UNAVAILABLE (502) when it cannot be
                reached or answers with anything but 200 and a JSON object
        """
        logger = get_logger(__name__)

        try:
            response = await self._client.post(self._verify_jws_path, json={"token": token})
        except httpx.HTTPError as exc:
            logger.warning(
                "Identity service request failed",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise _unavailable("Cannot connect to Identity service") from exc

        if response.status_code != 200:
            logger.warning(
                "Identity service unexpected status",
                extra={"status_code": response.status_code, "base_url": self._base_url},
            )
            raise _unavailable("Identity service returned unexpected status")

        try:
            result = response.json()
        except ValueError as exc:
            raise _unavailable("Identity service returned invalid JSON") from exc

        if not isinstance(result, dict):
            raise _unavailable("Identity service returned invalid JSON")

        if not result.get("valid", False):
            raise ServiceError(
                error="FORBIDDEN",
                message="JWS signature verification failed",
                status_code=403,
                details={},
            )

        return result

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
