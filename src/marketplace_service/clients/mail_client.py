"""Async HTTP client for the mail relay."""

from __future__ import annotations

import httpx

from marketplace_service.core.exceptions import ServiceError
from marketplace_service.logging import get_logger


class MailClient:
    """
    Client for the outbound mail relay.

    Posts ``{to, subject, html}`` to the relay's send endpoint. Delivery is
    best-effort: callers decide whether a failure matters.
    """

    def __init__(
        self,
        base_url: str,
        send_path: str,
        timeout_seconds: int,
    ) -> None:
        self._base_url = base_url
        self._send_path = send_path
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def send_email(self, to: str, subject: str, html: str) -> None:
        """
        Hand one email to the relay.

        Raises:
            ServiceError: MAIL_SERVICE_UNAVAILABLE (502) on connection errors,
                timeouts or a non-2xx response
        """
        logger = get_logger(__name__)

        try:
            response = await self._client.post(
                self._send_path,
                json={"to": to, "subject": subject, "html": html},
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "Mail relay request failed",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise ServiceError(
                error="MAIL_SERVICE_UNAVAILABLE",
                message="Cannot connect to mail relay",
                status_code=502,
                details={},
            ) from exc

        if response.status_code < 200 or response.status_code >= 300:
            logger.warning(
                "Mail relay unexpected status",
                extra={"status_code": response.status_code, "base_url": self._base_url},
            )
            raise ServiceError(
                error="MAIL_SERVICE_UNAVAILABLE",
                message="Mail relay returned unexpected status",
                status_code=502,
                details={"status_code": response.status_code},
            )

        logger.info("Email handed to relay", extra={"subject": subject})

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
