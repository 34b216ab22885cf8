"""Best-effort delivery of the side effects collected by lifecycle operations."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from marketplace_service.core.exceptions import ServiceError
from marketplace_service.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from marketplace_service.clients.mail_client import MailClient
    from marketplace_service.services.marketplace_store import MarketplaceStore
    from marketplace_service.services.notification_store import NotificationStore


@dataclass(frozen=True)
class InAppNotice:
    """A notice for the recipient's inbox."""

    user_id: str
    message: str
    type: str = "info"
    resource_id: str | None = None


@dataclass(frozen=True)
class EmailNotice:
    """An email addressed to a user; the address is resolved at dispatch time."""

    to_user_id: str
    subject: str
    html: str


Effect = InAppNotice | EmailNotice


class NotificationDispatcher:
    """
    Delivers effects after the transaction that produced them has committed.

    Every effect is attempted independently. A failure is logged and
    dropped and never reaches the caller.
    """

    def __init__(
        self,
        store: MarketplaceStore,
        notification_store: NotificationStore,
        mail_client: MailClient,
    ) -> None:
        self._store = store
        self._notification_store = notification_store
        self._mail_client = mail_client
        self._logger = get_logger(__name__)

    async def dispatch(self, effects: Sequence[Effect]) -> int:
        """Deliver each effect and return how many were delivered."""
        delivered = 0
        for effect in effects:
            try:
                if isinstance(effect, InAppNotice):
                    self._notify(effect)
                    delivered += 1
                elif await self._send_email(effect):
                    delivered += 1
            except (ServiceError, sqlite3.Error, ValueError):
                self._logger.warning(
                    "Notification delivery failed",
                    extra={"effect": type(effect).__name__, "effect_data": repr(effect)},
                    exc_info=True,
                )
        return delivered

    def _notify(self, notice: InAppNotice) -> None:
        now = datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")
        self._notification_store.create(
            notice.user_id,
            notice.message,
            notice.type,
            notice.resource_id,
            now,
        )

    async def _send_email(self, notice: EmailNotice) -> bool:
        user = self._store.get_user(notice.to_user_id)
        email = user["email"] if user is not None else None
        if not email:
            self._logger.debug(
                "No email address on file, skipping",
                extra={"user_id": notice.to_user_id},
            )
            return False

        try:
            await self._mail_client.send_email(email, notice.subject, notice.html)
        except ServiceError:
            raise
        except Exception as exc:
            raise ServiceError(
                "MAIL_SERVICE_UNAVAILABLE",
                "Mail relay request failed",
                502,
                {},
            ) from exc
        return True
