"""Bearer-token authentication: turns a verified JWS into an Actor."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from marketplace_service.core.exceptions import ServiceError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from marketplace_service.clients.identity_client import IdentityClient
    from marketplace_service.services.marketplace_store import MarketplaceStore


@dataclass(frozen=True)
class Actor:
    """The authenticated caller of one operation."""

    user_id: str
    role: str = "user"
    email: str | None = None
    name: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def display_name(self) -> str:
        return self.name or self.email or self.user_id


def _optional_claim(payload: dict[str, Any], claim: str) -> str | None:
    value = payload.get(claim)
    if value is None:
        return None
    if not isinstance(value, str) or len(value) == 0:
        raise ServiceError("INVALID_JWS", f"Token claim '{claim}' must be a string", 400, {})
    return value


class TokenValidator:
    """
    Verifies bearer JWS tokens through the Identity service.

    Tokens are signed by their own subject, so nothing in the payload can
    grant privileges. The admin role comes from ``admin_user_ids`` only.
    """

    def __init__(
        self,
        identity_client: IdentityClient,
        store: MarketplaceStore,
        admin_user_ids: Iterable[str],
    ) -> None:
        self._identity_client = identity_client
        self._store = store
        self._admin_user_ids = frozenset(admin_user_ids)

    def role_for(self, user_id: str) -> str:
        """Return ``admin`` for configured administrators, ``user`` for everyone else."""
        return "admin" if user_id in self._admin_user_ids else "user"

    async def authenticate(self, token: str) -> Actor:
        """
        Verify ``token`` and return the caller it identifies.

        The caller's profile (email, name, role) is recorded so later
        notices can reach them. A ``role`` claim in the payload is ignored.

        Raises:
            ServiceError: INVALID_JWS (400) for malformed tokens or claims,
                IDENTITY_SERVICE_UNAVAILABLE (502), or FORBIDDEN (403)
        """
        if not token or len(token.split(".")) != 3:
            raise ServiceError(
                "INVALID_JWS",
                "Token must be in JWS compact serialization format (header.payload.signature)",
                400,
                {},
            )

        try:
            result = await self._identity_client.verify_jws(token)
        except ServiceError:
            raise
        except Exception as exc:
            raise ServiceError(
                "IDENTITY_SERVICE_UNAVAILABLE",
                "Cannot connect to Identity service",
                502,
                {},
            ) from exc

        agent_id = result.get("agent_id")
        if not isinstance(agent_id, str) or len(agent_id) == 0:
            raise ServiceError("INVALID_JWS", "Token signer is missing", 400, {})

        payload = result.get("payload")
        if not isinstance(payload, dict):
            payload = {}

        actor = Actor(
            user_id=agent_id,
            role=self.role_for(agent_id),
            email=_optional_claim(payload, "email"),
            name=_optional_claim(payload, "name"),
        )

        now = datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")
        self._store.upsert_user(actor.user_id, actor.email, actor.name, actor.role, now)
        return actor
