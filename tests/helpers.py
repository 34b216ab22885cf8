"""Shared test helpers for JWS authentication and a stand-in Identity service."""

from __future__ import annotations

import base64
import json
from typing import Any

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from joserfc import jws
from joserfc.errors import JoseError
from joserfc.jwk import OKPKey

from marketplace_service.core.exceptions import ServiceError
from marketplace_service.services.token_validator import Actor


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


def generate_keypair() -> Ed25519PrivateKey:
    """Generate a fresh Ed25519 private key."""
    return Ed25519PrivateKey.generate()


def _private_jwk(private_key: Ed25519PrivateKey) -> OKPKey:
    return OKPKey.import_key(
        {
            "kty": "OKP",
            "crv": "Ed25519",
            "d": _b64url(private_key.private_bytes_raw()),
            "x": _b64url(private_key.public_key().public_bytes_raw()),
        }
    )


def _public_jwk(private_key: Ed25519PrivateKey) -> OKPKey:
    return OKPKey.import_key(
        {
            "kty": "OKP",
            "crv": "Ed25519",
            "x": _b64url(private_key.public_key().public_bytes_raw()),
        }
    )


def make_jws_token(
    private_key: Ed25519PrivateKey,
    user_id: str,
    claims: dict[str, Any],
) -> str:
    """Create a real JWS compact token signed by the given key."""
    protected = {"alg": "EdDSA", "kid": user_id}
    payload = json.dumps(claims, separators=(",", ":"), sort_keys=True).encode()
    return jws.serialize_compact(protected, payload, _private_jwk(private_key), algorithms=["EdDSA"])


def make_fake_jws(claims: dict[str, Any], kid: str = "u-test") -> str:
    """Build a structurally valid but unsigned JWS (for format-only tests)."""
    header = _b64url(json.dumps({"alg": "EdDSA", "kid": kid}).encode())
    body = _b64url(json.dumps(claims).encode())
    return f"{header}.{body}.{_b64url(b'fake-signature')}"


class FakeIdentityService:
    """
    In-process replacement for the Identity service's verify-jws endpoint.

    Keys are registered per user; tokens are verified for real with joserfc.
    Mirrors IdentityClient: a bad signature raises FORBIDDEN.
    """

    def __init__(self) -> None:
        self._keys: dict[str, OKPKey] = {}

    def register(self, user_id: str, private_key: Ed25519PrivateKey) -> None:
        self._keys[user_id] = _public_jwk(private_key)

    async def verify_jws(self, token: str) -> dict[str, Any]:
        try:
            header = jws.extract_compact(token.encode()).protected
            key = self._keys.get(str(header.get("kid")))
            if key is None:
                raise ServiceError("FORBIDDEN", "Unknown signer", 403, {})
            verified = jws.deserialize_compact(token, key, algorithms=["EdDSA"])
        except (JoseError, ValueError) as exc:
            raise ServiceError("FORBIDDEN", "JWS signature verification failed", 403, {}) from exc

        return {
            "valid": True,
            "agent_id": header["kid"],
            "payload": json.loads(verified.payload),
        }


# ---------------------------------------------------------------------------
# Engine-level actors
# ---------------------------------------------------------------------------
REQUESTER = Actor("u-rita", email="rita@example.com", name="Rita")
HELPER = Actor("u-hugo", email="hugo@example.com", name="Hugo")
OTHER_HELPER = Actor("u-hana", email="hana@example.com", name="Hana")
STRANGER = Actor("u-sam", email="sam@example.com", name="Sam")
ADMIN = Actor("u-ada", role="admin", email="ada@example.com", name="Ada")
