"""Router test fixtures with a stand-in Identity service and a mocked mail relay."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from marketplace_service.app import create_app
from marketplace_service.config import clear_settings_cache
from marketplace_service.core.lifespan import lifespan
from marketplace_service.core.state import get_app_state, reset_app_state
from tests.helpers import FakeIdentityService, generate_keypair, make_jws_token

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from httpx import Response


@dataclass(frozen=True)
class ApiUser:
    """A registered caller and the bearer header that authenticates it."""

    user_id: str
    headers: dict[str, str]


def register_user(
    identity: FakeIdentityService,
    user_id: str,
    name: str,
    email: str | None,
    role: str | None = None,
) -> ApiUser:
    """Give ``user_id`` a key at the Identity stand-in and sign a bearer token."""
    private_key = generate_keypair()
    identity.register(user_id, private_key)
    claims: dict[str, Any] = {"name": name}
    if email is not None:
        claims["email"] = email
    if role is not None:
        claims["role"] = role
    token = make_jws_token(private_key, user_id, claims)
    return ApiUser(user_id=user_id, headers={"Authorization": f"Bearer {token}"})


# ---------------------------------------------------------------------------
# App + client fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def identity() -> FakeIdentityService:
    """The Identity service stand-in that verifies every bearer token."""
    return FakeIdentityService()


@pytest.fixture
async def app(tmp_path: Path, identity: FakeIdentityService) -> AsyncIterator[Any]:
    """Create a test app with a temp database and mocked external services."""
    db_path = tmp_path / "test.db"
    config_content = f"""\
service:
  name: "marketplace"
  version: "0.1.0"
server:
  host: "0.0.0.0"
  port: 8010
  log_level: "info"
logging:
  level: "WARNING"
  directory: "{tmp_path / 'logs'}"
database:
  path: "{db_path}"
identity:
  base_url: "http://localhost:8001"
  verify_jws_path: "/agents/verify-jws"
  timeout_seconds: 10
mail:
  base_url: "http://localhost:8025"
  send_path: "/send"
  timeout_seconds: 10
  frontend_url: "http://localhost:3000"
request:
  max_body_size: 1048576
auth:
  admin_user_ids: ["u-ada"]
limits:
  max_tasks_per_day: 10
  max_bids_per_day: 50
  reopen_window_days: 14
  max_title_length: 120
  max_description_length: 2000
  max_message_length: 2000
  max_comment_length: 2000
"""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(config_content)

    old_config = os.environ.get("CONFIG_PATH")
    os.environ["CONFIG_PATH"] = str(config_path)

    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with lifespan(test_app):
        state = get_app_state()

        # Identity mock verifies real signatures through the stand-in
        mock_identity = AsyncMock()
        mock_identity.verify_jws = AsyncMock(side_effect=identity.verify_jws)
        mock_identity.close = AsyncMock()
        state.identity_client = mock_identity

        # Mail mock accepts every message
        mock_mail = AsyncMock()
        mock_mail.send_email = AsyncMock(return_value=None)
        mock_mail.close = AsyncMock()
        state.mail_client = mock_mail

        yield test_app

    reset_app_state()
    clear_settings_cache()
    if old_config is None:
        os.environ.pop("CONFIG_PATH", None)
    else:
        os.environ["CONFIG_PATH"] = old_config


@pytest.fixture
async def client(app: Any) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def mail(_app: Any) -> AsyncMock:
    """The mocked mail relay installed on the running app."""
    return get_app_state().mail_client  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Caller fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def rita(identity: FakeIdentityService) -> ApiUser:
    """Requester."""
    return register_user(identity, "u-rita", "Rita", "rita@example.com")


@pytest.fixture
def hugo(identity: FakeIdentityService) -> ApiUser:
    """Helper."""
    return register_user(identity, "u-hugo", "Hugo", "hugo@example.com")


@pytest.fixture
def hana(identity: FakeIdentityService) -> ApiUser:
    """Second helper."""
    return register_user(identity, "u-hana", "Hana", "hana@example.com")


@pytest.fixture
def sam(identity: FakeIdentityService) -> ApiUser:
    """Uninvolved user."""
    return register_user(identity, "u-sam", "Sam", None)


@pytest.fixture
def ada(identity: FakeIdentityService) -> ApiUser:
    """Administrator, listed under auth.admin_user_ids."""
    return register_user(identity, "u-ada", "Ada", "ada@example.com")


@pytest.fixture
def mallory(identity: FakeIdentityService) -> ApiUser:
    """Ordinary user whose self-signed token claims the admin role."""
    return register_user(identity, "u-mallory", "Mallory", None, role="admin")


# ---------------------------------------------------------------------------
# Lifecycle helper functions
# ---------------------------------------------------------------------------
async def create_task(
    client: AsyncClient,
    user: ApiUser,
    *,
    title: str = "Assemble shelf",
    **fields: Any,
) -> Response:
    """Create a task via POST /tasks and return the response."""
    return await client.post("/tasks", json={"title": title, **fields}, headers=user.headers)


async def create_category(client: AsyncClient, admin: ApiUser, name: str) -> str:
    """Create a category via POST /categories and return its id."""
    response = await client.post("/categories", json={"name": name}, headers=admin.headers)
    assert response.status_code == 201
    return str(response.json()["category_id"])


async def place_bid(
    client: AsyncClient,
    user: ApiUser,
    task_id: str,
    amount: float = 45,
    message: str | None = None,
) -> Response:
    """Place a bid via POST /tasks/{task_id}/bids and return the response."""
    body: dict[str, Any] = {"amount": amount}
    if message is not None:
        body["message"] = message
    return await client.post(f"/tasks/{task_id}/bids", json=body, headers=user.headers)


async def accepted_task(
    client: AsyncClient,
    requester: ApiUser,
    helper: ApiUser,
    amount: float = 45,
) -> tuple[str, str]:
    """Create a task, have ``helper`` bid and accept the bid. Return (task_id, bid_id)."""
    task_resp = await create_task(client, requester)
    assert task_resp.status_code == 201
    task_id = task_resp.json()["task_id"]

    bid_resp = await place_bid(client, helper, task_id, amount)
    assert bid_resp.status_code == 201
    bid_id = bid_resp.json()["bid_id"]

    accept_resp = await client.post(f"/bids/{bid_id}/accept", headers=requester.headers)
    assert accept_resp.status_code == 200
    return task_id, bid_id


async def completed_task(
    client: AsyncClient,
    requester: ApiUser,
    helper: ApiUser,
) -> tuple[str, str]:
    """Drive a task all the way to completed. Return (task_id, bid_id)."""
    task_id, bid_id = await accepted_task(client, requester, helper)
    for path, user in (
        ("start", helper),
        ("complete-request", helper),
        ("complete-approve", requester),
    ):
        resp = await client.post(f"/tasks/{task_id}/{path}", headers=user.headers)
        assert resp.status_code == 200
    return task_id, bid_id
