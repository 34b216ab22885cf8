"""Health endpoint tests."""

from __future__ import annotations

import pytest

from tests.unit.routers.conftest import create_task

EXPECTED_STATUSES = {"open", "accepted", "in_progress", "review_pending", "completed", "cancelled"}


@pytest.mark.unit
async def test_health_returns_ok_with_correct_schema(client):
    response = await client.get("/health")
    assert response.status_code == 200

    data = response.json()
    assert data["status"] == "ok"
    assert isinstance(data["uptime_seconds"], (int, float))
    assert data["started_at"].endswith("Z")
    assert data["total_tasks"] == 0
    assert set(data["tasks_by_status"]) == EXPECTED_STATUSES
    assert all(count == 0 for count in data["tasks_by_status"].values())


@pytest.mark.unit
async def test_health_task_counts_reflect_actual_data(client, rita):
    await create_task(client, rita)
    await create_task(client, rita)

    data = (await client.get("/health")).json()
    assert data["total_tasks"] == 2
    assert data["tasks_by_status"]["open"] == 2


@pytest.mark.unit
async def test_health_needs_no_auth(client):
    response = await client.get("/health", headers={"Authorization": "garbage"})
    assert response.status_code == 200


@pytest.mark.unit
async def test_unsupported_method(client):
    response = await client.put("/health")
    assert response.status_code == 405
    assert response.json()["error"] == "METHOD_NOT_ALLOWED"
