"""Unit tests for ReviewManager."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from marketplace_service.core.exceptions import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ServiceError,
)
from tests.helpers import HELPER, OTHER_HELPER, REQUESTER, STRANGER

if TYPE_CHECKING:
    from tests.unit.conftest import Engine


async def _completed_task(engine: Engine) -> str:
    task = await engine.tasks.create(REQUESTER, {"title": "Fix the tap"})
    task_id = task["task_id"]
    bid = await engine.bids.place_bid(task_id, HELPER, 30)
    await engine.bids.accept_bid(bid["bid_id"], REQUESTER)
    await engine.tasks.start_task(task_id, HELPER)
    await engine.tasks.request_completion(task_id, HELPER)
    await engine.tasks.approve_completion(task_id, REQUESTER)
    return task_id


def _review_of_helper(task_id: str, /, rating: int = 5, **overrides: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "task_id": task_id,
        "target_user_id": HELPER.user_id,
        "target_role": "helper",
        "rating": rating,
        "comment": "Quick and tidy",
    }
    data.update(overrides)
    return data


@pytest.mark.unit
class TestCreateReview:
    async def test_requester_reviews_helper(self, engine: Engine) -> None:
        task_id = await _completed_task(engine)

        review = await engine.reviews.create_review(REQUESTER, _review_of_helper(task_id))

        assert review["review_id"].startswith("rev-")
        assert review["reviewer_id"] == REQUESTER.user_id
        assert review["rating"] == 5
        profile = engine.reviews.get_profile(HELPER.user_id)
        assert profile["helper_rating"] == 5.0
        assert profile["helper_rating_count"] == 1
        inbox = engine.notification_store.list_for_user(HELPER.user_id)
        assert inbox[0]["message"] == 'You received a 5-star review for "Fix the tap".'

    async def test_helper_reviews_requester(self, engine: Engine) -> None:
        task_id = await _completed_task(engine)

        await engine.reviews.create_review(
            HELPER,
            {
                "task_id": task_id,
                "target_user_id": REQUESTER.user_id,
                "target_role": "requester",
                "rating": 4,
            },
        )

        profile = engine.reviews.get_profile(REQUESTER.user_id)
        assert profile["requester_rating"] == 4.0
        assert profile["requester_rating_count"] == 1
        assert profile["helper_rating_count"] == 0

    async def test_duplicate_review_conflicts(self, engine: Engine) -> None:
        task_id = await _completed_task(engine)
        await engine.reviews.create_review(REQUESTER, _review_of_helper(task_id))

        with pytest.raises(ServiceError) as exc_info:
            await engine.reviews.create_review(REQUESTER, _review_of_helper(task_id, rating=1))

        assert exc_info.value.error == "REVIEW_EXISTS"
        assert exc_info.value.status_code == 409
        profile = engine.reviews.get_profile(HELPER.user_id)
        assert profile["helper_rating_count"] == 1
        assert profile["helper_rating"] == 5.0

    async def test_task_must_be_completed(self, engine: Engine) -> None:
        task = await engine.tasks.create(REQUESTER, {"title": "Fix the tap"})
        bid = await engine.bids.place_bid(task["task_id"], HELPER, 30)
        await engine.bids.accept_bid(bid["bid_id"], REQUESTER)

        with pytest.raises(InvalidStateError):
            await engine.reviews.create_review(
                REQUESTER, _review_of_helper(task["task_id"])
            )

    async def test_outsider_cannot_review(self, engine: Engine) -> None:
        task_id = await _completed_task(engine)
        with pytest.raises(ForbiddenError):
            await engine.reviews.create_review(STRANGER, _review_of_helper(task_id))

    async def test_wrong_target_rejected(self, engine: Engine) -> None:
        task_id = await _completed_task(engine)

        with pytest.raises(ServiceError) as exc_info:
            await engine.reviews.create_review(
                REQUESTER,
                _review_of_helper(task_id, target_user_id=OTHER_HELPER.user_id),
            )
        assert exc_info.value.error == "INVALID_PAYLOAD"

        with pytest.raises(ServiceError):
            await engine.reviews.create_review(
                REQUESTER, _review_of_helper(task_id, target_role="requester")
            )

    async def test_missing_task(self, engine: Engine) -> None:
        with pytest.raises(NotFoundError):
            await engine.reviews.create_review(REQUESTER, _review_of_helper("t-missing"))

    @pytest.mark.parametrize(
        "overrides",
        [
            {"rating": 0},
            {"rating": 6},
            {"rating": 4.5},
            {"rating": True},
            {"target_role": "admin"},
            {"comment": 5},
            {"comment": "c" * 2001},
            {"task_id": ""},
            {"extra": "field"},
        ],
    )
    async def test_invalid_payload(self, engine: Engine, overrides: dict[str, Any]) -> None:
        with pytest.raises(ServiceError) as exc_info:
            await engine.reviews.create_review(
                REQUESTER, _review_of_helper("t-any", **overrides)
            )
        assert exc_info.value.error == "INVALID_PAYLOAD"

    async def test_missing_rating(self, engine: Engine) -> None:
        data = _review_of_helper("t-any")
        del data["rating"]
        with pytest.raises(ServiceError) as exc_info:
            await engine.reviews.create_review(REQUESTER, data)
        assert exc_info.value.error == "INVALID_PAYLOAD"


@pytest.mark.unit
class TestReadReviews:
    async def test_lists_and_role_filter(self, engine: Engine) -> None:
        task_id = await _completed_task(engine)
        await engine.reviews.create_review(REQUESTER, _review_of_helper(task_id))
        await engine.reviews.create_review(
            HELPER,
            {
                "task_id": task_id,
                "target_user_id": REQUESTER.user_id,
                "target_role": "requester",
                "rating": 3,
            },
        )

        assert len(engine.reviews.list_for_task(task_id)) == 2
        assert [r["rating"] for r in engine.reviews.list_for_user(HELPER.user_id)] == [5]
        assert engine.reviews.list_for_user(HELPER.user_id, "requester") == []

    def test_invalid_role_filter(self, engine: Engine) -> None:
        with pytest.raises(ServiceError) as exc_info:
            engine.reviews.list_for_user(HELPER.user_id, "boss")
        assert exc_info.value.error == "INVALID_PARAMETER"

    def test_profile_hides_email(self, engine: Engine) -> None:
        profile = engine.reviews.get_profile(HELPER.user_id)

        assert profile["display_name"] == "Hugo"
        assert "email" not in profile

    def test_unknown_user(self, engine: Engine) -> None:
        with pytest.raises(NotFoundError) as exc_info:
            engine.reviews.get_profile("u-ghost")
        assert exc_info.value.error == "USER_NOT_FOUND"
