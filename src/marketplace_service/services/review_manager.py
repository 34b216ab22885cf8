"""Ratings left by requesters and helpers once a task is completed."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from marketplace_service.core.exceptions import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ServiceError,
)
from marketplace_service.logging import get_logger
from marketplace_service.services.marketplace_store import DuplicateReviewError
from marketplace_service.services.notification_dispatcher import InAppNotice

if TYPE_CHECKING:
    from marketplace_service.services.marketplace_store import MarketplaceStore
    from marketplace_service.services.notification_dispatcher import NotificationDispatcher
    from marketplace_service.services.token_validator import Actor

TARGET_ROLES: frozenset[str] = frozenset({"helper", "requester"})

_REVIEW_FIELDS = frozenset({"task_id", "target_user_id", "target_role", "rating", "comment"})


def _invalid(message: str) -> ServiceError:
    return ServiceError("INVALID_PAYLOAD", message, 400, {})


def _review_to_response(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "review_id": row["review_id"],
        "task_id": row["task_id"],
        "reviewer_id": row["reviewer_id"],
        "target_user_id": row["target_user_id"],
        "target_role": row["target_role"],
        "rating": int(row["rating"]),
        "comment": row["comment"],
        "created_at": row["created_at"],
    }


class ReviewManager:
    """
    One review per (task, reviewer, target), with running-average ratings.

    The requester rates the helper and the helper rates the requester,
    and only after the task is completed.
    """

    def __init__(
        self,
        store: MarketplaceStore,
        dispatcher: NotificationDispatcher,
        max_comment_length: int,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._max_comment_length = max_comment_length
        self._logger = get_logger(__name__)

    def _validate(self, data: dict[str, Any]) -> dict[str, Any]:
        unknown = sorted(set(data) - _REVIEW_FIELDS)
        if unknown:
            raise _invalid(f"Unknown field(s): {', '.join(unknown)}")

        for name in ("task_id", "target_user_id", "target_role", "rating"):
            if name not in data:
                raise _invalid(f"Missing required field: {name}")

        for name in ("task_id", "target_user_id"):
            if not isinstance(data[name], str) or len(data[name]) == 0:
                raise _invalid(f"{name} must be a non-empty string")

        if data["target_role"] not in TARGET_ROLES:
            raise _invalid("target_role must be 'helper' or 'requester'")

        rating = data["rating"]
        if not isinstance(rating, int) or isinstance(rating, bool) or not 1 <= rating <= 5:
            raise _invalid("rating must be an integer from 1 to 5")

        comment = data.get("comment")
        if comment is not None:
            if not isinstance(comment, str):
                raise _invalid("comment must be a string")
            if len(comment) > self._max_comment_length:
                raise _invalid(
                    f"comment must be at most {self._max_comment_length} characters"
                )

        return {**data, "comment": comment}

    async def create_review(self, reviewer: Actor, data: dict[str, Any]) -> dict[str, Any]:
        """
        Rate the other party of a completed task.

        Error precedence:
        1. INVALID_PAYLOAD: malformed fields
        2. TASK_NOT_FOUND
        3. FORBIDDEN: reviewer is neither the requester nor the assigned helper
        4. INVALID_STATUS: task is not completed
        5. INVALID_PAYLOAD: wrong target for the reviewer's side
        6. REVIEW_EXISTS (409)
        """
        fields = self._validate(data)
        task_id = fields["task_id"]
        now = datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")

        with self._store.transaction():
            task = self._store.get_task(task_id)
            if task is None:
                raise NotFoundError("TASK_NOT_FOUND", "Task not found")

            accepted = self._store.get_accepted_bids(task_id)
            helper_id = accepted[0]["helper_id"] if len(accepted) > 0 else None
            if reviewer.user_id not in (task["requester_id"], helper_id):
                raise ForbiddenError("Only the requester or the assigned helper can review")

            if task["status"] != "completed":
                raise InvalidStateError(
                    f"Cannot review task in '{task['status']}' status, must be 'completed'"
                )

            if reviewer.user_id == task["requester_id"]:
                expected_role, expected_target = "helper", helper_id
            else:
                expected_role, expected_target = "requester", task["requester_id"]
            if fields["target_role"] != expected_role or fields["target_user_id"] != expected_target:
                raise _invalid(f"You can only review the {expected_role} of this task")

            review = {
                "review_id": f"rev-{uuid.uuid4()}",
                "task_id": task_id,
                "reviewer_id": reviewer.user_id,
                "target_user_id": fields["target_user_id"],
                "target_role": fields["target_role"],
                "rating": fields["rating"],
                "comment": fields["comment"],
                "created_at": now,
            }
            try:
                self._store.insert_review(review)
            except DuplicateReviewError as exc:
                raise ServiceError(
                    "REVIEW_EXISTS",
                    "You have already reviewed this user for this task",
                    409,
                    {},
                ) from exc
            self._store.apply_rating(
                review["target_user_id"], review["target_role"], review["rating"], now
            )

        self._logger.info(
            "Review created",
            extra={
                "review_id": review["review_id"],
                "task_id": task_id,
                "target_user_id": review["target_user_id"],
            },
        )

        await self._dispatcher.dispatch(
            [
                InAppNotice(
                    user_id=review["target_user_id"],
                    message=(
                        f'You received a {review["rating"]}-star review for "{task["title"]}".'
                    ),
                    type="info",
                    resource_id=task_id,
                )
            ]
        )
        return _review_to_response(review)

    def list_for_user(self, user_id: str, target_role: str | None = None) -> list[dict[str, Any]]:
        """List reviews about a user, newest first."""
        if target_role is not None and target_role not in TARGET_ROLES:
            raise ServiceError(
                "INVALID_PARAMETER",
                "role must be 'helper' or 'requester'",
                400,
                {},
            )
        return [
            _review_to_response(row)
            for row in self._store.get_reviews_for_user(user_id, target_role)
        ]

    def list_for_task(self, task_id: str) -> list[dict[str, Any]]:
        """List reviews left on a task, oldest first."""
        return [_review_to_response(row) for row in self._store.get_reviews_for_task(task_id)]

    def get_profile(self, user_id: str) -> dict[str, Any]:
        """Return a user's public profile with rating aggregates."""
        user = self._store.get_user(user_id)
        if user is None:
            raise NotFoundError("USER_NOT_FOUND", "User not found")
        return {
            "user_id": user["user_id"],
            "display_name": user["display_name"],
            "role": user["role"],
            "helper_rating": float(user["helper_rating"]),
            "helper_rating_count": int(user["helper_rating_count"]),
            "requester_rating": float(user["requester_rating"]),
            "requester_rating_count": int(user["requester_rating_count"]),
            "created_at": user["created_at"],
        }
