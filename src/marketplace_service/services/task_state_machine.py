"""Task lifecycle management: creation, edition and the completion-approval workflow."""

from __future__ import annotations

import math
import uuid
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from marketplace_service.core.exceptions import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ServiceError,
)
from marketplace_service.logging import get_logger
from marketplace_service.services import email_templates
from marketplace_service.services.bid_ledger import bid_to_response
from marketplace_service.services.contract_tracker import contract_to_response
from marketplace_service.services.engagement import (
    TASK_STATUSES,
    commit_task_transition,
    plan_transition,
)
from marketplace_service.services.notification_dispatcher import (
    Effect,
    EmailNotice,
    InAppNotice,
)
from marketplace_service.services.rate_gate import QUOTA_TASKS

if TYPE_CHECKING:
    from marketplace_service.services.contract_tracker import ContractTracker
    from marketplace_service.services.engagement import TransitionPlan
    from marketplace_service.services.marketplace_store import MarketplaceStore
    from marketplace_service.services.notification_dispatcher import NotificationDispatcher
    from marketplace_service.services.rate_gate import RateGate
    from marketplace_service.services.token_validator import Actor

_TEXT_FIELDS = ("category", "address", "country", "zip_code")
_NUMBER_FIELDS = ("budget_min", "budget_max", "latitude", "longitude")
_EDITABLE_FIELDS = frozenset({"title", "description", *_TEXT_FIELDS, *_NUMBER_FIELDS})

# Edits to these fields warn the assigned helper.
_TERMS_FIELDS = frozenset({"title", "description", "budget_min", "budget_max"})


def _now() -> datetime:
    return datetime.now(UTC)


def _iso(moment: datetime) -> str:
    return moment.isoformat(timespec="microseconds").replace("+00:00", "Z")


def _is_number(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


def _invalid(message: str) -> ServiceError:
    return ServiceError("INVALID_PAYLOAD", message, 400, {})


def task_to_response(row: dict[str, Any]) -> dict[str, Any]:
    """Convert a task row to its response dict."""
    return {
        "task_id": row["task_id"],
        "requester_id": row["requester_id"],
        "title": row["title"],
        "description": row["description"],
        "category": row["category"],
        "budget_min": row["budget_min"],
        "budget_max": row["budget_max"],
        "latitude": row["latitude"],
        "longitude": row["longitude"],
        "address": row["address"],
        "country": row["country"],
        "zip_code": row["zip_code"],
        "status": row["status"],
        "completed_at": row["completed_at"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


class TaskStateMachine:
    """
    Owns task status.

    Lifecycle transitions are resolved through the engagement table and
    applied to the task, its accepted bid and its contract inside one store
    transaction. Notices are collected while the transaction runs and sent
    only after it commits.
    """

    def __init__(
        self,
        store: MarketplaceStore,
        rate_gate: RateGate,
        contract_tracker: ContractTracker,
        dispatcher: NotificationDispatcher,
        max_title_length: int,
        max_description_length: int,
        reopen_window_days: int,
        frontend_url: str,
    ) -> None:
        self._store = store
        self._rate_gate = rate_gate
        self._contract_tracker = contract_tracker
        self._dispatcher = dispatcher
        self._max_title_length = max_title_length
        self._max_description_length = max_description_length
        self._reopen_window = timedelta(days=reopen_window_days)
        self._frontend_url = frontend_url
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _validate_fields(self, data: dict[str, Any], *, partial: bool) -> dict[str, Any]:
        """Check task fields and return the subset to write."""
        unknown = sorted(set(data) - _EDITABLE_FIELDS)
        if unknown:
            raise _invalid(f"Unknown field(s): {', '.join(unknown)}")

        if not partial and "title" not in data:
            raise _invalid("Missing required field: title")
        if partial and len(data) == 0:
            raise _invalid("At least one field must be provided")

        fields: dict[str, Any] = {}

        if "title" in data:
            title = data["title"]
            if not isinstance(title, str):
                raise _invalid("title must be a string")
            title = title.strip()
            if not 1 <= len(title) <= self._max_title_length:
                raise _invalid(f"title must be 1 to {self._max_title_length} characters")
            fields["title"] = title

        if "description" in data:
            description = data["description"]
            if description is not None and not isinstance(description, str):
                raise _invalid("description must be a string")
            if description is not None and len(description) > self._max_description_length:
                raise _invalid(
                    f"description must be at most {self._max_description_length} characters"
                )
            fields["description"] = description

        for name in _TEXT_FIELDS:
            if name in data:
                value = data[name]
                if value is not None and not isinstance(value, str):
                    raise _invalid(f"{name} must be a string")
                fields[name] = value

        for name in _NUMBER_FIELDS:
            if name in data:
                value = data[name]
                if value is not None and not _is_number(value):
                    raise _invalid(f"{name} must be a number")
                fields[name] = float(value) if value is not None else None

        for name in ("budget_min", "budget_max"):
            if fields.get(name) is not None and fields[name] < 0:
                raise _invalid(f"{name} must not be negative")
        if fields.get("latitude") is not None and not -90 <= fields["latitude"] <= 90:
            raise _invalid("latitude must be between -90 and 90")
        if fields.get("longitude") is not None and not -180 <= fields["longitude"] <= 180:
            raise _invalid("longitude must be between -180 and 180")

        return fields

    @staticmethod
    def _check_budget(budget_min: float | None, budget_max: float | None) -> None:
        if budget_min is not None and budget_max is not None and budget_min > budget_max:
            raise _invalid("budget_min must not exceed budget_max")

    def _check_category(self, fields: dict[str, Any]) -> None:
        category_id = fields.get("category")
        if category_id is not None and self._store.get_category(category_id) is None:
            raise ServiceError(
                "INVALID_PAYLOAD",
                "category must be the id of an existing category",
                400,
                {"category": category_id},
            )

    def _load_task(self, task_id: str) -> dict[str, Any]:
        task = self._store.get_task(task_id)
        if task is None:
            raise NotFoundError("TASK_NOT_FOUND", "Task not found")
        return task

    def _assigned_helper(self, task_id: str) -> dict[str, Any] | None:
        accepted = self._store.get_accepted_bids(task_id)
        if len(accepted) == 0:
            return None
        return accepted[0]

    def _require_requester(self, task: dict[str, Any], actor: Actor, action: str) -> None:
        if actor.user_id != task["requester_id"]:
            raise ForbiddenError(f"Only the requester can {action}")

    def _require_helper(
        self,
        task: dict[str, Any],
        actor: Actor,
        action: str,
    ) -> dict[str, Any] | None:
        bid = self._assigned_helper(task["task_id"])
        if bid is not None and bid["helper_id"] != actor.user_id:
            raise ForbiddenError(f"Only the assigned helper can {action}")
        if bid is None and actor.user_id == task["requester_id"]:
            raise ForbiddenError(f"Only the assigned helper can {action}")
        return bid

    def _advance(
        self,
        task: dict[str, Any],
        plan: TransitionPlan,
        now: str,
        extra: dict[str, Any] | None = None,
    ) -> None:
        """Apply ``plan`` to the contract and then the task. Runs inside a transaction."""
        self._contract_tracker.apply(task["task_id"], plan, now)
        commit_task_transition(self._store, task["task_id"], plan, now, extra)
        self._logger.info(
            "Task transitioned",
            extra={
                "task_id": task["task_id"],
                "transition": plan.name,
                "from_status": plan.task_from,
                "to_status": plan.task_to,
            },
        )

    def _reload(self, task_id: str) -> dict[str, Any]:
        updated = self._store.get_task(task_id)
        if updated is None:
            msg = f"Task {task_id} not found after update"
            raise RuntimeError(msg)
        return task_to_response(updated)

    # ------------------------------------------------------------------
    # Creation, reads and edits
    # ------------------------------------------------------------------

    async def create(self, requester: Actor, data: dict[str, Any]) -> dict[str, Any]:
        """
        Create an open task owned by ``requester``.

        Raises:
            ServiceError: INVALID_PAYLOAD for bad fields or an unknown category
            QuotaExceededError: when the requester's daily task quota is spent
        """
        fields = self._validate_fields(data, partial=False)
        self._check_budget(fields.get("budget_min"), fields.get("budget_max"))

        moment = _now()
        now = _iso(moment)
        task = {
            "task_id": f"t-{uuid.uuid4()}",
            "requester_id": requester.user_id,
            "title": fields["title"],
            "description": fields.get("description"),
            "category": fields.get("category"),
            "budget_min": fields.get("budget_min"),
            "budget_max": fields.get("budget_max"),
            "latitude": fields.get("latitude"),
            "longitude": fields.get("longitude"),
            "address": fields.get("address"),
            "country": fields.get("country"),
            "zip_code": fields.get("zip_code"),
            "status": "open",
            "completed_at": None,
            "created_at": now,
            "updated_at": now,
        }

        with self._store.transaction():
            self._check_category(fields)
            self._rate_gate.consume(requester.user_id, QUOTA_TASKS, moment)
            self._store.insert_task(task)

        self._logger.info(
            "Task created",
            extra={"task_id": task["task_id"], "requester_id": requester.user_id},
        )
        return task_to_response(task)

    def get_task(self, task_id: str) -> dict[str, Any]:
        """Return a task with its bids (lowest amount first) and its live contract."""
        task = self._load_task(task_id)
        response = task_to_response(task)
        response["bids"] = [bid_to_response(bid) for bid in self._store.get_bids_for_task(task_id)]
        contract = self._contract_tracker.live_contract(task_id)
        response["contract"] = contract_to_response(contract) if contract is not None else None
        return response

    def list_tasks(
        self,
        status: str | None = None,
        category: str | None = None,
        requester_id: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        """List tasks newest first."""
        if status is not None and status not in TASK_STATUSES:
            raise ServiceError(
                "INVALID_PARAMETER",
                f"Invalid status filter: {status}",
                400,
                {"allowed": list(TASK_STATUSES)},
            )
        rows = self._store.list_tasks(status, category, requester_id, limit, offset)
        return [task_to_response(row) for row in rows]

    async def update(self, task_id: str, actor: Actor, patch: dict[str, Any]) -> dict[str, Any]:
        """
        Edit an open task that has no live bids.

        Admins may edit in any status. If a helper is already assigned and
        the edit touches the title, description or budget, the helper is warned.
        """
        fields = self._validate_fields(patch, partial=True)
        now = _iso(_now())
        effects: list[Effect] = []

        with self._store.transaction():
            task = self._load_task(task_id)
            if actor.user_id != task["requester_id"] and not actor.is_admin:
                raise ForbiddenError("Only the requester can edit this task")
            if not actor.is_admin:
                if task["status"] != "open":
                    raise InvalidStateError(
                        f"Cannot edit task in '{task['status']}' status, must be 'open'"
                    )
                if self._store.count_open_bids(task_id) > 0:
                    raise InvalidStateError(
                        "Cannot edit a task that already has bids",
                        error="TASK_HAS_BIDS",
                    )

            self._check_category(fields)
            self._check_budget(
                fields.get("budget_min", task["budget_min"]),
                fields.get("budget_max", task["budget_max"]),
            )
            self._store.update_task(
                task_id,
                {**fields, "updated_at": now},
                expected_status=task["status"],
            )

            helper_bid = self._assigned_helper(task_id)
            if helper_bid is not None and _TERMS_FIELDS.intersection(fields):
                effects.append(
                    InAppNotice(
                        user_id=helper_bid["helper_id"],
                        message=(
                            f'The task "{task["title"]}" you are assigned to was edited. '
                            "Please review the new details."
                        ),
                        type="warning",
                        resource_id=task_id,
                    )
                )

        self._logger.info(
            "Task updated",
            extra={"task_id": task_id, "fields": sorted(fields), "by_admin": actor.is_admin},
        )
        await self._dispatcher.dispatch(effects)
        return self._reload(task_id)

    async def delete(self, task_id: str, actor: Actor) -> None:
        """Delete a task and its bids. Deleting a missing task is a no-op."""
        now = _iso(_now())
        effects: list[Effect] = []

        with self._store.transaction():
            task = self._store.get_task(task_id)
            if task is None:
                return
            if actor.user_id != task["requester_id"] and not actor.is_admin:
                raise ForbiddenError("Only the requester can delete this task")

            contract = self._contract_tracker.void(task_id, now)
            if contract is not None:
                effects.append(
                    InAppNotice(
                        user_id=contract["helper_id"],
                        message=f'The task "{task["title"]}" you were assigned to was deleted.',
                        type="warning",
                        resource_id=task_id,
                    )
                )
            self._store.delete_task(task_id)

        self._logger.info(
            "Task deleted",
            extra={"task_id": task_id, "by": actor.user_id, "by_admin": actor.is_admin},
        )
        await self._dispatcher.dispatch(effects)

    # ------------------------------------------------------------------
    # Completion-approval workflow
    # ------------------------------------------------------------------

    async def start_task(self, task_id: str, actor: Actor) -> dict[str, Any]:
        """accepted -> in_progress, by the assigned helper."""
        now = _iso(_now())

        with self._store.transaction():
            task = self._load_task(task_id)
            self._require_helper(task, actor, "start this task")
            plan = plan_transition("start", task["status"])
            self._advance(task, plan, now)

        subject, html = email_templates.task_started(
            task["title"], actor.display_name, self._frontend_url
        )
        await self._dispatcher.dispatch(
            [
                InAppNotice(
                    user_id=task["requester_id"],
                    message=f'{actor.display_name} started working on "{task["title"]}".',
                    type="info",
                    resource_id=task_id,
                ),
                EmailNotice(task["requester_id"], subject, html),
            ]
        )
        return self._reload(task_id)

    async def request_completion(self, task_id: str, actor: Actor) -> dict[str, Any]:
        """in_progress -> review_pending, by the assigned helper."""
        now = _iso(_now())

        with self._store.transaction():
            task = self._load_task(task_id)
            self._require_helper(task, actor, "request completion")
            plan = plan_transition("request_completion", task["status"])
            self._advance(task, plan, now)

        subject, html = email_templates.completion_requested(
            task["title"], actor.display_name, self._frontend_url
        )
        await self._dispatcher.dispatch(
            [
                InAppNotice(
                    user_id=task["requester_id"],
                    message=(
                        f'{actor.display_name} marked "{task["title"]}" as complete. '
                        "Please review the work."
                    ),
                    type="info",
                    resource_id=task_id,
                ),
                EmailNotice(task["requester_id"], subject, html),
            ]
        )
        return self._reload(task_id)

    async def approve_completion(self, task_id: str, actor: Actor) -> dict[str, Any]:
        """review_pending -> completed, by the requester. Starts the reopen window."""
        now = _iso(_now())

        with self._store.transaction():
            task = self._load_task(task_id)
            self._require_requester(task, actor, "approve completion")
            plan = plan_transition("approve_completion", task["status"])
            self._advance(task, plan, now, {"completed_at": now})
            helper_bid = self._assigned_helper(task_id)

        effects: list[Effect] = []
        if helper_bid is not None:
            subject, html = email_templates.completion_approved(task["title"], self._frontend_url)
            effects = [
                InAppNotice(
                    user_id=helper_bid["helper_id"],
                    message=f'Your work on "{task["title"]}" was approved.',
                    type="success",
                    resource_id=task_id,
                ),
                EmailNotice(helper_bid["helper_id"], subject, html),
            ]
        await self._dispatcher.dispatch(effects)
        return self._reload(task_id)

    async def reject_completion(self, task_id: str, actor: Actor) -> dict[str, Any]:
        """review_pending -> in_progress, by the requester."""
        now = _iso(_now())

        with self._store.transaction():
            task = self._load_task(task_id)
            self._require_requester(task, actor, "reject completion")
            plan = plan_transition("reject_completion", task["status"])
            self._advance(task, plan, now)
            helper_bid = self._assigned_helper(task_id)

        effects: list[Effect] = []
        if helper_bid is not None:
            subject, html = email_templates.completion_rejected(task["title"], self._frontend_url)
            effects = [
                InAppNotice(
                    user_id=helper_bid["helper_id"],
                    message=f'Your completion request for "{task["title"]}" was rejected.',
                    type="warning",
                    resource_id=task_id,
                ),
                EmailNotice(helper_bid["helper_id"], subject, html),
            ]
        await self._dispatcher.dispatch(effects)
        return self._reload(task_id)

    async def reopen_task(self, task_id: str, actor: Actor) -> dict[str, Any]:
        """
        completed -> open, by the requester, within the reopen window after
        ``completed_at``. The accepted bid is rejected and the contract cancelled.

        Raises:
            InvalidStateError: INVALID_STATUS if the task is not completed,
                REOPEN_WINDOW_EXPIRED once the window has passed
        """
        moment = _now()
        now = _iso(moment)

        with self._store.transaction():
            task = self._load_task(task_id)
            self._require_requester(task, actor, "reopen this task")
            plan = plan_transition("reopen", task["status"])

            completed_at = task["completed_at"]
            if completed_at is not None:
                elapsed = moment - datetime.fromisoformat(completed_at)
                if elapsed > self._reopen_window:
                    raise InvalidStateError(
                        f"Tasks can only be reopened within {self._reopen_window.days} days "
                        "of completion",
                        error="REOPEN_WINDOW_EXPIRED",
                        details={"completed_at": completed_at},
                    )

            helper_bid = self._assigned_helper(task_id)
            if helper_bid is not None:
                self._store.update_bid(
                    helper_bid["bid_id"],
                    {"status": plan.bid_to, "updated_at": now},
                    expected_status="accepted",
                )
            self._advance(task, plan, now, {"completed_at": None})

        effects: list[Effect] = []
        if helper_bid is not None:
            subject, html = email_templates.task_reopened(task["title"], self._frontend_url)
            effects = [
                InAppNotice(
                    user_id=helper_bid["helper_id"],
                    message=(
                        f'The task "{task["title"]}" was reopened by the requester. '
                        "The previous contract has been cancelled."
                    ),
                    type="info",
                    resource_id=task_id,
                ),
                EmailNotice(helper_bid["helper_id"], subject, html),
            ]
        await self._dispatcher.dispatch(effects)
        return self._reload(task_id)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        """Return the total task count and a count for every status."""
        counts = self._store.count_tasks_by_status()
        return {
            "total_tasks": self._store.count_tasks(),
            "tasks_by_status": {status: counts.get(status, 0) for status in TASK_STATUSES},
        }
