"""Bid placement, edition, acceptance, rejection and withdrawal."""

from __future__ import annotations

import math
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
from marketplace_service.services import email_templates
from marketplace_service.services.contract_tracker import contract_to_response
from marketplace_service.services.engagement import commit_task_transition, plan_transition
from marketplace_service.services.notification_dispatcher import (
    Effect,
    EmailNotice,
    InAppNotice,
)
from marketplace_service.services.rate_gate import QUOTA_BIDS

if TYPE_CHECKING:
    from marketplace_service.services.contract_tracker import ContractTracker
    from marketplace_service.services.marketplace_store import MarketplaceStore
    from marketplace_service.services.notification_dispatcher import NotificationDispatcher
    from marketplace_service.services.rate_gate import RateGate
    from marketplace_service.services.token_validator import Actor


def _now() -> datetime:
    return datetime.now(UTC)


def _iso(moment: datetime) -> str:
    return moment.isoformat(timespec="microseconds").replace("+00:00", "Z")


def bid_to_response(row: dict[str, Any]) -> dict[str, Any]:
    """Convert a bid row to its response dict."""
    return {
        "bid_id": row["bid_id"],
        "task_id": row["task_id"],
        "helper_id": row["helper_id"],
        "amount": float(row["amount"]),
        "message": row["message"],
        "status": row["status"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


def _is_number(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


class BidLedger:
    """
    Owns every write to bids.

    Accepting a bid moves its task to ``accepted`` and opens a contract.
    Renegotiating or withdrawing an accepted bid cancels that contract and
    puts the task back to ``open``. At most one bid per task is accepted.
    """

    def __init__(
        self,
        store: MarketplaceStore,
        rate_gate: RateGate,
        contract_tracker: ContractTracker,
        dispatcher: NotificationDispatcher,
        max_message_length: int,
        frontend_url: str,
    ) -> None:
        self._store = store
        self._rate_gate = rate_gate
        self._contract_tracker = contract_tracker
        self._dispatcher = dispatcher
        self._max_message_length = max_message_length
        self._frontend_url = frontend_url
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _validate_offer(self, amount: object, message: object) -> tuple[float, str | None]:
        if not _is_number(amount):
            raise ServiceError("INVALID_PAYLOAD", "amount must be a number", 400, {})
        if amount < 1:  # type: ignore[operator]
            raise ServiceError("INVALID_PAYLOAD", "amount must be at least 1", 400, {})

        if message is not None:
            if not isinstance(message, str):
                raise ServiceError("INVALID_PAYLOAD", "message must be a string", 400, {})
            if len(message) > self._max_message_length:
                raise ServiceError(
                    "INVALID_PAYLOAD",
                    f"message must be at most {self._max_message_length} characters",
                    400,
                    {},
                )

        return float(amount), message  # type: ignore[arg-type]

    def _load_bid(self, bid_id: str) -> dict[str, Any]:
        bid = self._store.get_bid(bid_id)
        if bid is None:
            raise NotFoundError("BID_NOT_FOUND", "Bid not found")
        return bid

    def _load_task(self, task_id: str) -> dict[str, Any]:
        task = self._store.get_task(task_id)
        if task is None:
            raise NotFoundError("TASK_NOT_FOUND", "Task not found")
        return task

    def _release(self, task: dict[str, Any], bid: dict[str, Any], now: str) -> None:
        """Cancel the contract of an accepted bid and put its task back to open."""
        plan = plan_transition("release", task["status"])
        self._contract_tracker.apply(task["task_id"], plan, now)
        commit_task_transition(self._store, task["task_id"], plan, now)
        self._logger.info(
            "Accepted bid released",
            extra={
                "task_id": task["task_id"],
                "bid_id": bid["bid_id"],
                "from_status": plan.task_from,
            },
        )

    def _released_notice(self, task: dict[str, Any], helper_name: str, verb: str) -> InAppNotice:
        return InAppNotice(
            user_id=task["requester_id"],
            message=(
                f'{helper_name} {verb} their accepted bid on "{task["title"]}". '
                "The task is open again."
            ),
            type="warning",
            resource_id=task["task_id"],
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def place_bid(
        self,
        task_id: str,
        helper: Actor,
        amount: object,
        message: object = None,
    ) -> dict[str, Any]:
        """
        Place a bid on an open task.

        Error precedence:
        1. INVALID_PAYLOAD: amount below 1 or message too long
        2. TASK_NOT_FOUND
        3. FORBIDDEN: helper is the task's requester
        4. INVALID_STATUS: task is not open
        5. RATE_LIMITED: daily bid quota used up
        """
        offer_amount, offer_message = self._validate_offer(amount, message)
        moment = _now()
        now = _iso(moment)

        with self._store.transaction():
            task = self._load_task(task_id)
            if helper.user_id == task["requester_id"]:
                raise ForbiddenError("Requesters cannot bid on their own task")
            if task["status"] != "open":
                raise InvalidStateError(
                    f"Cannot bid on task in '{task['status']}' status, must be 'open'"
                )

            self._rate_gate.consume(helper.user_id, QUOTA_BIDS, moment)

            bid = {
                "bid_id": f"bid-{uuid.uuid4()}",
                "task_id": task_id,
                "helper_id": helper.user_id,
                "amount": offer_amount,
                "message": offer_message,
                "status": "pending",
                "created_at": now,
                "updated_at": now,
            }
            self._store.insert_bid(bid)

        self._logger.info(
            "Bid placed",
            extra={"task_id": task_id, "bid_id": bid["bid_id"], "helper_id": helper.user_id},
        )

        subject, html = email_templates.new_bid(
            task["title"], offer_amount, helper.display_name, self._frontend_url
        )
        await self._dispatcher.dispatch([EmailNotice(task["requester_id"], subject, html)])
        return bid_to_response(bid)

    async def update_bid(
        self,
        bid_id: str,
        actor: Actor,
        amount: object,
        message: object = None,
    ) -> dict[str, Any]:
        """
        Replace a bid's amount and message.

        A pending or rejected bid on an open task is edited in place and
        goes back to pending. An accepted bid is renegotiated: its contract
        is cancelled, the task reopens and the bid returns to pending with
        the new terms.
        """
        offer_amount, offer_message = self._validate_offer(amount, message)
        now = _iso(_now())
        effects: list[Effect] = []

        with self._store.transaction():
            bid = self._load_bid(bid_id)
            if bid["helper_id"] != actor.user_id:
                raise ForbiddenError("Only the bidder can edit this bid")
            task = self._load_task(bid["task_id"])

            if bid["status"] == "accepted":
                self._release(task, bid, now)
                effects.append(self._released_notice(task, actor.display_name, "renegotiated"))
            elif task["status"] != "open":
                raise InvalidStateError(
                    f"Cannot edit a '{bid['status']}' bid on task in "
                    f"'{task['status']}' status, must be 'open'"
                )

            changed = self._store.update_bid(
                bid_id,
                {
                    "amount": offer_amount,
                    "message": offer_message,
                    "status": "pending",
                    "updated_at": now,
                },
                expected_status=bid["status"],
            )
            if changed == 0:
                raise InvalidStateError(
                    "Bid status changed concurrently",
                    error="STATUS_CONFLICT",
                    details={"bid_id": bid_id},
                )

        self._logger.info(
            "Bid updated",
            extra={"bid_id": bid_id, "task_id": bid["task_id"], "previous_status": bid["status"]},
        )

        await self._dispatcher.dispatch(effects)
        updated = self._load_bid(bid_id)
        return bid_to_response(updated)

    async def accept_bid(self, bid_id: str, actor: Actor) -> dict[str, Any]:
        """
        Accept a pending bid: the task becomes ``accepted`` and a new
        ``pending`` contract is opened for the bidder. Sibling bids keep
        their status.
        """
        now = _iso(_now())

        with self._store.transaction():
            bid = self._load_bid(bid_id)
            task = self._load_task(bid["task_id"])
            if actor.user_id != task["requester_id"]:
                raise ForbiddenError("Only the requester can accept bids")
            if bid["helper_id"] == task["requester_id"]:
                raise ForbiddenError("Requesters cannot accept their own bid")
            if bid["status"] != "pending":
                raise InvalidStateError(
                    f"Cannot accept a bid in '{bid['status']}' status, must be 'pending'"
                )

            plan = plan_transition("accept", task["status"])
            commit_task_transition(self._store, task["task_id"], plan, now)
            changed = self._store.update_bid(
                bid_id,
                {"status": plan.bid_to, "updated_at": now},
                expected_status="pending",
            )
            if changed == 0:
                raise InvalidStateError(
                    "Bid status changed concurrently",
                    error="STATUS_CONFLICT",
                    details={"bid_id": bid_id},
                )
            contract = self._contract_tracker.open_contract(
                task["task_id"], bid["helper_id"], bid["amount"], now
            )

        self._logger.info(
            "Bid accepted",
            extra={
                "task_id": task["task_id"],
                "bid_id": bid_id,
                "contract_id": contract["contract_id"],
            },
        )

        subject, html = email_templates.bid_accepted(
            task["title"], float(bid["amount"]), self._frontend_url
        )
        await self._dispatcher.dispatch(
            [
                InAppNotice(
                    user_id=bid["helper_id"],
                    message=f'Your bid on "{task["title"]}" was accepted.',
                    type="success",
                    resource_id=task["task_id"],
                ),
                EmailNotice(bid["helper_id"], subject, html),
            ]
        )

        updated_bid = self._load_bid(bid_id)
        return {
            "task_id": task["task_id"],
            "task_status": plan.task_to,
            "bid": bid_to_response(updated_bid),
            "contract": contract_to_response(contract),
        }

    async def reject_bid(self, bid_id: str, actor: Actor) -> dict[str, Any]:
        """Reject a bid. An accepted bid cannot be rejected; it must be withdrawn or renegotiated."""
        now = _iso(_now())

        with self._store.transaction():
            bid = self._load_bid(bid_id)
            task = self._load_task(bid["task_id"])
            if actor.user_id != task["requester_id"]:
                raise ForbiddenError("Only the requester can reject bids")
            if bid["status"] == "accepted":
                raise ForbiddenError(
                    "An accepted bid cannot be rejected",
                    details={"bid_id": bid_id},
                )
            if bid["status"] == "rejected":
                return bid_to_response(bid)

            self._store.update_bid(
                bid_id,
                {"status": "rejected", "updated_at": now},
                expected_status="pending",
            )

        self._logger.info("Bid rejected", extra={"task_id": task["task_id"], "bid_id": bid_id})

        await self._dispatcher.dispatch(
            [
                InAppNotice(
                    user_id=bid["helper_id"],
                    message=f'Your bid on "{task["title"]}" was declined.',
                    type="info",
                    resource_id=task["task_id"],
                )
            ]
        )
        return bid_to_response(self._load_bid(bid_id))

    async def withdraw_bid(self, bid_id: str, actor: Actor) -> None:
        """
        Delete the caller's bid. Withdrawing an accepted bid first releases
        the task exactly like a renegotiation.
        """
        now = _iso(_now())
        effects: list[Effect] = []

        with self._store.transaction():
            bid = self._load_bid(bid_id)
            if bid["helper_id"] != actor.user_id:
                raise ForbiddenError("Only the bidder can withdraw this bid")
            if bid["status"] == "accepted":
                task = self._load_task(bid["task_id"])
                self._release(task, bid, now)
                effects.append(self._released_notice(task, actor.display_name, "withdrew"))
            self._store.delete_bid(bid_id)

        self._logger.info(
            "Bid withdrawn",
            extra={"bid_id": bid_id, "task_id": bid["task_id"], "status": bid["status"]},
        )
        await self._dispatcher.dispatch(effects)

    def get_bids_for_task(self, task_id: str) -> list[dict[str, Any]]:
        """List a task's bids, lowest amount first."""
        self._load_task(task_id)
        return [bid_to_response(row) for row in self._store.get_bids_for_task(task_id)]
