"""
Engagement state: the single transition table for Task, Bid and Contract.

A task's status determines what its accepted bid and live contract must
look like. Every lifecycle operation asks ``plan_transition`` for the
writes it has to make, so the three status fields can only move together.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from marketplace_service.core.exceptions import InvalidStateError

if TYPE_CHECKING:
    from marketplace_service.services.marketplace_store import MarketplaceStore

TASK_STATUSES: tuple[str, ...] = (
    "open",
    "accepted",
    "in_progress",
    "review_pending",
    "completed",
    "cancelled",
)
BID_STATUSES: tuple[str, ...] = ("pending", "accepted", "rejected")
CONTRACT_STATUSES: tuple[str, ...] = ("pending", "started", "delivered", "approved", "cancelled")

# Status the live contract must carry for each task status (None: no live contract).
CONTRACT_STATUS_FOR_TASK: dict[str, str | None] = {
    "open": None,
    "accepted": "pending",
    "in_progress": "started",
    "review_pending": "delivered",
    "completed": "approved",
    "cancelled": None,
}

# Task statuses in which an accepted bid is assigned.
ENGAGED_STATUSES: frozenset[str] = frozenset(
    status for status, contract in CONTRACT_STATUS_FOR_TASK.items() if contract is not None
)

# Task statuses from which renegotiation or withdrawal may release the helper.
RELEASABLE_STATUSES: frozenset[str] = frozenset({"accepted", "in_progress", "review_pending"})


@dataclass(frozen=True)
class Transition:
    """One row of the engagement table."""

    name: str
    sources: frozenset[str]
    target: str
    bid_status: str | None = None


TRANSITIONS: dict[str, Transition] = {
    "accept": Transition("accept", frozenset({"open"}), "accepted", bid_status="accepted"),
    "start": Transition("start", frozenset({"accepted"}), "in_progress"),
    "request_completion": Transition(
        "request_completion", frozenset({"in_progress"}), "review_pending"
    ),
    "approve_completion": Transition(
        "approve_completion", frozenset({"review_pending"}), "completed"
    ),
    "reject_completion": Transition(
        "reject_completion", frozenset({"review_pending"}), "in_progress"
    ),
    "reopen": Transition("reopen", frozenset({"completed"}), "open", bid_status="rejected"),
    "release": Transition("release", RELEASABLE_STATUSES, "open", bid_status="pending"),
}


@dataclass(frozen=True)
class TransitionPlan:
    """The writes one transition makes, resolved against the task's current status."""

    name: str
    task_from: str
    task_to: str
    contract_from: str | None
    contract_to: str | None
    bid_to: str | None

    @property
    def creates_contract(self) -> bool:
        return self.contract_from is None and self.contract_to is not None

    @property
    def cancels_contract(self) -> bool:
        return self.contract_from is not None and self.contract_to is None


def plan_transition(name: str, task_status: str) -> TransitionPlan:
    """
    Resolve a named transition for a task currently in ``task_status``.

    Raises:
        InvalidStateError: If the transition is not allowed from ``task_status``
        KeyError: If ``name`` is not a known transition
    """
    transition = TRANSITIONS[name]
    if task_status not in transition.sources:
        allowed = "', '".join(sorted(transition.sources))
        raise InvalidStateError(
            f"Cannot {name.replace('_', ' ')} a task in '{task_status}' status, "
            f"must be '{allowed}'",
            details={"status": task_status},
        )
    return TransitionPlan(
        name=name,
        task_from=task_status,
        task_to=transition.target,
        contract_from=CONTRACT_STATUS_FOR_TASK[task_status],
        contract_to=CONTRACT_STATUS_FOR_TASK[transition.target],
        bid_to=transition.bid_status,
    )


def find_violations(
    task: dict[str, Any],
    bids: list[dict[str, Any]],
    contracts: list[dict[str, Any]],
) -> list[str]:
    """
    List every way the task, its bids and its contracts disagree.

    An empty list means the engagement is consistent: at most one accepted
    bid, and exactly one live contract in the status the task demands (or
    none when the task is not engaged).
    """
    violations: list[str] = []
    status = task["status"]
    if status not in TASK_STATUSES:
        return [f"task has unknown status '{status}'"]
    violations.extend(
        f"bid {bid['bid_id']} has unknown status '{bid['status']}'"
        for bid in bids
        if bid["status"] not in BID_STATUSES
    )
    violations.extend(
        f"contract {contract['contract_id']} has unknown status '{contract['status']}'"
        for contract in contracts
        if contract["status"] not in CONTRACT_STATUSES
    )
    accepted = [bid for bid in bids if bid["status"] == "accepted"]
    live = [contract for contract in contracts if contract["status"] != "cancelled"]
    expected_contract = CONTRACT_STATUS_FOR_TASK[status]

    if len(accepted) > 1:
        violations.append(f"{len(accepted)} accepted bids")

    if expected_contract is None:
        if len(live) > 0:
            violations.append(f"task is '{status}' but has {len(live)} live contract(s)")
        if len(accepted) > 0:
            violations.append(f"task is '{status}' but has an accepted bid")
        return violations

    if len(live) != 1:
        violations.append(f"task is '{status}' but has {len(live)} live contract(s)")
    elif live[0]["status"] != expected_contract:
        violations.append(
            f"task is '{status}' but contract is '{live[0]['status']}', "
            f"expected '{expected_contract}'"
        )

    if len(accepted) != 1:
        violations.append(f"task is '{status}' but has {len(accepted)} accepted bids")
    elif len(live) == 1:
        bid = accepted[0]
        contract = live[0]
        if bid["helper_id"] != contract["helper_id"]:
            violations.append("contract helper does not match accepted bid")
        if float(bid["amount"]) != float(contract["agreed_amount"]):
            violations.append("contract amount does not match accepted bid")

    return violations


def commit_task_transition(
    store: MarketplaceStore,
    task_id: str,
    plan: TransitionPlan,
    now: str,
    extra: dict[str, Any] | None = None,
) -> None:
    """
    Write the task side of ``plan`` with a compare-and-swap on its status.

    Raises:
        InvalidStateError: STATUS_CONFLICT if the task left ``plan.task_from``
            since it was read
    """
    updates: dict[str, Any] = {"status": plan.task_to, "updated_at": now}
    if extra is not None:
        updates.update(extra)
    changed = store.update_task(task_id, updates, expected_status=plan.task_from)
    if changed == 0:
        raise InvalidStateError(
            "Task status changed concurrently",
            error="STATUS_CONFLICT",
            details={"task_id": task_id, "expected": plan.task_from},
        )
