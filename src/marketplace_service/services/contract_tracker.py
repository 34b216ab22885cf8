"""Contract records that mirror the accepted bid of a task."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from marketplace_service.core.exceptions import InvalidStateError
from marketplace_service.logging import get_logger

if TYPE_CHECKING:
    from marketplace_service.services.engagement import TransitionPlan
    from marketplace_service.services.marketplace_store import MarketplaceStore


def contract_to_response(row: dict[str, Any]) -> dict[str, Any]:
    """Convert a contract row to its response dict."""
    return {
        "contract_id": row["contract_id"],
        "task_id": row["task_id"],
        "helper_id": row["helper_id"],
        "agreed_amount": float(row["agreed_amount"]),
        "status": row["status"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


class ContractTracker:
    """
    Creates and advances contracts on behalf of the task and bid operations.

    Contracts are never deleted. A task's earlier contracts stay behind in
    ``cancelled`` and the latest one ends in ``approved`` or ``cancelled``.
    All writes here are expected to run inside the caller's transaction.
    """

    def __init__(self, store: MarketplaceStore) -> None:
        self._store = store
        self._logger = get_logger(__name__)

    def open_contract(
        self,
        task_id: str,
        helper_id: str,
        agreed_amount: float,
        now: str,
    ) -> dict[str, Any]:
        """Create a fresh ``pending`` contract for a newly accepted bid."""
        if len(self._store.get_live_contracts(task_id)) > 0:
            raise InvalidStateError(
                "Task already has a live contract",
                error="STATUS_CONFLICT",
                details={"task_id": task_id},
            )

        contract = {
            "contract_id": f"ctr-{uuid.uuid4()}",
            "task_id": task_id,
            "helper_id": helper_id,
            "agreed_amount": float(agreed_amount),
            "status": "pending",
            "created_at": now,
            "updated_at": now,
        }
        self._store.insert_contract(contract)
        self._logger.info(
            "Contract opened",
            extra={
                "contract_id": contract["contract_id"],
                "task_id": task_id,
                "helper_id": helper_id,
            },
        )
        return contract

    def live_contract(self, task_id: str) -> dict[str, Any] | None:
        """Return the task's non-cancelled contract, if any."""
        live = self._store.get_live_contracts(task_id)
        if len(live) == 0:
            return None
        return live[0]

    def apply(self, task_id: str, plan: TransitionPlan, now: str) -> dict[str, Any] | None:
        """
        Move the task's live contract as ``plan`` dictates.

        Returns the updated contract, or None when the plan does not touch
        an existing contract (acceptance creates one through ``open_contract``).

        Raises:
            InvalidStateError: STATUS_CONFLICT if the live contract is missing
                or not in the status the plan expects
        """
        if plan.contract_from is None:
            return None

        contract = self.live_contract(task_id)
        if contract is None or contract["status"] != plan.contract_from:
            raise InvalidStateError(
                "Contract is out of step with its task",
                error="STATUS_CONFLICT",
                details={"task_id": task_id, "expected": plan.contract_from},
            )

        target = plan.contract_to if plan.contract_to is not None else "cancelled"
        changed = self._store.update_contract(
            contract["contract_id"],
            {"status": target, "updated_at": now},
            expected_status=plan.contract_from,
        )
        if changed == 0:
            raise InvalidStateError(
                "Contract changed concurrently",
                error="STATUS_CONFLICT",
                details={"contract_id": contract["contract_id"]},
            )

        self._logger.info(
            "Contract advanced",
            extra={
                "contract_id": contract["contract_id"],
                "task_id": task_id,
                "from_status": plan.contract_from,
                "to_status": target,
            },
        )
        return {**contract, "status": target, "updated_at": now}

    def void(self, task_id: str, now: str) -> dict[str, Any] | None:
        """Cancel the live contract of a task that is being deleted, if it has one."""
        contract = self.live_contract(task_id)
        if contract is None:
            return None
        self._store.update_contract(
            contract["contract_id"],
            {"status": "cancelled", "updated_at": now},
            expected_status=contract["status"],
        )
        self._logger.info(
            "Contract voided",
            extra={"contract_id": contract["contract_id"], "task_id": task_id},
        )
        return contract

    def list_for_user(self, helper_id: str) -> list[dict[str, Any]]:
        """List a helper's contracts, newest first."""
        return [contract_to_response(row) for row in self._store.get_contracts_for_helper(helper_id)]
