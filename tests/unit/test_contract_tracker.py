"""Unit tests for ContractTracker."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from marketplace_service.core.exceptions import InvalidStateError
from marketplace_service.services.engagement import plan_transition

if TYPE_CHECKING:
    from tests.unit.conftest import Engine

NOW = "2026-03-01T12:00:00.000000Z"
LATER = "2026-03-02T12:00:00.000000Z"


@pytest.mark.unit
class TestOpenContract:
    def test_open_contract_is_pending(self, engine: Engine) -> None:
        contract = engine.contracts.open_contract("t-1", "u-hugo", 40, NOW)

        assert contract["contract_id"].startswith("ctr-")
        assert contract["status"] == "pending"
        assert contract["agreed_amount"] == 40.0
        assert engine.contracts.live_contract("t-1") == contract

    def test_second_live_contract_is_refused(self, engine: Engine) -> None:
        engine.contracts.open_contract("t-1", "u-hugo", 40, NOW)

        with pytest.raises(InvalidStateError) as exc_info:
            engine.contracts.open_contract("t-1", "u-hana", 35, NOW)

        assert exc_info.value.error == "STATUS_CONFLICT"


@pytest.mark.unit
class TestApply:
    def test_apply_advances_live_contract(self, engine: Engine) -> None:
        engine.contracts.open_contract("t-1", "u-hugo", 40, NOW)

        updated = engine.contracts.apply("t-1", plan_transition("start", "accepted"), LATER)

        assert updated is not None
        assert updated["status"] == "started"
        assert updated["updated_at"] == LATER
        live = engine.contracts.live_contract("t-1")
        assert live is not None
        assert live["status"] == "started"

    def test_apply_release_cancels(self, engine: Engine) -> None:
        engine.contracts.open_contract("t-1", "u-hugo", 40, NOW)

        updated = engine.contracts.apply("t-1", plan_transition("release", "accepted"), LATER)

        assert updated is not None
        assert updated["status"] == "cancelled"
        assert engine.contracts.live_contract("t-1") is None

    def test_apply_accept_touches_nothing(self, engine: Engine) -> None:
        assert engine.contracts.apply("t-1", plan_transition("accept", "open"), NOW) is None

    def test_apply_out_of_step_contract_conflicts(self, engine: Engine) -> None:
        engine.contracts.open_contract("t-1", "u-hugo", 40, NOW)

        with pytest.raises(InvalidStateError) as exc_info:
            engine.contracts.apply(
                "t-1", plan_transition("approve_completion", "review_pending"), LATER
            )

        assert exc_info.value.error == "STATUS_CONFLICT"

    def test_apply_without_contract_conflicts(self, engine: Engine) -> None:
        with pytest.raises(InvalidStateError):
            engine.contracts.apply("t-1", plan_transition("start", "accepted"), NOW)


@pytest.mark.unit
class TestVoidAndList:
    def test_void_cancels_and_returns_contract(self, engine: Engine) -> None:
        opened = engine.contracts.open_contract("t-1", "u-hugo", 40, NOW)

        voided = engine.contracts.void("t-1", LATER)

        assert voided is not None
        assert voided["contract_id"] == opened["contract_id"]
        assert engine.contracts.live_contract("t-1") is None

    def test_void_without_contract(self, engine: Engine) -> None:
        assert engine.contracts.void("t-1", NOW) is None

    def test_list_for_user_newest_first(self, engine: Engine) -> None:
        first = engine.contracts.open_contract("t-1", "u-hugo", 40, NOW)
        second = engine.contracts.open_contract("t-2", "u-hugo", 55, LATER)
        engine.contracts.open_contract("t-3", "u-hana", 20, LATER)

        listed = engine.contracts.list_for_user("u-hugo")

        assert [c["contract_id"] for c in listed] == [
            second["contract_id"],
            first["contract_id"],
        ]

    def test_list_keeps_cancelled_contracts(self, engine: Engine) -> None:
        engine.contracts.open_contract("t-1", "u-hugo", 40, NOW)
        engine.contracts.void("t-1", LATER)

        listed = engine.contracts.list_for_user("u-hugo")

        assert [c["status"] for c in listed] == ["cancelled"]
