"""Unit test fixtures: cache clearing between tests and an in-process engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock

import pytest

from marketplace_service.config import clear_settings_cache
from marketplace_service.core.state import reset_app_state
from marketplace_service.services.bid_ledger import BidLedger
from marketplace_service.services.category_manager import CategoryManager
from marketplace_service.services.contract_tracker import ContractTracker
from marketplace_service.services.marketplace_store import MarketplaceStore
from marketplace_service.services.notification_dispatcher import NotificationDispatcher
from marketplace_service.services.notification_store import NotificationStore
from marketplace_service.services.rate_gate import QUOTA_BIDS, QUOTA_TASKS, RateGate
from marketplace_service.services.review_manager import ReviewManager
from marketplace_service.services.task_state_machine import TaskStateMachine
from tests.helpers import ADMIN, HELPER, OTHER_HELPER, REQUESTER, STRANGER

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


FRONTEND_URL = "http://localhost:3000"


@pytest.fixture(autouse=True)
def _clear_caches():
    """Clear settings cache and app state between tests."""
    clear_settings_cache()
    reset_app_state()
    yield
    clear_settings_cache()
    reset_app_state()


@dataclass
class Engine:
    """The lifecycle engine wired the way the lifespan wires it, over a temp database."""

    store: MarketplaceStore
    notification_store: NotificationStore
    mail_client: AsyncMock
    dispatcher: NotificationDispatcher
    rate_gate: RateGate
    contracts: ContractTracker
    bids: BidLedger
    tasks: TaskStateMachine
    reviews: ReviewManager
    categories: CategoryManager


@pytest.fixture
def engine(tmp_path: Path) -> Iterator[Engine]:
    """Build the engine with a mocked mail relay and the standard actors registered."""
    db_path = str(tmp_path / "marketplace.db")
    store = MarketplaceStore(db_path=db_path)
    notification_store = NotificationStore(db_path=db_path)
    mail_client = AsyncMock()
    mail_client.send_email = AsyncMock(return_value=None)

    for actor in (REQUESTER, HELPER, OTHER_HELPER, STRANGER, ADMIN):
        store.upsert_user(actor.user_id, actor.email, actor.name, actor.role, "2026-01-01T00:00:00Z")

    dispatcher = NotificationDispatcher(store, notification_store, mail_client)
    rate_gate = RateGate(store, {QUOTA_TASKS: 10, QUOTA_BIDS: 50})
    contracts = ContractTracker(store)
    bids = BidLedger(
        store=store,
        rate_gate=rate_gate,
        contract_tracker=contracts,
        dispatcher=dispatcher,
        max_message_length=2000,
        frontend_url=FRONTEND_URL,
    )
    tasks = TaskStateMachine(
        store=store,
        rate_gate=rate_gate,
        contract_tracker=contracts,
        dispatcher=dispatcher,
        max_title_length=120,
        max_description_length=2000,
        reopen_window_days=14,
        frontend_url=FRONTEND_URL,
    )
    reviews = ReviewManager(store=store, dispatcher=dispatcher, max_comment_length=2000)

    yield Engine(
        store=store,
        notification_store=notification_store,
        mail_client=mail_client,
        dispatcher=dispatcher,
        rate_gate=rate_gate,
        contracts=contracts,
        bids=bids,
        tasks=tasks,
        reviews=reviews,
        categories=CategoryManager(store),
    )

    notification_store.close()
    store.close()
