"""Application lifecycle management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from marketplace_service.clients.identity_client import IdentityClient
from marketplace_service.clients.mail_client import MailClient
from marketplace_service.config import get_settings
from marketplace_service.core.state import init_app_state
from marketplace_service.logging import get_logger, setup_logging
from marketplace_service.services.bid_ledger import BidLedger
from marketplace_service.services.category_manager import CategoryManager
from marketplace_service.services.contract_tracker import ContractTracker
from marketplace_service.services.marketplace_store import MarketplaceStore
from marketplace_service.services.notification_dispatcher import NotificationDispatcher
from marketplace_service.services.notification_store import NotificationStore
from marketplace_service.services.rate_gate import QUOTA_BIDS, QUOTA_TASKS, RateGate
from marketplace_service.services.review_manager import ReviewManager
from marketplace_service.services.task_state_machine import TaskStateMachine
from marketplace_service.services.token_validator import TokenValidator

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.service.name, settings.logging.directory)
    logger = get_logger(__name__)

    state = init_app_state()
    limits = settings.limits
    frontend_url = settings.mail.frontend_url

    store = MarketplaceStore(db_path=settings.database.path)
    state.store = store
    notification_store = NotificationStore(db_path=settings.database.path)
    state.notification_store = notification_store

    identity_client = IdentityClient(
        base_url=settings.identity.base_url,
        verify_jws_path=settings.identity.verify_jws_path,
        timeout_seconds=settings.identity.timeout_seconds,
    )
    state.identity_client = identity_client

    mail_client = MailClient(
        base_url=settings.mail.base_url,
        send_path=settings.mail.send_path,
        timeout_seconds=settings.mail.timeout_seconds,
    )
    state.mail_client = mail_client

    state.token_validator = TokenValidator(
        identity_client=identity_client,
        store=store,
        admin_user_ids=settings.auth.admin_user_ids,
    )
    dispatcher = NotificationDispatcher(
        store=store,
        notification_store=notification_store,
        mail_client=mail_client,
    )
    state.dispatcher = dispatcher

    rate_gate = RateGate(
        store,
        {QUOTA_TASKS: limits.max_tasks_per_day, QUOTA_BIDS: limits.max_bids_per_day},
    )
    contract_tracker = ContractTracker(store)
    state.contract_tracker = contract_tracker

    state.bid_ledger = BidLedger(
        store=store,
        rate_gate=rate_gate,
        contract_tracker=contract_tracker,
        dispatcher=dispatcher,
        max_message_length=limits.max_message_length,
        frontend_url=frontend_url,
    )
    state.task_state_machine = TaskStateMachine(
        store=store,
        rate_gate=rate_gate,
        contract_tracker=contract_tracker,
        dispatcher=dispatcher,
        max_title_length=limits.max_title_length,
        max_description_length=limits.max_description_length,
        reopen_window_days=limits.reopen_window_days,
        frontend_url=frontend_url,
    )
    state.review_manager = ReviewManager(
        store=store,
        dispatcher=dispatcher,
        max_comment_length=limits.max_comment_length,
    )
    state.category_manager = CategoryManager(store=store)

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "db_path": settings.database.path,
            "identity_base_url": settings.identity.base_url,
            "mail_base_url": settings.mail.base_url,
        },
    )

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})

    notification_store.close()
    store.close()

    await identity_client.close()
    await mail_client.close()
