"""Application state management."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from marketplace_service.clients.identity_client import IdentityClient
    from marketplace_service.clients.mail_client import MailClient
    from marketplace_service.services.bid_ledger import BidLedger
    from marketplace_service.services.category_manager import CategoryManager
    from marketplace_service.services.contract_tracker import ContractTracker
    from marketplace_service.services.marketplace_store import MarketplaceStore
    from marketplace_service.services.notification_dispatcher import NotificationDispatcher
    from marketplace_service.services.notification_store import NotificationStore
    from marketplace_service.services.review_manager import ReviewManager
    from marketplace_service.services.task_state_machine import TaskStateMachine
    from marketplace_service.services.token_validator import TokenValidator


@dataclass
class AppState:
    """Runtime application state."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    store: MarketplaceStore | None = None
    notification_store: NotificationStore | None = None
    identity_client: IdentityClient | None = None
    mail_client: MailClient | None = None
    token_validator: TokenValidator | None = None
    dispatcher: NotificationDispatcher | None = None
    contract_tracker: ContractTracker | None = None
    bid_ledger: BidLedger | None = None
    task_state_machine: TaskStateMachine | None = None
    review_manager: ReviewManager | None = None
    category_manager: CategoryManager | None = None

    def __setattr__(self, name: str, value: Any) -> None:
        """Keep client references held by services in sync with AppState fields."""
        super().__setattr__(name, value)
        if value is None:
            return

        token_validator = self.__dict__.get("token_validator")
        if name == "identity_client" and token_validator is not None:
            token_validator._identity_client = value

        dispatcher = self.__dict__.get("dispatcher")
        if name == "mail_client" and dispatcher is not None:
            dispatcher._mail_client = value

    @property
    def uptime_seconds(self) -> float:
        """Calculate uptime in seconds."""
        return (datetime.now(UTC) - self.start_time).total_seconds()

    @property
    def started_at(self) -> str:
        """ISO format start time."""
        return self.start_time.isoformat(timespec="seconds").replace("+00:00", "Z")


# Global application state container
_state_container: dict[str, AppState | None] = {"app_state": None}


def get_app_state() -> AppState:
    """Get the current application state."""
    app_state = _state_container["app_state"]
    if app_state is None:
        msg = "Application state not initialized"
        raise RuntimeError(msg)
    return app_state


def init_app_state() -> AppState:
    """Initialize application state. Called during startup."""
    app_state = AppState()
    _state_container["app_state"] = app_state
    return app_state


def reset_app_state() -> None:
    """Reset application state. Used in testing."""
    _state_container["app_state"] = None
