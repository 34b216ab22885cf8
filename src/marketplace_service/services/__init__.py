"""Service layer components."""

from marketplace_service.services.bid_ledger import BidLedger
from marketplace_service.services.contract_tracker import ContractTracker
from marketplace_service.services.notification_dispatcher import NotificationDispatcher
from marketplace_service.services.rate_gate import RateGate
from marketplace_service.services.review_manager import ReviewManager
from marketplace_service.services.task_state_machine import TaskStateMachine
from marketplace_service.services.token_validator import TokenValidator

__all__ = [
    "BidLedger",
    "ContractTracker",
    "NotificationDispatcher",
    "RateGate",
    "ReviewManager",
    "TaskStateMachine",
    "TokenValidator",
]
