"""Per-actor, per-calendar-day quotas."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import TYPE_CHECKING

from marketplace_service.core.exceptions import QuotaExceededError
from marketplace_service.logging import get_logger

if TYPE_CHECKING:
    from marketplace_service.services.marketplace_store import MarketplaceStore

QUOTA_TASKS = "tasks"
QUOTA_BIDS = "bids"


@dataclass(frozen=True)
class Quota:
    """A day-bounded counter: how many actions since ``window_start``, out of ``limit``."""

    count: int
    window_start: datetime | None
    limit: int


def _local_date(moment: datetime) -> date:
    return moment.astimezone().date()


def reset_for_day(quota: Quota, now: datetime) -> Quota:
    """Return the quota with its count zeroed if ``window_start`` is on an earlier local day."""
    if quota.window_start is None:
        return replace(quota, count=0)
    if _local_date(quota.window_start) != _local_date(now):
        return replace(quota, count=0)
    return quota


def check_quota(quota: Quota, kind: str) -> None:
    """
    Reject the action if the quota is spent.

    The quota must already have been passed through ``reset_for_day``.

    Raises:
        QuotaExceededError: If ``count`` has reached ``limit``
    """
    if quota.count >= quota.limit:
        raise QuotaExceededError(
            f"Daily limit of {quota.limit} {kind} reached",
            {"kind": kind, "limit": quota.limit},
        )


def increment_quota(quota: Quota, now: datetime) -> Quota:
    """Count one more action and move the window to ``now``."""
    return Quota(count=quota.count + 1, window_start=now, limit=quota.limit)


class RateGate:
    """
    Persists quotas per (user, kind) and applies check-then-increment.

    ``consume`` reads, checks and writes inside one store transaction, so two
    requests from the same actor cannot both pass the last free slot.
    """

    def __init__(self, store: MarketplaceStore, limits: dict[str, int]) -> None:
        self._store = store
        self._limits = dict(limits)
        self._logger = get_logger(__name__)

    def limit_for(self, kind: str) -> int:
        """Return the configured daily limit for a quota kind."""
        if kind not in self._limits:
            msg = f"Unknown quota kind: {kind}"
            raise ValueError(msg)
        return self._limits[kind]

    def load(self, user_id: str, kind: str) -> Quota:
        """Load the stored quota, or an empty one if the actor never acted."""
        limit = self.limit_for(kind)
        row = self._store.get_quota(user_id, kind)
        if row is None:
            return Quota(count=0, window_start=None, limit=limit)
        window_start = row["window_start"]
        return Quota(
            count=int(row["count"]),
            window_start=datetime.fromisoformat(window_start) if window_start else None,
            limit=limit,
        )

    def consume(self, user_id: str, kind: str, now: datetime) -> Quota:
        """
        Spend one unit of the actor's daily quota.

        Joins the caller's transaction when one is open, so a failure later
        in the same operation also rolls back the increment.

        Raises:
            QuotaExceededError: If the actor already used the whole day's quota
        """
        with self._store.transaction():
            quota = reset_for_day(self.load(user_id, kind), now)
            try:
                check_quota(quota, kind)
            except QuotaExceededError:
                self._logger.info(
                    "Quota exhausted",
                    extra={"user_id": user_id, "kind": kind, "limit": quota.limit},
                )
                raise
            quota = increment_quota(quota, now)
            window_start = quota.window_start.isoformat() if quota.window_start else None
            self._store.save_quota(user_id, kind, quota.count, window_start)
        return quota
