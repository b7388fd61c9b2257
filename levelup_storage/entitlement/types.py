"""
Entitlement types.

The subscription tier decides which store is authoritative for new writes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Protocol


class SubscriptionPlan(Enum):
    """Subscription tiers."""

    FREE = "free"
    PRO = "pro"
    PREMIUM = "premium"

    @classmethod
    def parse(cls, value: str | None) -> SubscriptionPlan:
        """Parse a plan string. Unknown or empty values are the free plan."""
        if not value:
            return cls.FREE
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.FREE

    @property
    def is_paid(self) -> bool:
        return self in (SubscriptionPlan.PRO, SubscriptionPlan.PREMIUM)


class EntitlementState(Enum):
    """Resolver lifecycle: no terminal state, lives for the session."""

    UNLOADED = "unloaded"
    LOADED = "loaded"


@dataclass(frozen=True)
class EntitlementContext:
    """Snapshot of a user's entitlement at one point in time.

    Passed explicitly to the router and the migration engine so that one
    user action sees one tier for its whole read-then-write sequence.
    """

    user_id: str
    plan: SubscriptionPlan
    loaded_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    source_error: str | None = None  # Set when the plan fell back to free on error

    @property
    def should_use_cloud(self) -> bool:
        return self.plan.is_paid

    @property
    def local_storage_enabled(self) -> bool:
        return self.plan == SubscriptionPlan.FREE


class SubscriptionSource(Protocol):
    """Where plan tiers come from (the remote store in production)."""

    async def get_subscription_plan(self, user_id: str) -> str | None: ...
