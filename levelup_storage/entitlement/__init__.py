"""
Subscription entitlement.

Resolves the user's tier (free, pro, premium) into an explicit
EntitlementContext consumed by the router and the migration engine.
"""

from .resolver import EntitlementResolver
from .types import EntitlementContext, EntitlementState, SubscriptionPlan, SubscriptionSource

__all__ = [
    "EntitlementContext",
    "EntitlementResolver",
    "EntitlementState",
    "SubscriptionPlan",
    "SubscriptionSource",
]
