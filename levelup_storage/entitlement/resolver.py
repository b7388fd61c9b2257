"""
Entitlement resolver.

Answers "is this user currently entitled to cloud storage?" and caches
the answer for the session. Any failure to fetch the plan fails safe to
the free tier: cloud access is never granted on error.
"""

from __future__ import annotations

import logging

from ..exceptions import EntitlementNotLoadedError
from .types import EntitlementContext, EntitlementState, SubscriptionPlan, SubscriptionSource

logger = logging.getLogger(__name__)


class EntitlementResolver:
    """Loads and caches the subscription tier for one user session.

    Usage:
        resolver = EntitlementResolver(cosmos_backend)
        context = await resolver.load_subscription(user_id)
        if resolver.should_use_cloud():
            ...
        # after an upgrade flow completes
        context = await resolver.refresh()
    """

    def __init__(self, source: SubscriptionSource):
        self.source = source
        self._context: EntitlementContext | None = None

    @property
    def state(self) -> EntitlementState:
        return EntitlementState.UNLOADED if self._context is None else EntitlementState.LOADED

    @property
    def context(self) -> EntitlementContext:
        """The current entitlement snapshot."""
        if self._context is None:
            raise EntitlementNotLoadedError()
        return self._context

    async def load_subscription(self, user_id: str) -> EntitlementContext:
        """Fetch the user's plan and cache it.

        Never raises for source failures: the plan falls back to free and
        the failure is logged and recorded on the returned context.
        """
        source_error: str | None = None
        try:
            raw_plan = await self.source.get_subscription_plan(user_id)
            plan = SubscriptionPlan.parse(raw_plan)
            if raw_plan and plan.value != raw_plan.strip().lower():
                logger.warning(
                    "Unknown subscription plan, treating as free",
                    extra={"user_id": user_id, "plan": raw_plan},
                )
        except Exception as e:
            plan = SubscriptionPlan.FREE
            source_error = f"{type(e).__name__}: {e}"
            logger.warning(
                f"Failed to load subscription, falling back to free: {e}",
                extra={"user_id": user_id, "error_type": type(e).__name__},
            )

        previous = self._context
        self._context = EntitlementContext(user_id=user_id, plan=plan, source_error=source_error)

        if previous is not None and previous.plan != plan:
            logger.info(
                f"Subscription changed: {previous.plan.value} -> {plan.value}",
                extra={"user_id": user_id},
            )
        return self._context

    def should_use_cloud(self) -> bool:
        """Pure predicate over the cached tier. False while unloaded."""
        return self._context is not None and self._context.should_use_cloud

    async def refresh(self) -> EntitlementContext:
        """Re-run load_subscription for the same user to pick up a plan change."""
        if self._context is None:
            raise EntitlementNotLoadedError()
        return await self.load_subscription(self._context.user_id)
