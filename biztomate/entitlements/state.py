"""
Subscription state - the entitlement the rest of the app consults to gate scanning.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional

from biztomate.catalog import PlanId
from biztomate.config import get_settings
from biztomate.core.clock import utcnow
from biztomate.core.exceptions import ScanQuotaExceededError
from biztomate.entitlements.quota import QuotaPolicy
from biztomate.entitlements.repository import EntitlementStore
from biztomate.entitlements.resolver import EntitlementResolver
from biztomate.entitlements.schemas import Entitlement, SubscriptionSnapshot
from biztomate.receipts.schemas import VerificationResult

logger = logging.getLogger(__name__)

settings = get_settings()


class SubscriptionState:
    """
    Holds one user's entitlement and persists every change.

    Nothing is downgraded in storage when a subscription or trial ends;
    every read compares the stored instants against the wall clock.
    """

    def __init__(
        self,
        user_id: str,
        store: EntitlementStore,
        resolver: EntitlementResolver,
        policy: QuotaPolicy,
        trial_days: Optional[int] = None,
    ):
        self.user_id = user_id
        self.store = store
        self.resolver = resolver
        self.policy = policy
        self.trial_days = trial_days if trial_days is not None else settings.trial_days
        self._entitlement: Optional[Entitlement] = None
        self._lock = asyncio.Lock()

    async def load(self) -> Entitlement:
        """Load the stored entitlement, creating a free one on first use."""
        entitlement = await self.store.get(self.user_id)
        if entitlement is None:
            free = self.resolver.catalog.free_plan
            entitlement = await self.store.save(
                self.user_id,
                Entitlement(plan_id=PlanId.FREE, card_quota=free.card_quota),
            )
            logger.info(f"[SubscriptionState] Created free entitlement for user {self.user_id}")
        self._entitlement = entitlement
        return entitlement

    async def current(self) -> Entitlement:
        if self._entitlement is None:
            return await self.load()
        return self._entitlement

    async def start_trial(self, now: Optional[datetime] = None) -> Entitlement:
        """Open the trial window once. An existing window is never moved."""
        async with self._lock:
            entitlement = await self.current()
            if entitlement.trial_ends_at is not None:
                return entitlement

            now = now or utcnow()
            updated = entitlement.model_copy(
                update={"trial_ends_at": now + timedelta(days=self.trial_days)}
            )
            self._entitlement = await self.store.save(self.user_id, updated)
            logger.info(
                f"[SubscriptionState] Trial started for user {self.user_id}, "
                f"ends {updated.trial_ends_at.isoformat()}"
            )
            return self._entitlement

    async def apply(
        self,
        results: Iterable[VerificationResult],
        now: Optional[datetime] = None,
    ) -> Entitlement:
        """Resolve the results against the current entitlement and persist."""
        async with self._lock:
            current = await self.current()
            resolved = self.resolver.resolve(results, current=current, now=now)
            self._entitlement = await self.store.save(self.user_id, resolved)
            logger.info(
                f"[SubscriptionState] Entitlement for user {self.user_id} is now "
                f"{resolved.plan_id.value}"
            )
            return self._entitlement

    async def can_scan(self, now: Optional[datetime] = None) -> bool:
        entitlement = await self.current()
        return self.policy.can_scan(entitlement, now or utcnow())

    async def record_scan(self, now: Optional[datetime] = None) -> Entitlement:
        """
        Count one scanned card.

        Raises:
            ScanQuotaExceededError: If the quota in force is used up
        """
        async with self._lock:
            now = now or utcnow()
            entitlement = await self.current()
            if not self.policy.can_scan(entitlement, now):
                quota = self.policy.effective_quota(entitlement, now)
                raise ScanQuotaExceededError(
                    f"Card limit reached ({entitlement.scanned_count}/{quota}). "
                    "Upgrade your plan to scan more cards."
                )

            updated = entitlement.model_copy(
                update={"scanned_count": entitlement.scanned_count + 1}
            )
            self._entitlement = await self.store.save(self.user_id, updated)
            return self._entitlement

    async def snapshot(self, now: Optional[datetime] = None) -> SubscriptionSnapshot:
        now = now or utcnow()
        entitlement = await self.current()
        effective_plan = entitlement.effective_plan(now)

        return SubscriptionSnapshot(
            effective_plan=effective_plan,
            plan_name=self.resolver.catalog.get(effective_plan).name,
            card_quota=self.policy.effective_quota(entitlement, now),
            scanned_count=entitlement.scanned_count,
            remaining_scans=self.policy.remaining(entitlement, now),
            can_scan=self.policy.can_scan(entitlement, now),
            is_subscription_active=entitlement.is_subscription_active(now),
            is_trial_active=entitlement.is_trial_active(now),
            trial_days_left=entitlement.trial_days_left(now),
            expires_at=entitlement.expires_at if entitlement.is_subscription_active(now) else None,
        )
