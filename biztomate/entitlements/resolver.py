"""
Entitlement resolver - reduces verification results to the plan in force.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from biztomate.catalog import PlanId, ProductCatalog, ProductPlan, quota_rank
from biztomate.core.clock import utcnow
from biztomate.entitlements.schemas import Entitlement
from biztomate.receipts.schemas import VerificationResult

logger = logging.getLogger(__name__)


class EntitlementResolver:
    """
    Pure reduction from verification results to an Entitlement.

    The only time-dependent input is `now`, used for the expiry comparison.
    Identical inputs always produce an identical Entitlement.
    """

    def __init__(self, catalog: ProductCatalog):
        self.catalog = catalog

    def resolve(
        self,
        results: Iterable[VerificationResult],
        current: Optional[Entitlement] = None,
        now: Optional[datetime] = None,
    ) -> Entitlement:
        """
        Resolve the best entitlement the results grant.

        Args:
            results: One result (purchase) or many (restore)
            current: Entitlement being replaced; its scan counter and trial
                window are carried over unchanged
            now: Instant for the expiry comparison

        Returns:
            The highest-quota active plan, ties broken by latest expiry, or the
            free plan when no result is valid and unexpired
        """
        now = now or utcnow()
        candidates = self._active_candidates(results, now)

        scanned_count = current.scanned_count if current else 0
        trial_ends_at = current.trial_ends_at if current else None

        if not candidates:
            free = self.catalog.free_plan
            return Entitlement(
                plan_id=free.plan_id,
                card_quota=free.card_quota,
                scanned_count=scanned_count,
                trial_ends_at=trial_ends_at,
            )

        plan, result = max(candidates, key=_candidate_key)
        logger.debug(
            f"[EntitlementResolver] Selected {plan.plan_id.value} from {len(candidates)} active result(s)"
        )
        return Entitlement(
            plan_id=plan.plan_id,
            expires_at=result.expires_at,
            card_quota=plan.card_quota,
            scanned_count=scanned_count,
            trial_ends_at=trial_ends_at,
            store_product_id=result.store_product_id,
            original_transaction_id=result.original_transaction_id,
        )

    def _active_candidates(
        self,
        results: Iterable[VerificationResult],
        now: datetime,
    ) -> List[Tuple[ProductPlan, VerificationResult]]:
        candidates = []
        for result in results:
            if not result.is_active_at(now):
                continue
            plan = self.catalog.plan_for_product(result.store_product_id)
            if plan is None or plan.plan_id == PlanId.FREE:
                logger.warning(
                    f"[EntitlementResolver] Ignoring valid result for unknown product {result.store_product_id}"
                )
                continue
            candidates.append((plan, result))
        return candidates


def _candidate_key(candidate: Tuple[ProductPlan, VerificationResult]):
    plan, result = candidate
    return (
        quota_rank(plan.card_quota),
        result.expires_at.timestamp(),
        result.transaction_id or "",
    )
