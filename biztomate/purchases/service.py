"""
Service layer for the purchase, restore and re-validation flows.
"""

import asyncio
import logging
from collections import OrderedDict
from typing import Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from biztomate.catalog import PlanId, get_catalog
from biztomate.config import get_settings
from biztomate.core.clock import utcnow
from biztomate.core.exceptions import PurchaseError, PurchaseErrorKind, VerificationNetworkError
from biztomate.database import async_session_maker
from biztomate.entitlements import (
    Entitlement,
    EntitlementResolver,
    EntitlementStore,
    SubscriptionState,
    get_quota_policy,
)
from biztomate.purchases.client import PurchaseClient
from biztomate.purchases.repository import ReceiptCache
from biztomate.purchases.schemas import (
    PurchaseOutcome,
    PurchaseReceipt,
    PurchaseStatus,
    RestoreFailure,
    RestoreOutcome,
)
from biztomate.purchases.store import StoreAdapter
from biztomate.receipts.client import ReceiptValidationClient
from biztomate.receipts.gateway import ReceiptValidator
from biztomate.receipts.schemas import VerificationResult

logger = logging.getLogger(__name__)

settings = get_settings()

PENDING_VERIFICATION_MESSAGE = "Your purchase was successful and will be verified shortly."
REJECTED_MESSAGE = "We could not verify this purchase. If you were charged, please contact support."
RESTORE_UNAVAILABLE_MESSAGE = "Could not verify your purchases right now. Please try again later."
PARTIAL_RESTORE_SUFFIX = " Some purchases could not be verified yet and will be retried."


class SubscriptionService:
    def __init__(
        self,
        client: PurchaseClient,
        validator: ReceiptValidator,
        cache: ReceiptCache,
        state: SubscriptionState,
        restore_concurrency: Optional[int] = None,
    ):
        self.client = client
        self.validator = validator
        self.cache = cache
        self.state = state
        self.restore_concurrency = max(1, restore_concurrency or settings.restore_concurrency)

    @property
    def catalog(self):
        return self.client.catalog

    @property
    def user_id(self) -> str:
        return self.client.user_id

    # ═══════════════════════════════════════════════════════════════════════
    # PURCHASE
    # ═══════════════════════════════════════════════════════════════════════

    async def purchase_plan(self, plan_id: PlanId) -> PurchaseOutcome:
        """
        Buy a plan, validate the receipt and update the entitlement.

        A receipt that cannot be verified for network reasons is kept in the
        cache and reported as pending, never as a failed purchase.

        Raises:
            PurchaseError: If the store purchase itself fails
        """
        plan = self.catalog.get(plan_id)
        if not plan.store_product_id:
            raise PurchaseError(PurchaseErrorKind.PRODUCT_UNAVAILABLE)

        receipt = await self.client.purchase(plan.store_product_id)

        try:
            result = await self.validator.validate(receipt.receipt_blob)
        except VerificationNetworkError as e:
            logger.warning(
                f"[SubscriptionService] Validation of {receipt.transaction_id} deferred: {e.message}"
            )
            return await self._pending(receipt)

        await self.cache.record_verification(receipt.transaction_id, result)

        if result.is_retryable:
            logger.warning(
                f"[SubscriptionService] Validation of {receipt.transaction_id} deferred: "
                f"status {result.status_code}"
            )
            return await self._pending(receipt, result)

        now = utcnow()
        if result.is_active_at(now) and self.catalog.plan_for_product(result.store_product_id):
            entitlement = await self.state.apply(await self.cache.verified_results(self.user_id), now=now)
            resolved = self.catalog.get(entitlement.effective_plan(now))
            return PurchaseOutcome(
                status=PurchaseStatus.ACTIVATED,
                message=f"Your {resolved.name} plan is now active.",
                receipt=receipt,
                verification=result,
                entitlement=entitlement,
            )

        if result.is_expired:
            entitlement = await self.state.apply(await self.cache.verified_results(self.user_id), now=now)
            return PurchaseOutcome(
                status=PurchaseStatus.EXPIRED,
                message="This subscription has expired.",
                receipt=receipt,
                verification=result,
                entitlement=entitlement,
            )

        logger.error(
            f"[SubscriptionService] Receipt {receipt.transaction_id} rejected: "
            f"status {result.status_code} ({result.raw_message})"
        )
        return PurchaseOutcome(
            status=PurchaseStatus.REJECTED,
            message=REJECTED_MESSAGE,
            receipt=receipt,
            verification=result,
            entitlement=await self.state.current(),
        )

    async def _pending(
        self,
        receipt: PurchaseReceipt,
        result: Optional[VerificationResult] = None,
    ) -> PurchaseOutcome:
        return PurchaseOutcome(
            status=PurchaseStatus.PENDING_VERIFICATION,
            message=PENDING_VERIFICATION_MESSAGE,
            receipt=receipt,
            verification=result,
            entitlement=await self.state.current(),
        )

    # ═══════════════════════════════════════════════════════════════════════
    # RESTORE
    # ═══════════════════════════════════════════════════════════════════════

    async def restore_purchases(self) -> RestoreOutcome:
        """
        Restore every historical purchase and keep the best plan.

        Legs that fail do not discard the ones that validated, and a failed
        leg falls back to its last cached verification. When nothing
        validated and something failed, the entitlement is left as it was.

        Raises:
            PurchaseError: If the store cannot enumerate purchases
        """
        receipts = await self.client.restore()
        results, failures = await self._validate_all(receipts)

        if not results and failures:
            return RestoreOutcome(
                restored_count=len(receipts),
                failures=failures,
                entitlement=await self.state.current(),
                message=RESTORE_UNAVAILABLE_MESSAGE,
            )

        now = utcnow()
        resolved_from = results
        if failures:
            # Failed legs keep their last completed verification.
            resolved_from = await self.cache.verified_results(self.user_id)
        entitlement = await self.state.apply(resolved_from, now=now)
        return RestoreOutcome(
            restored_count=len(receipts),
            results=results,
            failures=failures,
            entitlement=entitlement,
            message=self._restore_message(entitlement, receipts, failures, now),
        )

    async def revalidate_pending(self) -> RestoreOutcome:
        """Retry validation of cached receipts whose verification never completed."""
        pending = await self.cache.pending_verification(self.user_id)
        if not pending:
            return RestoreOutcome(
                restored_count=0,
                entitlement=await self.state.current(),
                message="No purchases awaiting verification.",
            )

        results, failures = await self._validate_all(pending)
        entitlement = await self.state.current()
        if results:
            entitlement = await self.state.apply(await self.cache.verified_results(self.user_id))

        message = f"Verified {len(pending) - len(failures)} of {len(pending)} pending purchases."
        logger.info(f"[SubscriptionService] {message}")
        return RestoreOutcome(
            restored_count=len(pending),
            results=results,
            failures=failures,
            entitlement=entitlement,
            message=message,
        )

    async def _validate_all(
        self,
        receipts: List[PurchaseReceipt],
    ) -> Tuple[List[VerificationResult], List[RestoreFailure]]:
        """
        Validate each distinct receipt blob once, at most restore_concurrency
        at a time, and return only after every leg has finished.
        """
        by_blob: Dict[str, List[PurchaseReceipt]] = OrderedDict()
        for receipt in receipts:
            by_blob.setdefault(receipt.receipt_blob, []).append(receipt)

        semaphore = asyncio.Semaphore(self.restore_concurrency)

        async def validate_one(blob: str):
            async with semaphore:
                try:
                    return await self.validator.validate(blob), None
                except VerificationNetworkError as e:
                    return None, e

        outcomes = await asyncio.gather(*(validate_one(blob) for blob in by_blob))

        results: List[VerificationResult] = []
        failures: List[RestoreFailure] = []
        for (blob, group), (result, error) in zip(by_blob.items(), outcomes):
            if error is not None:
                failures.extend(
                    RestoreFailure(
                        transaction_id=r.transaction_id,
                        store_product_id=r.store_product_id,
                        error=error.message,
                    )
                    for r in group
                )
                continue

            for r in group:
                await self.cache.record_verification(r.transaction_id, result)

            if result.is_retryable:
                failures.extend(
                    RestoreFailure(
                        transaction_id=r.transaction_id,
                        store_product_id=r.store_product_id,
                        error=result.raw_message,
                    )
                    for r in group
                )
            else:
                results.append(result)

        logger.info(
            f"[SubscriptionService] Validated {len(by_blob)} receipt(s): "
            f"{len(results)} completed, {len(failures)} transaction(s) pending"
        )
        return results, failures

    def _restore_message(
        self,
        entitlement: Entitlement,
        receipts: List[PurchaseReceipt],
        failures: List[RestoreFailure],
        now,
    ) -> str:
        if not receipts:
            return "No previous purchases found."
        if entitlement.is_subscription_active(now):
            message = f"Restored your {self.catalog.get(entitlement.plan_id).name} plan."
        else:
            message = "No active subscription found."
        if failures:
            message += PARTIAL_RESTORE_SUFFIX
        return message


def get_subscription_service(
    user_id: str,
    store: StoreAdapter,
    validator: Optional[ReceiptValidator] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> SubscriptionService:
    """Wire a SubscriptionService for one user against the local database."""
    session_factory = session_factory or async_session_maker
    catalog = get_catalog()
    cache = ReceiptCache(session_factory)
    state = SubscriptionState(
        user_id,
        EntitlementStore(session_factory),
        EntitlementResolver(catalog),
        get_quota_policy(),
    )
    return SubscriptionService(
        client=PurchaseClient(store, cache, user_id, catalog),
        validator=validator or ReceiptValidationClient(),
        cache=cache,
        state=state,
    )
