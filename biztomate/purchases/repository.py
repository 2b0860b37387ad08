"""
Repository layer for the receipt cache.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from biztomate.core.clock import ensure_utc
from biztomate.purchases.models import CachedReceipt
from biztomate.purchases.schemas import PurchaseReceipt
from biztomate.receipts.schemas import VerificationResult
from biztomate.receipts.status import VerificationStatus

logger = logging.getLogger(__name__)


class ReceiptCache:
    """
    Durable per-user receipt store.

    Each operation opens its own session and commits before returning, so a
    receipt handed to save() survives a crash right after the call.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def save(self, user_id: str, receipt: PurchaseReceipt) -> bool:
        """
        Record a receipt.

        Returns:
            True if stored, False if the transaction was already cached
        """
        async with self.session_factory() as session:
            if await session.get(CachedReceipt, receipt.transaction_id) is not None:
                return False

            session.add(
                CachedReceipt(
                    transaction_id=receipt.transaction_id,
                    user_id=user_id,
                    original_transaction_id=receipt.original_transaction_id,
                    store_product_id=receipt.store_product_id,
                    receipt_blob=receipt.receipt_blob,
                    purchased_at=receipt.purchased_at,
                    expires_at=receipt.expires_at,
                    created_at=datetime.now(timezone.utc),
                )
            )
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return False

        logger.info(
            f"[ReceiptCache] Cached transaction {receipt.transaction_id} "
            f"({receipt.store_product_id}) for user {user_id}"
        )
        return True

    async def get(self, transaction_id: str) -> Optional[PurchaseReceipt]:
        async with self.session_factory() as session:
            row = await session.get(CachedReceipt, transaction_id)
            return _to_receipt(row) if row else None

    async def list_for_user(self, user_id: str) -> List[PurchaseReceipt]:
        """All cached receipts of a user, oldest purchase first."""
        rows = await self._rows(user_id)
        return [_to_receipt(row) for row in rows]

    async def latest_by_lineage(self, user_id: str) -> List[PurchaseReceipt]:
        """The newest receipt of each subscription lineage."""
        latest: Dict[str, PurchaseReceipt] = {}
        for receipt in await self.list_for_user(user_id):
            current = latest.get(receipt.lineage_id)
            if current is None or receipt.purchased_at >= current.purchased_at:
                latest[receipt.lineage_id] = receipt
        return list(latest.values())

    async def mark_finalized(self, transaction_id: str) -> None:
        async with self.session_factory() as session:
            row = await session.get(CachedReceipt, transaction_id)
            if row is None:
                logger.warning(f"[ReceiptCache] Cannot finalize unknown transaction {transaction_id}")
                return
            if row.finalized_at is None:
                row.finalized_at = datetime.now(timezone.utc)
                await session.commit()

    async def unfinalized(self, user_id: str) -> List[PurchaseReceipt]:
        """Receipts cached but not yet acknowledged with the store."""
        rows = await self._rows(user_id, CachedReceipt.finalized_at.is_(None))
        return [_to_receipt(row) for row in rows]

    async def record_verification(self, transaction_id: str, result: VerificationResult) -> None:
        """Store the latest verification outcome beside the receipt."""
        async with self.session_factory() as session:
            row = await session.get(CachedReceipt, transaction_id)
            if row is None:
                logger.warning(
                    f"[ReceiptCache] Verification for uncached transaction {transaction_id} dropped"
                )
                return
            row.last_verification = result.model_dump(mode="json")
            row.verified_at = datetime.now(timezone.utc)
            await session.commit()

    async def pending_verification(self, user_id: str) -> List[PurchaseReceipt]:
        """Receipts never verified, or whose last answer was a retryable status."""
        pending = []
        for row in await self._rows(user_id):
            verification = _to_result(row)
            if verification is None or verification.is_retryable:
                pending.append(_to_receipt(row))
        return pending

    async def verified_results(self, user_id: str) -> List[VerificationResult]:
        """Last completed verification of each cached receipt that has one."""
        results = []
        for row in await self._rows(user_id):
            verification = _to_result(row)
            if verification is not None and verification.status != VerificationStatus.SERVER_UNAVAILABLE:
                results.append(verification)
        return results

    async def _rows(self, user_id: str, *criteria) -> List[CachedReceipt]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(CachedReceipt)
                .where(CachedReceipt.user_id == user_id, *criteria)
                .order_by(CachedReceipt.purchased_at, CachedReceipt.transaction_id)
            )
            return list(result.scalars().all())


def _to_receipt(row: CachedReceipt) -> PurchaseReceipt:
    return PurchaseReceipt(
        transaction_id=row.transaction_id,
        original_transaction_id=row.original_transaction_id,
        store_product_id=row.store_product_id,
        receipt_blob=row.receipt_blob,
        purchased_at=ensure_utc(row.purchased_at),
        expires_at=ensure_utc(row.expires_at),
    )


def _to_result(row: CachedReceipt) -> Optional[VerificationResult]:
    if not row.last_verification:
        return None
    return VerificationResult.model_validate(row.last_verification)
