"""
Purchase client - drives the platform store and records every completed
transaction in the receipt cache before reporting it.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from biztomate.catalog import ProductCatalog
from biztomate.core.exceptions import PurchaseError, PurchaseErrorKind
from biztomate.purchases.repository import ReceiptCache
from biztomate.purchases.schemas import PurchaseReceipt
from biztomate.purchases.store import (
    StoreAdapter,
    StoreConnectionState,
    StoreError,
    StoreProduct,
    StoreTransaction,
)

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════════
# STORE ERROR MAPPING
# ═══════════════════════════════════════════════════════════════════════════

STORE_ERROR_KINDS: Dict[str, PurchaseErrorKind] = {
    "E_ALREADY_OWNED": PurchaseErrorKind.ALREADY_OWNED,
    "E_USER_CANCELLED": PurchaseErrorKind.USER_CANCELLED,
    "E_ITEM_UNAVAILABLE": PurchaseErrorKind.PRODUCT_UNAVAILABLE,
    "E_NETWORK_ERROR": PurchaseErrorKind.NETWORK_ERROR,
}


def map_store_error(error: StoreError) -> PurchaseError:
    """Translate a platform error; unrecognized codes become UNKNOWN with the code kept."""
    kind = STORE_ERROR_KINDS.get(error.code or "", PurchaseErrorKind.UNKNOWN)
    if kind == PurchaseErrorKind.UNKNOWN:
        logger.error(f"[PurchaseClient] Unrecognized store error {error.code}: {error.message}")
    return PurchaseError(kind, raw_code=error.code)


def receipt_from_transaction(transaction: StoreTransaction) -> PurchaseReceipt:
    return PurchaseReceipt(
        transaction_id=transaction.transaction_id,
        original_transaction_id=transaction.original_transaction_id,
        store_product_id=transaction.product_id,
        receipt_blob=transaction.receipt,
        purchased_at=transaction.purchased_at,
        expires_at=transaction.expires_at,
    )


def _transaction_from_receipt(receipt: PurchaseReceipt) -> StoreTransaction:
    return StoreTransaction(
        transaction_id=receipt.transaction_id,
        original_transaction_id=receipt.original_transaction_id,
        product_id=receipt.store_product_id,
        receipt=receipt.receipt_blob,
        purchased_at=receipt.purchased_at,
        expires_at=receipt.expires_at,
    )


# ═══════════════════════════════════════════════════════════════════════════
# CLIENT
# ═══════════════════════════════════════════════════════════════════════════


class PurchaseClient:
    """
    One user's view of the platform store.

    Connection state is owned by the instance. Purchases are single-flight
    per SKU: concurrent calls for the same SKU share one store request.
    """

    def __init__(
        self,
        store: StoreAdapter,
        cache: ReceiptCache,
        user_id: str,
        catalog: ProductCatalog,
    ):
        self.store = store
        self.cache = cache
        self.user_id = user_id
        self.catalog = catalog
        self.state = StoreConnectionState()
        self._in_flight: Dict[str, asyncio.Task] = {}

    # ── Connection ────────────────────────────────────────────────────────

    async def connect(self) -> None:
        if self.state.initialized:
            return
        try:
            connected = await self.store.init_connection()
        except StoreError as e:
            raise map_store_error(e) from e
        except (ConnectionError, asyncio.TimeoutError) as e:
            raise PurchaseError(PurchaseErrorKind.NETWORK_ERROR) from e

        if not connected:
            raise PurchaseError(
                PurchaseErrorKind.NETWORK_ERROR,
                "Could not connect to the App Store",
            )
        self.state.initialized = True
        logger.info("[PurchaseClient] Store connection initialized")

    async def disconnect(self) -> None:
        if not self.state.initialized:
            return
        try:
            await self.store.end_connection()
        except StoreError as e:
            logger.warning(f"[PurchaseClient] Error closing store connection: {e}")
        finally:
            self.state.reset()
        logger.info("[PurchaseClient] Store connection closed")

    async def load_products(self) -> List[StoreProduct]:
        """Fetch the catalog SKUs from the store and cache the listing."""
        await self.connect()
        skus = self.catalog.store_product_ids()
        try:
            products = await self.store.get_products(skus)
        except StoreError as e:
            raise map_store_error(e) from e
        except (ConnectionError, asyncio.TimeoutError) as e:
            raise PurchaseError(PurchaseErrorKind.NETWORK_ERROR) from e

        self.state.products = {p.product_id: p for p in products}
        self.state.products_loaded = True
        missing = set(skus) - set(self.state.products)
        if missing:
            logger.warning(f"[PurchaseClient] Store did not list: {sorted(missing)}")
        logger.info(f"[PurchaseClient] Loaded {len(products)} products")
        return products

    # ── Purchase ──────────────────────────────────────────────────────────

    async def purchase(self, store_product_id: str) -> PurchaseReceipt:
        """
        Buy one product.

        The receipt is committed to the cache before this returns. A caller
        that is cancelled while waiting does not cancel the store request.

        Raises:
            PurchaseError: Mapped store failure
        """
        task = self._in_flight.get(store_product_id)
        if task is None:
            task = asyncio.ensure_future(self._purchase_once(store_product_id))
            self._in_flight[store_product_id] = task
            task.add_done_callback(
                lambda t, sku=store_product_id: self._purchase_done(sku, t)
            )
        else:
            logger.info(f"[PurchaseClient] Joining in-flight purchase of {store_product_id}")
        return await asyncio.shield(task)

    def _purchase_done(self, sku: str, task: asyncio.Task) -> None:
        if self._in_flight.get(sku) is task:
            del self._in_flight[sku]
        if not task.cancelled():
            # Mark retrieved even when every caller went away
            task.exception()

    async def _purchase_once(self, sku: str) -> PurchaseReceipt:
        await self.connect()
        if not self.state.products_loaded or sku not in self.state.products:
            await self.load_products()
        if sku not in self.state.products:
            raise PurchaseError(PurchaseErrorKind.PRODUCT_UNAVAILABLE)

        logger.info(f"[PurchaseClient] Requesting purchase of {sku}")
        try:
            transaction = await self.store.request_purchase(sku)
        except StoreError as e:
            error = map_store_error(e)
            logger.info(f"[PurchaseClient] Purchase of {sku} failed: {error.kind.value}")
            raise error from e
        except (ConnectionError, asyncio.TimeoutError) as e:
            raise PurchaseError(PurchaseErrorKind.NETWORK_ERROR) from e

        return await self.record_transaction(transaction)

    async def record_transaction(self, transaction: StoreTransaction) -> PurchaseReceipt:
        """Cache a delivered transaction, then acknowledge it with the store."""
        receipt = receipt_from_transaction(transaction)
        await self.cache.save(self.user_id, receipt)
        await self._finalize(transaction)
        return receipt

    async def _finalize(self, transaction: StoreTransaction) -> bool:
        try:
            await self.store.finish_transaction(transaction)
        except (StoreError, ConnectionError, asyncio.TimeoutError) as e:
            logger.warning(
                f"[PurchaseClient] Finalize of {transaction.transaction_id} failed, will retry: {e}"
            )
            return False
        await self.cache.mark_finalized(transaction.transaction_id)
        return True

    async def finish_pending_transactions(self) -> int:
        """Acknowledge cached receipts the store has not yet been told about."""
        pending = await self.cache.unfinalized(self.user_id)
        if not pending:
            return 0

        await self.connect()
        finalized = 0
        for receipt in pending:
            if await self._finalize(_transaction_from_receipt(receipt)):
                finalized += 1
        logger.info(f"[PurchaseClient] Finalized {finalized}/{len(pending)} pending transactions")
        return finalized

    # ── Restore ───────────────────────────────────────────────────────────

    async def restore(self) -> List[PurchaseReceipt]:
        """
        Enumerate historical purchases. An empty list is a successful restore.

        Raises:
            PurchaseError: Mapped store failure
        """
        await self.connect()
        try:
            transactions = await self.store.get_available_purchases()
        except StoreError as e:
            raise map_store_error(e) from e
        except (ConnectionError, asyncio.TimeoutError) as e:
            raise PurchaseError(PurchaseErrorKind.NETWORK_ERROR) from e

        unique: Dict[str, StoreTransaction] = {}
        for transaction in transactions:
            unique.setdefault(transaction.transaction_id, transaction)

        receipts = []
        for transaction in unique.values():
            receipt = receipt_from_transaction(transaction)
            await self.cache.save(self.user_id, receipt)
            receipts.append(receipt)

        pending = {r.transaction_id for r in await self.cache.unfinalized(self.user_id)}
        for transaction in unique.values():
            if transaction.transaction_id in pending:
                await self._finalize(transaction)

        logger.info(f"[PurchaseClient] Restored {len(receipts)} purchases")
        return receipts

    def is_purchasing(self, store_product_id: Optional[str] = None) -> bool:
        if store_product_id is None:
            return bool(self._in_flight)
        return store_product_id in self._in_flight
