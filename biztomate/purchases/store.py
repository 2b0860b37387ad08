"""
Platform store seam.

The in-app purchase SDK is reached only through StoreAdapter, so the purchase
client can run against a real binding or a scripted fake.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Protocol


@dataclass(frozen=True)
class StoreProduct:
    """One product listing as returned by the store."""
    product_id: str
    title: str = ""
    description: str = ""
    price: str = ""
    currency: str = ""


@dataclass(frozen=True)
class StoreTransaction:
    """A completed transaction delivered by the store (purchase, restore or re-delivery)."""
    transaction_id: str
    original_transaction_id: Optional[str]
    product_id: str
    receipt: str
    purchased_at: datetime
    expires_at: Optional[datetime] = None


class StoreError(Exception):
    """Failure reported by the platform store, carrying its raw error code."""

    def __init__(self, code: Optional[str], message: str = ""):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}" if message else str(code))


class StoreAdapter(Protocol):
    async def init_connection(self) -> bool:
        ...

    async def end_connection(self) -> None:
        ...

    async def get_products(self, skus: List[str]) -> List[StoreProduct]:
        ...

    async def request_purchase(self, sku: str) -> StoreTransaction:
        ...

    async def finish_transaction(self, transaction: StoreTransaction) -> None:
        ...

    async def get_available_purchases(self) -> List[StoreTransaction]:
        ...


@dataclass
class StoreConnectionState:
    """Connection flag and product listing cache owned by one PurchaseClient."""
    initialized: bool = False
    products: Dict[str, StoreProduct] = field(default_factory=dict)
    products_loaded: bool = False

    def reset(self) -> None:
        self.initialized = False
        self.products.clear()
        self.products_loaded = False
