"""
Purchases module - store purchases, receipt cache and subscription flows.
"""

from biztomate.purchases.client import PurchaseClient
from biztomate.purchases.repository import ReceiptCache
from biztomate.purchases.schemas import (
    PurchaseOutcome,
    PurchaseReceipt,
    PurchaseStatus,
    RestoreOutcome,
)
from biztomate.purchases.service import SubscriptionService, get_subscription_service

__all__ = [
    "PurchaseClient",
    "PurchaseOutcome",
    "PurchaseReceipt",
    "PurchaseStatus",
    "ReceiptCache",
    "RestoreOutcome",
    "SubscriptionService",
    "get_subscription_service",
]
