"""
Entitlements module - plan resolution, trial window and scan quota.
"""

from biztomate.entitlements.quota import QuotaPolicy, get_quota_policy
from biztomate.entitlements.repository import EntitlementStore
from biztomate.entitlements.resolver import EntitlementResolver
from biztomate.entitlements.schemas import Entitlement, SubscriptionSnapshot
from biztomate.entitlements.state import SubscriptionState

__all__ = [
    "Entitlement",
    "EntitlementResolver",
    "EntitlementStore",
    "QuotaPolicy",
    "SubscriptionSnapshot",
    "SubscriptionState",
    "get_quota_policy",
]
