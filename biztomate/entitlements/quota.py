"""
Scan quota gating.
"""

from datetime import datetime
from typing import Optional

from biztomate.catalog import is_unlimited
from biztomate.config import get_settings
from biztomate.entitlements.schemas import Entitlement


class QuotaPolicy:
    """
    Picks the quota in force: active paid subscription, then active trial,
    then the free default. Evaluated against the wall clock on every call.
    """

    def __init__(self, free_quota: int, trial_quota: Optional[int]):
        self.free_quota = free_quota
        self.trial_quota = trial_quota

    def effective_quota(self, entitlement: Entitlement, now: datetime) -> Optional[int]:
        if entitlement.is_subscription_active(now):
            return entitlement.card_quota
        if entitlement.is_trial_active(now):
            return self.trial_quota
        return self.free_quota

    def can_scan(self, entitlement: Entitlement, now: datetime) -> bool:
        quota = self.effective_quota(entitlement, now)
        if is_unlimited(quota):
            return True
        return entitlement.scanned_count < quota

    def remaining(self, entitlement: Entitlement, now: datetime) -> Optional[int]:
        """Scans left, or None when the quota in force is unlimited."""
        quota = self.effective_quota(entitlement, now)
        if is_unlimited(quota):
            return None
        return max(0, quota - entitlement.scanned_count)


def get_quota_policy() -> QuotaPolicy:
    settings = get_settings()
    return QuotaPolicy(settings.free_card_quota, settings.trial_card_quota)
