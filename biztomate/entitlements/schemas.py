"""
Pydantic schemas for entitlements.
"""

import math
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from biztomate.catalog import PlanId


class Entitlement(BaseModel):
    """
    The plan currently in force for a user.

    Expiry is lazy: a stored paid plan whose expires_at has passed reads as
    free through effective_plan(); nothing rewrites the record on expiry.
    """

    model_config = ConfigDict(frozen=True)

    plan_id: PlanId = PlanId.FREE
    expires_at: Optional[datetime] = None
    scanned_count: int = Field(0, ge=0)
    # None means unlimited
    card_quota: Optional[int] = None
    trial_ends_at: Optional[datetime] = None
    store_product_id: Optional[str] = None
    original_transaction_id: Optional[str] = None

    def is_subscription_active(self, now: datetime) -> bool:
        if self.plan_id == PlanId.FREE:
            return False
        return self.expires_at is not None and self.expires_at > now

    def effective_plan(self, now: datetime) -> PlanId:
        return self.plan_id if self.is_subscription_active(now) else PlanId.FREE

    def is_trial_active(self, now: datetime) -> bool:
        return self.trial_ends_at is not None and self.trial_ends_at > now

    def trial_days_left(self, now: datetime) -> int:
        """Whole days left in the trial window, rounded up; 0 once it ends."""
        if not self.is_trial_active(now):
            return 0
        return math.ceil((self.trial_ends_at - now).total_seconds() / 86400)


class SubscriptionSnapshot(BaseModel):
    """Read-only view of the entitlement at one instant, for display and gating."""

    effective_plan: PlanId
    plan_name: str
    card_quota: Optional[int] = Field(None, description="None when unlimited")
    scanned_count: int
    remaining_scans: Optional[int] = Field(None, description="None when unlimited")
    can_scan: bool
    is_subscription_active: bool
    is_trial_active: bool
    trial_days_left: int
    expires_at: Optional[datetime] = None
