"""
Pydantic schemas for purchases and the subscription flows.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from biztomate.entitlements.schemas import Entitlement
from biztomate.receipts.schemas import VerificationResult


class PurchaseReceipt(BaseModel):
    """Proof of one completed store transaction. Never mutated once cached."""

    model_config = ConfigDict(frozen=True)

    transaction_id: str
    original_transaction_id: Optional[str] = None
    store_product_id: str
    receipt_blob: str = Field(..., repr=False)
    purchased_at: datetime
    expires_at: Optional[datetime] = None

    @property
    def lineage_id(self) -> str:
        """Subscription lineage; a first purchase is its own lineage."""
        return self.original_transaction_id or self.transaction_id


class PurchaseStatus(str, Enum):
    ACTIVATED = "activated"
    EXPIRED = "expired"
    PENDING_VERIFICATION = "pending_verification"
    REJECTED = "rejected"


class PurchaseOutcome(BaseModel):
    """Result of buying a plan and validating the receipt."""
    status: PurchaseStatus
    message: str
    receipt: PurchaseReceipt
    verification: Optional[VerificationResult] = None
    entitlement: Entitlement


class RestoreFailure(BaseModel):
    """A restored receipt whose validation did not complete."""
    transaction_id: str
    store_product_id: str
    error: str
    retryable: bool = True


class RestoreOutcome(BaseModel):
    """Result of restoring purchases. partial is set when some legs failed."""
    restored_count: int
    results: List[VerificationResult] = Field(default_factory=list)
    failures: List[RestoreFailure] = Field(default_factory=list)
    entitlement: Entitlement
    message: str

    @property
    def partial(self) -> bool:
        return bool(self.failures)
