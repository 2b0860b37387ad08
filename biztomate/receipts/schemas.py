"""
Pydantic schemas for receipt validation.
Normalized verification results and the HTTP contract of the gateway.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from biztomate.receipts.status import StoreEnvironment, VerificationStatus


class VerificationResult(BaseModel):
    """
    Normalized outcome of verifying exactly one receipt blob.

    is_valid implies status_code == 0 and expires_at is set.
    """

    model_config = ConfigDict(frozen=True)

    is_valid: bool
    environment: StoreEnvironment = StoreEnvironment.PRODUCTION
    status: VerificationStatus
    status_code: int
    raw_message: str = ""
    store_product_id: Optional[str] = None
    transaction_id: Optional[str] = None
    original_transaction_id: Optional[str] = None
    purchased_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    is_expired: bool = False
    auto_renew: Optional[bool] = None
    grace_period_expires_at: Optional[datetime] = None

    @model_validator(mode="after")
    def validate_valid_has_expiry(self) -> "VerificationResult":
        """A valid result needs status 0 and an expiry date."""
        if self.is_valid and (self.status_code != 0 or self.expires_at is None):
            raise ValueError("A valid result requires status 0 and an expiry date")
        return self

    @property
    def is_retryable(self) -> bool:
        return self.status.is_retryable

    def is_active_at(self, now: datetime) -> bool:
        """Valid and not expired at the given instant."""
        if not self.is_valid or self.expires_at is None:
            return False
        return self.expires_at > now


# ═══════════════════════════════════════════════════════════════════════════
# HTTP CONTRACT
# ═══════════════════════════════════════════════════════════════════════════


class ReceiptValidationRequest(BaseModel):
    """Body of POST /api/receipt-validation."""

    model_config = ConfigDict(populate_by_name=True)

    receipt_data: Optional[str] = Field(
        None,
        alias="receiptData",
        description="Base64-encoded App Store receipt",
    )
    password: Optional[str] = Field(
        None,
        description="App Store shared secret; the configured one is used when omitted",
    )


class SubscriptionInfo(BaseModel):
    """Subscription extracted from a verified receipt."""

    model_config = ConfigDict(populate_by_name=True)

    is_valid: bool = Field(..., alias="isValid")
    product_id: Optional[str] = Field(None, alias="productId")
    expires_date: Optional[datetime] = Field(None, alias="expiresDate")
    is_expired: bool = Field(..., alias="isExpired")
    original_transaction_id: Optional[str] = Field(None, alias="originalTransactionId")
    transaction_id: Optional[str] = Field(None, alias="transactionId")
    purchase_date: Optional[datetime] = Field(None, alias="purchaseDate")
    auto_renew_status: Optional[bool] = Field(None, alias="autoRenewStatus")
    grace_period_expires_date: Optional[datetime] = Field(None, alias="gracePeriodExpiresDate")


class ReceiptValidationResponse(BaseModel):
    """Successful verification (status 0, or 21006 valid-but-expired)."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    environment: StoreEnvironment
    subscription: SubscriptionInfo
    status_code: int = Field(..., alias="statusCode")
    message: str


class ReceiptValidationError(BaseModel):
    """Failed verification or malformed request."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = False
    error: str
    status_code: int = Field(..., alias="statusCode")
    message: Optional[str] = None
    retryable: bool = False
    environment: Optional[StoreEnvironment] = None


class ProductListResponse(BaseModel):
    """Store product identifiers served to the app."""
    products: List[str]
    plans: List[dict]


class GatewayHealth(BaseModel):
    """Liveness plus the upstream verification URLs in use."""

    model_config = ConfigDict(populate_by_name=True)

    status: str
    service: str
    version: str
    timestamp: datetime
    production_url: str = Field(..., alias="productionUrl")
    sandbox_url: str = Field(..., alias="sandboxUrl")
