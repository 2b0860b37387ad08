"""
Custom exceptions for the application.
"""

from enum import Enum
from typing import Optional


class BiztomateException(Exception):
    """Base exception for the Biztomate billing package."""

    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)


# ═══════════════════════════════════════════════════════════════════════════
# PURCHASE EXCEPTIONS
# ═══════════════════════════════════════════════════════════════════════════


class PurchaseErrorKind(str, Enum):
    """Purchase failures surfaced to the UI layer."""
    ALREADY_OWNED = "already_owned"
    USER_CANCELLED = "user_cancelled"
    PRODUCT_UNAVAILABLE = "product_unavailable"
    NETWORK_ERROR = "network_error"
    UNKNOWN = "unknown"


PURCHASE_ERROR_MESSAGES = {
    PurchaseErrorKind.ALREADY_OWNED: "You already own this subscription.",
    PurchaseErrorKind.USER_CANCELLED: "Purchase was cancelled.",
    PurchaseErrorKind.PRODUCT_UNAVAILABLE: "This product is not available in the App Store.",
    PurchaseErrorKind.NETWORK_ERROR: "Network error. Please check your internet connection.",
    PurchaseErrorKind.UNKNOWN: "Purchase failed. Please check your payment method and try again.",
}


class PurchaseError(BiztomateException):
    """Raised when a store purchase or restore fails."""

    def __init__(
        self,
        kind: PurchaseErrorKind,
        message: Optional[str] = None,
        raw_code: Optional[str] = None,
    ):
        self.kind = kind
        self.raw_code = raw_code
        super().__init__(message or PURCHASE_ERROR_MESSAGES[kind])

    @property
    def user_message(self) -> str:
        """Short reason safe to show to the user (never the raw platform string)."""
        return PURCHASE_ERROR_MESSAGES[self.kind]

    @property
    def is_retryable(self) -> bool:
        return self.kind == PurchaseErrorKind.NETWORK_ERROR


# ═══════════════════════════════════════════════════════════════════════════
# RECEIPT VERIFICATION EXCEPTIONS
# ═══════════════════════════════════════════════════════════════════════════


class VerificationNetworkError(BiztomateException):
    """
    Raised when a verification leg fails at the network level.

    Distinct from a semantically invalid receipt: callers may retry this
    with backoff.
    """

    def __init__(
        self,
        message: str,
        environment: Optional[str] = None,
        timed_out: bool = False,
    ):
        self.environment = environment
        self.timed_out = timed_out
        super().__init__(message)


class ReceiptRequestError(BiztomateException):
    """Raised when a validation request is missing required data."""
    pass


# ═══════════════════════════════════════════════════════════════════════════
# ENTITLEMENT EXCEPTIONS
# ═══════════════════════════════════════════════════════════════════════════


class ScanQuotaExceededError(BiztomateException):
    """Raised when the user has no scans left under the plan in force."""
    pass


# ═══════════════════════════════════════════════════════════════════════════
# EXTERNAL API EXCEPTIONS
# ═══════════════════════════════════════════════════════════════════════════


class CardExtractionError(BiztomateException):
    """Raised when the card extraction model returns nothing usable."""
    pass

