"""
Apple verifyReceipt status code taxonomy.
"""

from enum import Enum, IntEnum
from typing import Dict


class StoreEnvironment(str, Enum):
    """The two disjoint verification backends."""
    PRODUCTION = "Production"
    SANDBOX = "Sandbox"


class VerificationStatus(IntEnum):
    """Verification outcome classes. UNKNOWN keeps the raw code elsewhere."""
    SUCCESS = 0
    MALFORMED_RECEIPT = 21002
    AUTHENTICATION_FAILED = 21003
    SHARED_SECRET_MISMATCH = 21004
    SERVER_UNAVAILABLE = 21005
    SUBSCRIPTION_EXPIRED = 21006
    SANDBOX_RECEIPT = 21007
    PRODUCTION_RECEIPT = 21008
    UNKNOWN = -1

    @property
    def is_retryable(self) -> bool:
        """Only a temporarily unavailable verification server is retryable."""
        return self is VerificationStatus.SERVER_UNAVAILABLE


STATUS_MESSAGES: Dict[int, str] = {
    0: "Receipt validation successful",
    21000: "The request to the App Store was not made using the HTTP POST request method",
    21002: "The receipt data was malformed or missing",
    21003: "The receipt could not be authenticated",
    21004: "The shared secret does not match the one on file for the account",
    21005: "The receipt server is temporarily unavailable",
    21006: "This receipt is valid but the subscription has expired",
    21007: "This receipt is from the test environment, but was sent to production",
    21008: "This receipt is from the production environment, but was sent to test",
    21009: "Internal data access error. Try again later",
    21010: "The user account cannot be found or has been deleted",
}

STATUS_ERRORS: Dict[VerificationStatus, str] = {
    VerificationStatus.MALFORMED_RECEIPT: "Invalid receipt data",
    VerificationStatus.AUTHENTICATION_FAILED: "Authentication failed",
    VerificationStatus.SHARED_SECRET_MISMATCH: "Invalid shared secret",
    VerificationStatus.SERVER_UNAVAILABLE: "Server unavailable",
    VerificationStatus.SUBSCRIPTION_EXPIRED: "Receipt is valid but subscription has expired",
    VerificationStatus.SANDBOX_RECEIPT: "Sandbox receipt sent to production",
    VerificationStatus.PRODUCTION_RECEIPT: "Production receipt sent to sandbox",
    VerificationStatus.UNKNOWN: "Receipt validation failed",
}


def classify(code: int) -> VerificationStatus:
    try:
        return VerificationStatus(code)
    except ValueError:
        return VerificationStatus.UNKNOWN


def message_for(code: int) -> str:
    return STATUS_MESSAGES.get(code, f"Receipt validation failed with status: {code}")


def error_for(code: int) -> str:
    return STATUS_ERRORS.get(classify(code), "Receipt validation failed")
