"""
App-side client of the receipt validation endpoint.

Holds no environment fallback logic of its own; the gateway owns it.
"""

import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from biztomate.config import get_settings
from biztomate.core.exceptions import VerificationNetworkError
from biztomate.receipts.schemas import ReceiptValidationResponse, VerificationResult
from biztomate.receipts.status import (
    StoreEnvironment,
    VerificationStatus,
    classify,
    message_for,
)

logger = logging.getLogger(__name__)

settings = get_settings()


class ReceiptValidationClient:
    """Posts receipts to POST /api/receipt-validation and normalizes the answer."""

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        *,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        password: Optional[str] = None,
    ):
        self._client = http_client
        self.url = url or settings.receipt_validation_url
        self.timeout = timeout if timeout is not None else settings.receipt_validation_timeout
        self.password = password

    async def validate(self, receipt_blob: str) -> VerificationResult:
        """
        Validate one receipt through the gateway.

        Raises:
            VerificationNetworkError: Gateway unreachable, timed out, rate
                limited, or upstream verification failed at the network level
        """
        body: Dict[str, Any] = {"receiptData": receipt_blob}
        if self.password:
            body["password"] = self.password

        client = self._client
        owns_client = client is None
        if owns_client:
            client = httpx.AsyncClient()

        try:
            response = await client.post(self.url, json=body, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise VerificationNetworkError("Receipt validation timed out", timed_out=True) from e
        except httpx.RequestError as e:
            raise VerificationNetworkError(f"Receipt validation request failed: {e}") from e
        finally:
            if owns_client:
                await client.aclose()

        try:
            data = response.json()
        except ValueError as e:
            raise VerificationNetworkError(
                f"Unreadable validation response (HTTP {response.status_code})"
            ) from e
        if not isinstance(data, dict):
            raise VerificationNetworkError(
                f"Unexpected validation response (HTTP {response.status_code})"
            )

        if response.status_code == 200 and data.get("success"):
            return _result_from_success(data)

        code = data.get("statusCode")
        if response.status_code == 429:
            raise VerificationNetworkError("Receipt validation rate limited")

        if response.status_code >= 500:
            if code == VerificationStatus.SERVER_UNAVAILABLE:
                return _failure_result(data, int(code))
            logger.warning(
                f"[ReceiptValidationClient] Gateway failure HTTP {response.status_code}: {data.get('error')}"
            )
            raise VerificationNetworkError(
                data.get("error") or f"Receipt validation failed with HTTP {response.status_code}",
                timed_out=response.status_code == 504,
            )

        if not isinstance(code, int):
            code = response.status_code
        return _failure_result(data, code)


def _environment(value: Any) -> StoreEnvironment:
    try:
        return StoreEnvironment(value)
    except ValueError:
        return StoreEnvironment.PRODUCTION


def _result_from_success(data: Dict[str, Any]) -> VerificationResult:
    try:
        parsed = ReceiptValidationResponse.model_validate(data)
    except ValidationError as e:
        raise VerificationNetworkError("Validation response did not match the contract") from e

    sub = parsed.subscription
    code = parsed.status_code
    return VerificationResult(
        is_valid=sub.is_valid and code == 0 and sub.expires_date is not None,
        environment=parsed.environment,
        status=classify(code),
        status_code=code,
        raw_message=parsed.message,
        store_product_id=sub.product_id,
        transaction_id=sub.transaction_id,
        original_transaction_id=sub.original_transaction_id,
        purchased_at=sub.purchase_date,
        expires_at=sub.expires_date,
        is_expired=sub.is_expired,
        auto_renew=sub.auto_renew_status,
        grace_period_expires_at=sub.grace_period_expires_date,
    )


def _failure_result(data: Dict[str, Any], code: int) -> VerificationResult:
    return VerificationResult(
        is_valid=False,
        environment=_environment(data.get("environment")),
        status=classify(code),
        status_code=code,
        raw_message=data.get("message") or data.get("error") or message_for(code),
    )
