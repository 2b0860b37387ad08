"""
Validation gateway - verifies App Store receipts against Apple's verifyReceipt.

Hides the production/sandbox split from every caller: production is always
tried first, and a 21007 answer triggers exactly one sandbox retry with the
identical payload.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Protocol

import httpx

from biztomate.config import get_settings
from biztomate.core.clock import from_millis, utcnow
from biztomate.core.exceptions import VerificationNetworkError
from biztomate.receipts.schemas import VerificationResult
from biztomate.receipts.status import (
    StoreEnvironment,
    VerificationStatus,
    classify,
    message_for,
)

logger = logging.getLogger(__name__)

settings = get_settings()


class ReceiptValidator(Protocol):
    """Anything that turns one receipt blob into one VerificationResult."""

    async def validate(self, receipt_blob: str) -> VerificationResult:
        ...


class AppleReceiptGateway:
    """Server-side verifyReceipt client with the sandbox fallback protocol."""

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        *,
        production_url: Optional[str] = None,
        sandbox_url: Optional[str] = None,
        shared_secret: Optional[str] = None,
        timeout: Optional[float] = None,
        exclude_old_transactions: Optional[bool] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._client = http_client
        self.production_url = production_url or settings.apple_production_url
        self.sandbox_url = sandbox_url or settings.apple_sandbox_url
        self.shared_secret = shared_secret if shared_secret is not None else settings.apple_shared_secret
        self.timeout = timeout if timeout is not None else settings.apple_verify_timeout
        self.exclude_old_transactions = (
            exclude_old_transactions
            if exclude_old_transactions is not None
            else settings.apple_exclude_old_transactions
        )
        self._clock = clock

    async def validate(self, receipt_blob: str) -> VerificationResult:
        return await self.verify(receipt_blob)

    async def verify(self, receipt_data: str, password: Optional[str] = None) -> VerificationResult:
        """
        Verify one receipt.

        Args:
            receipt_data: Base64-encoded receipt blob
            password: Shared secret; defaults to the configured one

        Returns:
            VerificationResult for every answer Apple gives, including
            terminal error statuses

        Raises:
            VerificationNetworkError: If a leg times out, the connection fails,
                or the upstream answer is not a verifyReceipt body
        """
        payload = {
            "receipt-data": receipt_data,
            "password": password or self.shared_secret,
            "exclude-old-transactions": self.exclude_old_transactions,
        }
        logger.info(
            f"[ReceiptGateway] Verifying receipt (length={len(receipt_data)}, "
            f"has_password={bool(payload['password'])})"
        )

        environment = StoreEnvironment.PRODUCTION
        body = await self._post(self.production_url, payload, environment)
        code = _status_code(body, environment)

        if code == VerificationStatus.SANDBOX_RECEIPT:
            logger.info("[ReceiptGateway] Production answered 21007, retrying once against sandbox")
            environment = StoreEnvironment.SANDBOX
            body = await self._post(self.sandbox_url, payload, environment)
            code = _status_code(body, environment)

        result = self._build_result(body, code, environment)
        logger.info(
            f"[ReceiptGateway] Verification finished: status={result.status_code}, "
            f"environment={result.environment.value}, valid={result.is_valid}, "
            f"expired={result.is_expired}"
        )
        return result

    async def _post(
        self,
        url: str,
        payload: Dict[str, Any],
        environment: StoreEnvironment,
    ) -> Dict[str, Any]:
        client = self._client
        owns_client = client is None
        if owns_client:
            client = httpx.AsyncClient()

        try:
            response = await client.post(
                url,
                json=payload,
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
            )
        except httpx.TimeoutException as e:
            logger.error(f"[ReceiptGateway] {environment.value} endpoint timed out")
            raise VerificationNetworkError(
                f"{environment.value} verification timed out",
                environment=environment.value,
                timed_out=True,
            ) from e
        except httpx.RequestError as e:
            logger.error(f"[ReceiptGateway] {environment.value} endpoint unreachable: {e}")
            raise VerificationNetworkError(
                f"{environment.value} verification request failed: {e}",
                environment=environment.value,
            ) from e
        finally:
            if owns_client:
                await client.aclose()

        if response.status_code != 200:
            logger.error(
                f"[ReceiptGateway] {environment.value} endpoint returned HTTP {response.status_code}"
            )
            raise VerificationNetworkError(
                f"{environment.value} verification returned HTTP {response.status_code}",
                environment=environment.value,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise VerificationNetworkError(
                f"{environment.value} verification returned an unreadable body",
                environment=environment.value,
            ) from e

        if not isinstance(body, dict):
            raise VerificationNetworkError(
                f"{environment.value} verification returned an unexpected body",
                environment=environment.value,
            )
        return body

    def _build_result(
        self,
        body: Dict[str, Any],
        code: int,
        environment: StoreEnvironment,
    ) -> VerificationResult:
        status = classify(code)

        if status not in (VerificationStatus.SUCCESS, VerificationStatus.SUBSCRIPTION_EXPIRED):
            return VerificationResult(
                is_valid=False,
                environment=environment,
                status=status,
                status_code=code,
                raw_message=message_for(code),
            )

        expired_status = status is VerificationStatus.SUBSCRIPTION_EXPIRED
        transaction = latest_transaction(body)
        if transaction is None:
            return VerificationResult(
                is_valid=False,
                environment=environment,
                status=status,
                status_code=code,
                raw_message="No subscription information found",
                is_expired=expired_status,
            )

        expires_at = _millis(transaction, "expires_date_ms")
        original_transaction_id = _str_or_none(transaction.get("original_transaction_id"))
        renewal = _renewal_for(body, original_transaction_id)

        is_expired = expired_status or (expires_at is not None and expires_at < self._clock())
        is_valid = status is VerificationStatus.SUCCESS and expires_at is not None

        raw_message = message_for(code)
        if status is VerificationStatus.SUCCESS and expires_at is None:
            raw_message = "Subscription transaction has no expiry date"

        return VerificationResult(
            is_valid=is_valid,
            environment=environment,
            status=status,
            status_code=code,
            raw_message=raw_message,
            store_product_id=_str_or_none(transaction.get("product_id")),
            transaction_id=_str_or_none(transaction.get("transaction_id")),
            original_transaction_id=original_transaction_id,
            purchased_at=_millis(transaction, "purchase_date_ms"),
            expires_at=expires_at,
            is_expired=is_expired,
            auto_renew=(renewal.get("auto_renew_status") == "1") if renewal else None,
            grace_period_expires_at=_millis(renewal, "grace_period_expires_date_ms") if renewal else None,
        )


# ═══════════════════════════════════════════════════════════════════════════
# RESPONSE PARSING HELPERS
# ═══════════════════════════════════════════════════════════════════════════


def latest_transaction(body: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Most recent transaction of the receipt.

    Apple lists renewals newest first; ordering by expiry keeps that choice
    when the list arrives unordered.
    """
    transactions = body.get("latest_receipt_info") or (body.get("receipt") or {}).get("in_app") or []
    transactions = [t for t in transactions if isinstance(t, dict)]
    if not transactions:
        return None

    def sort_key(transaction: Dict[str, Any]):
        expires = _millis(transaction, "expires_date_ms")
        purchased = _millis(transaction, "purchase_date_ms")
        return (
            expires.timestamp() if expires else 0.0,
            purchased.timestamp() if purchased else 0.0,
        )

    return max(transactions, key=sort_key)


def _renewal_for(body: Dict[str, Any], original_transaction_id: Optional[str]) -> Optional[Dict[str, Any]]:
    for info in body.get("pending_renewal_info") or []:
        if isinstance(info, dict) and _str_or_none(info.get("original_transaction_id")) == original_transaction_id:
            return info
    return None


def _status_code(body: Dict[str, Any], environment: StoreEnvironment) -> int:
    try:
        return int(body["status"])
    except (KeyError, TypeError, ValueError) as e:
        raise VerificationNetworkError(
            f"{environment.value} verification returned no status",
            environment=environment.value,
        ) from e


def _millis(record: Dict[str, Any], key: str) -> Optional[datetime]:
    try:
        return from_millis(record.get(key))
    except (TypeError, ValueError, OverflowError):
        return None


def _str_or_none(value: Any) -> Optional[str]:
    return None if value is None else str(value)
