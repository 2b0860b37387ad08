"""
Tests for the Apple verifyReceipt gateway.

Tests cover:
- Production-first order and the single sandbox retry on 21007
- Subscription extraction from status 0 and 21006 answers
- Terminal status classification
- Network failures on either leg
"""

from datetime import timedelta

import httpx
import pytest

from biztomate.core.exceptions import VerificationNetworkError
from biztomate.receipts.gateway import AppleReceiptGateway, latest_transaction
from biztomate.receipts.status import StoreEnvironment, VerificationStatus
from tests.fakes import NOW, PRODUCTION_URL, SANDBOX_URL, AppleEndpoints, apple_body, blob, millis


def make_gateway(endpoints: AppleEndpoints) -> AppleReceiptGateway:
    return AppleReceiptGateway(
        endpoints.client(),
        production_url=PRODUCTION_URL,
        sandbox_url=SANDBOX_URL,
        shared_secret="secret",
        timeout=10.0,
        clock=lambda: NOW,
    )


class TestEnvironmentFallback:
    """Production first, exactly one sandbox retry."""

    @pytest.mark.asyncio
    async def test_status_zero_never_calls_sandbox(self):
        endpoints = AppleEndpoints(production=apple_body(0, expires_at=NOW + timedelta(days=30)))

        result = await make_gateway(endpoints).verify(blob("a"))

        assert endpoints.urls() == [PRODUCTION_URL]
        assert result.environment == StoreEnvironment.PRODUCTION
        assert result.is_valid

    @pytest.mark.asyncio
    async def test_sandbox_receipt_retries_once_with_same_payload(self):
        endpoints = AppleEndpoints(
            production=apple_body(21007),
            sandbox=apple_body(0, expires_at=NOW + timedelta(days=30)),
        )

        result = await make_gateway(endpoints).verify(blob("a"))

        assert endpoints.urls() == [PRODUCTION_URL, SANDBOX_URL]
        first, second = endpoints.payloads()
        assert first == second
        assert first["receipt-data"] == blob("a")
        assert first["password"] == "secret"
        assert first["exclude-old-transactions"] is True
        assert result.environment == StoreEnvironment.SANDBOX
        assert result.is_valid

    @pytest.mark.asyncio
    async def test_sandbox_answering_21007_is_not_retried_again(self):
        endpoints = AppleEndpoints(production=apple_body(21007), sandbox=apple_body(21007))

        result = await make_gateway(endpoints).verify(blob("a"))

        assert endpoints.urls() == [PRODUCTION_URL, SANDBOX_URL]
        assert result.status == VerificationStatus.SANDBOX_RECEIPT
        assert not result.is_valid

    @pytest.mark.asyncio
    async def test_production_receipt_on_sandbox_leg_is_terminal(self):
        endpoints = AppleEndpoints(production=apple_body(21007), sandbox=apple_body(21008))

        result = await make_gateway(endpoints).verify(blob("a"))

        assert result.status == VerificationStatus.PRODUCTION_RECEIPT
        assert result.environment == StoreEnvironment.SANDBOX
        assert len(endpoints.requests) == 2

    @pytest.mark.asyncio
    async def test_explicit_password_overrides_configured_secret(self):
        endpoints = AppleEndpoints(production=apple_body(0, expires_at=NOW + timedelta(days=1)))

        await make_gateway(endpoints).verify(blob("a"), password="other")

        assert endpoints.payloads()[0]["password"] == "other"


class TestResultExtraction:
    @pytest.mark.asyncio
    async def test_newest_transaction_is_selected(self):
        older = {
            "product_id": "com.biztomate.scanner.basic",
            "transaction_id": "1",
            "original_transaction_id": "1",
            "purchase_date_ms": millis(NOW - timedelta(days=400)),
            "expires_date_ms": millis(NOW - timedelta(days=35)),
        }
        newer = {
            "product_id": "com.biztomate.scanner.basic",
            "transaction_id": "2",
            "original_transaction_id": "1",
            "purchase_date_ms": millis(NOW - timedelta(days=35)),
            "expires_date_ms": millis(NOW + timedelta(days=330)),
        }
        renewal = [{"original_transaction_id": "1", "auto_renew_status": "1"}]
        endpoints = AppleEndpoints(
            production=apple_body(0, transactions=[older, newer], renewal=renewal)
        )

        result = await make_gateway(endpoints).verify(blob("a"))

        assert result.transaction_id == "2"
        assert result.original_transaction_id == "1"
        assert result.expires_at == NOW + timedelta(days=330)
        assert result.auto_renew is True
        assert not result.is_expired

    @pytest.mark.asyncio
    async def test_status_zero_with_past_expiry_is_valid_but_expired(self):
        endpoints = AppleEndpoints(production=apple_body(0, expires_at=NOW - timedelta(days=1)))

        result = await make_gateway(endpoints).verify(blob("a"))

        assert result.is_valid
        assert result.is_expired
        assert not result.is_active_at(NOW)

    @pytest.mark.asyncio
    async def test_subscription_expired_status(self):
        endpoints = AppleEndpoints(production=apple_body(21006, expires_at=NOW - timedelta(days=3)))

        result = await make_gateway(endpoints).verify(blob("a"))

        assert result.status == VerificationStatus.SUBSCRIPTION_EXPIRED
        assert not result.is_valid
        assert result.is_expired
        assert result.store_product_id == "com.biztomate.scanner.standard"

    @pytest.mark.asyncio
    async def test_status_zero_without_transactions_is_not_valid(self):
        endpoints = AppleEndpoints(production=apple_body(0))

        result = await make_gateway(endpoints).verify(blob("a"))

        assert result.status == VerificationStatus.SUCCESS
        assert not result.is_valid
        assert result.raw_message == "No subscription information found"

    @pytest.mark.asyncio
    async def test_in_app_used_when_latest_receipt_info_missing(self):
        body = {
            "status": 0,
            "receipt": {
                "in_app": [
                    {
                        "product_id": "com.biztomate.scanner.premium",
                        "transaction_id": "7",
                        "original_transaction_id": "7",
                        "purchase_date_ms": millis(NOW),
                        "expires_date_ms": millis(NOW + timedelta(days=365)),
                    }
                ]
            },
        }
        endpoints = AppleEndpoints(production=body)

        result = await make_gateway(endpoints).verify(blob("a"))

        assert result.store_product_id == "com.biztomate.scanner.premium"
        assert result.is_valid

    def test_latest_transaction_ignores_garbage_entries(self):
        assert latest_transaction({"latest_receipt_info": ["junk", None]}) is None


class TestTerminalStatuses:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "code,expected",
        [
            (21002, VerificationStatus.MALFORMED_RECEIPT),
            (21003, VerificationStatus.AUTHENTICATION_FAILED),
            (21004, VerificationStatus.SHARED_SECRET_MISMATCH),
            (21005, VerificationStatus.SERVER_UNAVAILABLE),
            (21010, VerificationStatus.UNKNOWN),
        ],
    )
    async def test_terminal_codes_are_classified_without_retry(self, code, expected):
        endpoints = AppleEndpoints(production=apple_body(code))

        result = await make_gateway(endpoints).verify(blob("a"))

        assert endpoints.urls() == [PRODUCTION_URL]
        assert result.status == expected
        assert result.status_code == code
        assert not result.is_valid
        assert result.is_retryable == (code == 21005)


class TestNetworkFailures:
    @pytest.mark.asyncio
    async def test_production_timeout(self):
        endpoints = AppleEndpoints(production=httpx.ReadTimeout("slow"))

        with pytest.raises(VerificationNetworkError) as exc_info:
            await make_gateway(endpoints).verify(blob("a"))

        assert exc_info.value.timed_out
        assert exc_info.value.environment == "Production"

    @pytest.mark.asyncio
    async def test_sandbox_connection_failure(self):
        endpoints = AppleEndpoints(
            production=apple_body(21007),
            sandbox=httpx.ConnectError("reset"),
        )

        with pytest.raises(VerificationNetworkError) as exc_info:
            await make_gateway(endpoints).verify(blob("a"))

        assert exc_info.value.environment == "Sandbox"
        assert not exc_info.value.timed_out

    @pytest.mark.asyncio
    async def test_non_200_upstream_is_network_error(self):
        endpoints = AppleEndpoints(production=httpx.Response(502, text="bad gateway"))

        with pytest.raises(VerificationNetworkError):
            await make_gateway(endpoints).verify(blob("a"))

    @pytest.mark.asyncio
    async def test_body_without_status_is_network_error(self):
        endpoints = AppleEndpoints(production={"unexpected": True})

        with pytest.raises(VerificationNetworkError):
            await make_gateway(endpoints).verify(blob("a"))
