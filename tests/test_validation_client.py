"""
Tests for the app-side receipt validation client.
"""

import json
from datetime import timedelta

import httpx
import pytest

from biztomate.core.exceptions import VerificationNetworkError
from biztomate.receipts.client import ReceiptValidationClient
from biztomate.receipts.status import StoreEnvironment, VerificationStatus
from tests.fakes import NOW, blob, handler_from

URL = "http://gateway.test/api/receipt-validation"


def make_client(status_code: int, body, seen=None) -> ReceiptValidationClient:
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(json.loads(request.content))
        return httpx.Response(status_code, json=body)

    return ReceiptValidationClient(handler_from(handler), url=URL, password="pw")


def success_body(expires, is_valid=True, status_code=0):
    return {
        "success": True,
        "environment": "Sandbox",
        "statusCode": status_code,
        "message": "ok",
        "subscription": {
            "isValid": is_valid,
            "productId": "com.biztomate.scanner.premium",
            "expiresDate": expires.isoformat(),
            "isExpired": expires < NOW,
            "originalTransactionId": "900",
            "transactionId": "1000",
        },
    }


class TestReceiptValidationClient:
    @pytest.mark.asyncio
    async def test_success_is_normalized(self):
        seen = []
        client = make_client(200, success_body(NOW + timedelta(days=30)), seen)

        result = await client.validate(blob("a"))

        assert seen == [{"receiptData": blob("a"), "password": "pw"}]
        assert result.is_valid
        assert result.environment == StoreEnvironment.SANDBOX
        assert result.store_product_id == "com.biztomate.scanner.premium"
        assert result.expires_at == NOW + timedelta(days=30)

    @pytest.mark.asyncio
    async def test_expired_success_body(self):
        body = success_body(NOW - timedelta(days=1), is_valid=False, status_code=21006)

        result = await make_client(200, body).validate(blob("a"))

        assert not result.is_valid
        assert result.is_expired
        assert result.status == VerificationStatus.SUBSCRIPTION_EXPIRED

    @pytest.mark.asyncio
    async def test_semantic_failure_is_a_result(self):
        body = {"success": False, "error": "Invalid receipt data", "statusCode": 21002}

        result = await make_client(400, body).validate(blob("a"))

        assert not result.is_valid
        assert result.status == VerificationStatus.MALFORMED_RECEIPT
        assert not result.is_retryable

    @pytest.mark.asyncio
    async def test_server_unavailable_is_retryable_result(self):
        body = {"success": False, "error": "Server unavailable", "statusCode": 21005, "retryable": True}

        result = await make_client(503, body).validate(blob("a"))

        assert result.status == VerificationStatus.SERVER_UNAVAILABLE
        assert result.is_retryable

    @pytest.mark.asyncio
    async def test_gateway_network_failure_raises(self):
        body = {"success": False, "error": "Receipt validation unavailable", "statusCode": 504, "retryable": True}

        with pytest.raises(VerificationNetworkError) as exc_info:
            await make_client(504, body).validate(blob("a"))

        assert exc_info.value.timed_out

    @pytest.mark.asyncio
    async def test_rate_limited_raises(self):
        with pytest.raises(VerificationNetworkError):
            await make_client(429, {"error": "Rate limit exceeded"}).validate(blob("a"))

    @pytest.mark.asyncio
    async def test_unreachable_gateway_raises(self):
        def handler(request):
            raise httpx.ConnectError("refused")

        client = ReceiptValidationClient(handler_from(handler), url=URL)

        with pytest.raises(VerificationNetworkError):
            await client.validate(blob("a"))
