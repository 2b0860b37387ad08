"""
Receipt validation router - the gateway's HTTP surface.
"""

import base64
import binascii
import logging
from typing import Optional

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from biztomate.catalog import is_unlimited
from biztomate.config import get_settings
from biztomate.core.clock import utcnow
from biztomate.core.exceptions import ReceiptRequestError, VerificationNetworkError
from biztomate.dependencies import AppSettings, Catalog, ReceiptGateway
from biztomate.rate_limit import limiter
from biztomate.receipts.schemas import (
    GatewayHealth,
    ProductListResponse,
    ReceiptValidationError,
    ReceiptValidationRequest,
    ReceiptValidationResponse,
    SubscriptionInfo,
    VerificationResult,
)
from biztomate.receipts.status import VerificationStatus, error_for

logger = logging.getLogger(__name__)

settings = get_settings()

router = APIRouter(prefix="/receipt-validation", tags=["Receipt Validation"])


def _error_response(
        http_status: int,
        error: str,
        status_code: int,
        message: Optional[str] = None,
        retryable: bool = False,
        environment=None,
) -> JSONResponse:
    content = ReceiptValidationError(
        error=error,
        status_code=status_code,
        message=message,
        retryable=retryable,
        environment=environment,
    )
    return JSONResponse(
        status_code=http_status,
        content=content.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


def _require_receipt(body: ReceiptValidationRequest) -> str:
    """Return the receipt with whitespace stripped, or raise if absent / not base64."""
    if not body.receipt_data or not body.receipt_data.strip():
        raise ReceiptRequestError("Receipt data is required")

    receipt = "".join(body.receipt_data.split())
    try:
        base64.b64decode(receipt, validate=True)
    except (binascii.Error, ValueError):
        raise ReceiptRequestError("Receipt must be valid base64-encoded data")
    return receipt


def _to_response(result: VerificationResult) -> ReceiptValidationResponse:
    return ReceiptValidationResponse(
        environment=result.environment,
        subscription=SubscriptionInfo(
            is_valid=result.is_valid and not result.is_expired,
            product_id=result.store_product_id,
            expires_date=result.expires_at,
            is_expired=result.is_expired,
            original_transaction_id=result.original_transaction_id,
            transaction_id=result.transaction_id,
            purchase_date=result.purchased_at,
            auto_renew_status=result.auto_renew,
            grace_period_expires_date=result.grace_period_expires_at,
        ),
        status_code=result.status_code,
        message=result.raw_message,
    )


@router.post(
    "",
    response_model=ReceiptValidationResponse,
    status_code=status.HTTP_200_OK,
    summary="Validate an App Store receipt",
    description=(
        "Verify a receipt against Apple (production first, one sandbox retry on 21007) "
        "and return the normalized subscription."
    ),
    responses={
        200: {"model": ReceiptValidationResponse, "description": "Receipt verified (possibly expired)"},
        400: {"model": ReceiptValidationError, "description": "Invalid request or receipt"},
        429: {"description": "Rate limit exceeded"},
        503: {"model": ReceiptValidationError, "description": "Verification unavailable, retry later"},
        504: {"model": ReceiptValidationError, "description": "Verification timed out, retry later"},
    },
)
@limiter.limit(settings.receipt_validation_rate_limit)
async def validate_receipt(
    request: Request,
    body: ReceiptValidationRequest,
    gateway: ReceiptGateway,
    app_settings: AppSettings,
):
    """Validate a receipt and classify Apple's answer."""
    try:
        receipt = _require_receipt(body)
    except ReceiptRequestError as e:
        logger.warning(f"[ReceiptRouter] Rejected request: {e.message}")
        return _error_response(status.HTTP_400_BAD_REQUEST, e.message, status.HTTP_400_BAD_REQUEST)

    password = body.password or app_settings.apple_shared_secret
    if not password:
        return _error_response(
            status.HTTP_400_BAD_REQUEST,
            "Shared secret is required",
            status.HTTP_400_BAD_REQUEST,
            message="Missing shared secret",
        )

    try:
        result = await gateway.verify(receipt, password=password)
    except VerificationNetworkError as e:
        http_status = (
            status.HTTP_504_GATEWAY_TIMEOUT if e.timed_out else status.HTTP_503_SERVICE_UNAVAILABLE
        )
        logger.error(f"[ReceiptRouter] Verification unavailable: {e.message}")
        return _error_response(
            http_status,
            "Receipt validation unavailable",
            http_status,
            message=e.message,
            retryable=True,
        )

    if result.status in (VerificationStatus.SUCCESS, VerificationStatus.SUBSCRIPTION_EXPIRED):
        return _to_response(result)

    logger.warning(
        f"[ReceiptRouter] Receipt rejected: status={result.status_code} ({result.raw_message})"
    )
    http_status = (
        status.HTTP_503_SERVICE_UNAVAILABLE if result.is_retryable else status.HTTP_400_BAD_REQUEST
    )
    return _error_response(
        http_status,
        error_for(result.status_code),
        result.status_code,
        message=result.raw_message,
        retryable=result.is_retryable,
        environment=result.environment,
    )


@router.get(
    "/products",
    response_model=ProductListResponse,
    summary="List store product identifiers",
)
async def list_products(catalog: Catalog) -> ProductListResponse:
    """Static list of store product identifiers and their plans."""
    plans = [
        {
            "id": plan.plan_id.value,
            "name": plan.name,
            "productId": plan.store_product_id,
            "price": plan.price_display,
            "cardsLimit": None if is_unlimited(plan.card_quota) else plan.card_quota,
            "unlimited": is_unlimited(plan.card_quota),
            "features": list(plan.features),
        }
        for plan in catalog.paid_plans()
    ]
    return ProductListResponse(products=catalog.store_product_ids(), plans=plans)


@router.get(
    "/health",
    response_model=GatewayHealth,
    summary="Gateway health",
)
async def gateway_health(app_settings: AppSettings) -> GatewayHealth:
    """Service liveness plus the upstream verification URLs in use."""
    return GatewayHealth(
        status="healthy",
        service="receipt-validation",
        version=app_settings.app_version,
        timestamp=utcnow(),
        production_url=app_settings.apple_production_url,
        sandbox_url=app_settings.apple_sandbox_url,
    )
