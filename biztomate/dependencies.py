"""
FastAPI dependencies for dependency injection.
"""

from typing import Annotated, Optional

import httpx
from fastapi import Depends, Request

from biztomate.catalog import ProductCatalog, get_catalog
from biztomate.config import Settings, get_settings
from biztomate.receipts.gateway import AppleReceiptGateway


def get_http_client(request: Request) -> Optional[httpx.AsyncClient]:
    """
    Shared outbound HTTP client created in the application lifespan.
    None when the app runs without lifespan (the gateway then opens its own).
    """
    return getattr(request.app.state, "http_client", None)


def get_receipt_gateway(
        http_client: Annotated[Optional[httpx.AsyncClient], Depends(get_http_client)],
) -> AppleReceiptGateway:
    """Provides the single verifyReceipt gateway used by every route."""
    return AppleReceiptGateway(http_client)


# Type aliases for cleaner dependency injection
AppSettings = Annotated[Settings, Depends(get_settings)]
Catalog = Annotated[ProductCatalog, Depends(get_catalog)]
ReceiptGateway = Annotated[AppleReceiptGateway, Depends(get_receipt_gateway)]
