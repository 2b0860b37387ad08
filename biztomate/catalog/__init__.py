"""
Catalog module - plans, store SKUs and card quotas.
"""

from biztomate.catalog.plans import (
    UNLIMITED,
    PlanId,
    ProductCatalog,
    ProductPlan,
    build_catalog,
    get_catalog,
    is_unlimited,
    quota_rank,
)

__all__ = [
    "UNLIMITED",
    "PlanId",
    "ProductCatalog",
    "ProductPlan",
    "build_catalog",
    "get_catalog",
    "is_unlimited",
    "quota_rank",
]
