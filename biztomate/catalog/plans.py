"""
Product catalog - static mapping of plans to store SKUs, prices and card quotas.
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Dict, List, Optional, Tuple

from biztomate.config import Settings, get_settings

logger = logging.getLogger(__name__)

# Unbounded card quota. Quota arithmetic must special-case it.
UNLIMITED: Optional[int] = None


class PlanId(str, Enum):
    """Subscription plan tiers."""
    FREE = "free"
    BASIC = "basic"
    STANDARD = "standard"
    PREMIUM = "premium"
    UNLIMITED = "unlimited"


@dataclass(frozen=True)
class ProductPlan:
    """One purchasable (or the free) plan."""
    plan_id: PlanId
    name: str
    store_product_id: Optional[str]
    card_quota: Optional[int]
    price_display: str
    features: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_unlimited(self) -> bool:
        return self.card_quota is UNLIMITED


def is_unlimited(quota: Optional[int]) -> bool:
    return quota is UNLIMITED


def quota_rank(quota: Optional[int]) -> float:
    """Ordering key for quotas; UNLIMITED outranks every finite quota."""
    return math.inf if quota is UNLIMITED else float(quota)


class ProductCatalog:
    """Immutable lookup over the configured plans."""

    def __init__(self, plans: List[ProductPlan], aliases: Optional[Dict[str, PlanId]] = None):
        self._by_plan: Dict[PlanId, ProductPlan] = {p.plan_id: p for p in plans}
        if PlanId.FREE not in self._by_plan:
            raise ValueError("Catalog requires a free plan")

        self._by_product: Dict[str, ProductPlan] = {
            p.store_product_id: p for p in plans if p.store_product_id
        }
        for product_id, plan_id in (aliases or {}).items():
            self._by_product.setdefault(product_id, self._by_plan[plan_id])

    def get(self, plan_id: PlanId) -> ProductPlan:
        return self._by_plan[PlanId(plan_id)]

    @property
    def free_plan(self) -> ProductPlan:
        return self._by_plan[PlanId.FREE]

    def plan_for_product(self, store_product_id: Optional[str]) -> Optional[ProductPlan]:
        """Reverse lookup from a store SKU (current or legacy) to its plan."""
        if not store_product_id:
            return None
        return self._by_product.get(store_product_id)

    def quota_for(self, plan_id: PlanId) -> Optional[int]:
        return self.get(plan_id).card_quota

    def paid_plans(self) -> List[ProductPlan]:
        return [p for p in self._by_plan.values() if p.store_product_id]

    def store_product_ids(self) -> List[str]:
        """Primary SKUs, in plan order. Legacy aliases are not listed."""
        return [p.store_product_id for p in self.paid_plans()]


def build_catalog(settings: Settings) -> ProductCatalog:
    """Build the catalog from settings."""
    plans = [
        ProductPlan(
            plan_id=PlanId.FREE,
            name="Free",
            store_product_id=None,
            card_quota=settings.free_card_quota,
            price_display="Free",
            features=(f"{settings.free_card_quota} Cards", "Basic OCR"),
        ),
        ProductPlan(
            plan_id=PlanId.BASIC,
            name="Basic",
            store_product_id=settings.product_id_basic,
            card_quota=100,
            price_display="$19.99 CAD/year",
            features=("100 Cards", "Advanced OCR", "Export to Sheets", "Email Support"),
        ),
        ProductPlan(
            plan_id=PlanId.STANDARD,
            name="Standard",
            store_product_id=settings.product_id_standard,
            card_quota=250,
            price_display="$24.99 CAD/year",
            features=("250 Cards", "Advanced OCR", "Export to Sheets", "Priority Support"),
        ),
        ProductPlan(
            plan_id=PlanId.PREMIUM,
            name="Premium",
            store_product_id=settings.product_id_premium,
            card_quota=500,
            price_display="$36.99 CAD/year",
            features=("500 Cards", "Advanced OCR", "All Export Options", "Premium Support"),
        ),
        ProductPlan(
            plan_id=PlanId.UNLIMITED,
            name="Unlimited",
            store_product_id=settings.product_id_unlimited,
            card_quota=UNLIMITED,
            price_display="$49.99 CAD/year",
            features=(
                "Unlimited Cards",
                "Advanced OCR",
                "All Export Options",
                "Premium Support",
                "Team Sharing",
            ),
        ),
    ]

    aliases: Dict[str, PlanId] = {}
    if settings.legacy_product_prefix:
        for plan in plans:
            if plan.store_product_id:
                aliases[f"{settings.legacy_product_prefix}{plan.plan_id.value}"] = plan.plan_id

    logger.debug(f"[Catalog] Built catalog with {len(plans)} plans, {len(aliases)} legacy SKUs")
    return ProductCatalog(plans, aliases)


@lru_cache
def get_catalog() -> ProductCatalog:
    """Catalog built once from the cached settings."""
    return build_catalog(get_settings())
