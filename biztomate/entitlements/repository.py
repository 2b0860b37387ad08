"""
Repository layer for the resolved entitlement.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from biztomate.core.clock import ensure_utc
from biztomate.entitlements.models import UserEntitlement
from biztomate.entitlements.schemas import Entitlement

logger = logging.getLogger(__name__)


class EntitlementStore:
    """Durable entitlement per user. Every write is committed before returning."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get(self, user_id: str) -> Optional[Entitlement]:
        """Get a user's entitlement or None."""
        async with self.session_factory() as session:
            row = await session.get(UserEntitlement, user_id)
            if row is None:
                return None
            return _to_entitlement(row)

    async def save(self, user_id: str, entitlement: Entitlement) -> Entitlement:
        """Create or replace a user's entitlement."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(UserEntitlement).where(UserEntitlement.user_id == user_id)
            )
            row = result.scalar_one_or_none()
            now = datetime.now(timezone.utc)

            if row is None:
                row = UserEntitlement(user_id=user_id, created_at=now)
                session.add(row)

            row.plan_id = entitlement.plan_id
            row.expires_at = entitlement.expires_at
            row.scanned_count = entitlement.scanned_count
            row.card_quota = entitlement.card_quota
            row.trial_ends_at = entitlement.trial_ends_at
            row.store_product_id = entitlement.store_product_id
            row.original_transaction_id = entitlement.original_transaction_id
            row.updated_at = now

            await session.commit()

        logger.debug(
            f"[EntitlementStore] Saved {entitlement.plan_id.value} for user {user_id} "
            f"(scanned={entitlement.scanned_count})"
        )
        return entitlement


def _to_entitlement(row: UserEntitlement) -> Entitlement:
    return Entitlement(
        plan_id=row.plan_id,
        expires_at=ensure_utc(row.expires_at),
        scanned_count=row.scanned_count,
        card_quota=row.card_quota,
        trial_ends_at=ensure_utc(row.trial_ends_at),
        store_product_id=row.store_product_id,
        original_transaction_id=row.original_transaction_id,
    )
