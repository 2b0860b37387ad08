"""
Async SQLAlchemy engine, session factory and declarative base.

Backs the device-local durable store: cached receipts and the resolved
entitlement.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from biztomate.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


engine = create_async_engine(settings.database_url, echo=settings.debug)

async_session_maker = async_sessionmaker(engine, expire_on_commit=False)


async def create_tables(bind: Optional[AsyncEngine] = None) -> None:
    """Create all tables registered on Base."""
    # Import models so they register with Base.metadata
    from biztomate.entitlements import models as _entitlement_models  # noqa: F401
    from biztomate.purchases import models as _purchase_models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("[Database] Tables created/verified")
