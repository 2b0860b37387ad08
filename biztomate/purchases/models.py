"""
SQLAlchemy model for cached purchase receipts.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import JSON, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from biztomate.database import Base


class CachedReceipt(Base):
    """
    A purchase receipt recorded before any network validation.

    The receipt columns are written once. Only the bookkeeping columns
    (finalized_at, verified_at, last_verification) change afterwards.
    """

    __tablename__ = "cached_receipts"
    __table_args__ = (
        Index("ix_cached_receipts_user_lineage", "user_id", "original_transaction_id"),
    )

    transaction_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    original_transaction_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    store_product_id: Mapped[str] = mapped_column(String(255), nullable=False)
    receipt_blob: Mapped[str] = mapped_column(Text, nullable=False)
    purchased_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Bookkeeping
    finalized_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    verified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_verification: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<CachedReceipt(transaction_id={self.transaction_id}, product={self.store_product_id})>"
