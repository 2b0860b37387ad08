"""
SQLAlchemy model for the resolved entitlement.
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, String, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from biztomate.catalog import PlanId
from biztomate.database import Base


class UserEntitlement(Base):
    """
    The single live entitlement per user.
    card_quota NULL means unlimited.
    """

    __tablename__ = "user_entitlements"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    plan_id: Mapped[PlanId] = mapped_column(
        SQLEnum(PlanId),
        default=PlanId.FREE,
        nullable=False,
    )
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    scanned_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    card_quota: Mapped[int | None] = mapped_column(Integer, nullable=True)
    trial_ends_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    store_product_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    original_transaction_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<UserEntitlement(user_id={self.user_id}, plan={self.plan_id}, scanned={self.scanned_count})>"
