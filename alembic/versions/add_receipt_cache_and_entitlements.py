"""add receipt cache and entitlements tables

Revision ID: add_receipt_cache_and_entitlements
Revises:
Create Date: 2026-10-19

Creates the cached_receipts table (receipts recorded before validation)
and the user_entitlements table (resolved plan, trial window, scan count).
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.engine.reflection import Inspector

# revision identifiers, used by Alembic.
revision: str = "add_receipt_cache_and_entitlements"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    conn = op.get_bind()
    inspector = Inspector.from_engine(conn)
    existing_tables = inspector.get_table_names()

    if "cached_receipts" not in existing_tables:
        op.create_table(
            "cached_receipts",
            sa.Column("transaction_id", sa.String(255), primary_key=True),
            sa.Column("user_id", sa.String(64), nullable=False, index=True),
            sa.Column("original_transaction_id", sa.String(255), nullable=True),
            sa.Column("store_product_id", sa.String(255), nullable=False),
            sa.Column("receipt_blob", sa.Text, nullable=False),
            sa.Column("purchased_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("finalized_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_verification", sa.JSON, nullable=True),
            sa.Column(
                "created_at",
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.func.now(),
            ),
        )
        op.create_index(
            "ix_cached_receipts_user_lineage",
            "cached_receipts",
            ["user_id", "original_transaction_id"],
        )

    if "user_entitlements" not in existing_tables:
        op.create_table(
            "user_entitlements",
            sa.Column("user_id", sa.String(64), primary_key=True),
            sa.Column(
                "plan_id",
                sa.Enum("FREE", "BASIC", "STANDARD", "PREMIUM", "UNLIMITED", name="planid"),
                nullable=False,
                server_default="FREE",
            ),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("scanned_count", sa.Integer, nullable=False, server_default="0"),
            sa.Column("card_quota", sa.Integer, nullable=True),
            sa.Column("trial_ends_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("store_product_id", sa.String(255), nullable=True),
            sa.Column("original_transaction_id", sa.String(255), nullable=True),
            sa.Column(
                "created_at",
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.func.now(),
            ),
            sa.Column(
                "updated_at",
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.func.now(),
            ),
        )


def downgrade() -> None:
    op.drop_table("user_entitlements")
    op.drop_index("ix_cached_receipts_user_lineage", table_name="cached_receipts")
    op.drop_table("cached_receipts")
    if op.get_bind().dialect.name == "postgresql":
        op.execute("DROP TYPE IF EXISTS planid")
