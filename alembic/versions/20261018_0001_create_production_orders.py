"""create production_orders table

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 09:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "production_orders",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("arrangement_method", sa.Text(), nullable=True),
        sa.Column("inspection_type", sa.Text(), nullable=True),
        sa.Column("customer_name", sa.Text(), nullable=True),
        sa.Column("part_number", sa.String(length=128), nullable=True),
        sa.Column(
            "production_order_number",
            sa.String(length=64),
            nullable=False,
            comment="Business key; upserts conflict on this column",
        ),
        sa.Column("line_code", sa.String(length=64), nullable=True),
        sa.Column("work_area", sa.Text(), nullable=True),
        sa.Column("operator_main", sa.Text(), nullable=True),
        sa.Column("operator_plating", sa.Text(), nullable=True),
        sa.Column("plating_type", sa.Text(), nullable=True),
        sa.Column("plating_jig", sa.Text(), nullable=True),
        sa.Column("issue_date", sa.Date(), nullable=True),
        sa.Column("plating_payout_date", sa.Date(), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("order_quantity", sa.Integer(), nullable=True),
        sa.Column("oohito_shipment_date", sa.Date(), nullable=True),
        sa.Column("plating_process", sa.Text(), nullable=True),
        sa.Column("tamagawa_receipt_date", sa.Date(), nullable=True),
        sa.Column("operator_5x", sa.Text(), nullable=True),
        sa.Column("shelf_number", sa.String(length=64), nullable=True),
        sa.Column("plating_capacity", sa.Integer(), nullable=True),
        sa.Column("bending_count", sa.Integer(), nullable=True),
        sa.Column("brazing_count", sa.Integer(), nullable=True),
        sa.Column("machine_number", sa.String(length=64), nullable=True),
        sa.Column("brazing_jig", sa.Text(), nullable=True),
        sa.Column("subcontractor", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "production_order_number",
            name="uq_production_orders_production_order_number",
        ),
    )
    op.create_index("ix_production_orders_customer_name", "production_orders", ["customer_name"], unique=False)
    op.create_index("ix_production_orders_due_date", "production_orders", ["due_date"], unique=False)
    op.create_index("ix_production_orders_part_number", "production_orders", ["part_number"], unique=False)
    op.create_index("ix_production_orders_created_at", "production_orders", ["created_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_production_orders_created_at", table_name="production_orders")
    op.drop_index("ix_production_orders_part_number", table_name="production_orders")
    op.drop_index("ix_production_orders_due_date", table_name="production_orders")
    op.drop_index("ix_production_orders_customer_name", table_name="production_orders")
    op.drop_table("production_orders")
