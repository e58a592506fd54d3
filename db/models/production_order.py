"""
db/models/production_order.py

Canonical production order rows reconciled from bulk exports.
"""

from __future__ import annotations

import uuid
from datetime import date

from sqlalchemy import Date, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, TimestampMixin


class ProductionOrder(Base, TimestampMixin):
    """
    One production order keyed by ``production_order_number``.

    Column names mirror the canonical export header exactly.
    """

    __tablename__ = "production_orders"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    arrangement_method: Mapped[str | None] = mapped_column(Text, nullable=True)
    inspection_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    customer_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    part_number: Mapped[str | None] = mapped_column(String(128), nullable=True)
    production_order_number: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Business key; upserts conflict on this column",
    )
    line_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    work_area: Mapped[str | None] = mapped_column(Text, nullable=True)
    operator_main: Mapped[str | None] = mapped_column(Text, nullable=True)
    operator_plating: Mapped[str | None] = mapped_column(Text, nullable=True)
    plating_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    plating_jig: Mapped[str | None] = mapped_column(Text, nullable=True)
    issue_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    plating_payout_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    order_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    oohito_shipment_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    plating_process: Mapped[str | None] = mapped_column(Text, nullable=True)
    tamagawa_receipt_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    operator_5x: Mapped[str | None] = mapped_column(Text, nullable=True)
    shelf_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    plating_capacity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    bending_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    brazing_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    machine_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    brazing_jig: Mapped[str | None] = mapped_column(Text, nullable=True)
    subcontractor: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "production_order_number",
            name="uq_production_orders_production_order_number",
        ),
        Index("ix_production_orders_customer_name", "customer_name"),
        Index("ix_production_orders_due_date", "due_date"),
        Index("ix_production_orders_part_number", "part_number"),
        Index("ix_production_orders_created_at", "created_at"),
    )
