# ruff: noqa: TC003
from __future__ import annotations

from datetime import date
from typing import Any

import sqlalchemy as sa
from sqlmodel import Field

from tutorpay.models.base import ExportStatusMixin, TimestampMixin, UUIDBase, WeekMetaMixin


class InvoiceWeek(WeekMetaMixin, table=True):
    """Generation and lock state of one invoicing week, keyed by its Saturday."""

    __tablename__ = "invoice_week"

    week_start: date = Field(primary_key=True)


class Invoice(UUIDBase, TimestampMixin, ExportStatusMixin, table=True):
    """One family's bill for a week, one line item per (lesson, student)."""

    __tablename__ = "invoice"
    __table_args__ = (sa.UniqueConstraint("week_start", "family_id", name="uq_invoice_week_family"),)

    week_start: date = Field(
        sa_column=sa.Column(
            sa.Date, sa.ForeignKey("invoice_week.week_start", ondelete="CASCADE"), nullable=False, index=True
        ),
    )
    week_end: date
    family_id: str = Field(max_length=128)
    family_name: str = Field(max_length=255)
    parent_email: str | None = Field(default=None, max_length=255)
    total: float = 0.0
    line_items: list[dict[str, Any]] = Field(default_factory=list, sa_type=sa.JSON)
    edited_since_generation: bool = False
    xero_invoice_id: str | None = Field(default=None, max_length=255)
    xero_invoice_number: str | None = Field(default=None, max_length=255)
