# ruff: noqa: TC003
from __future__ import annotations

from datetime import date
from typing import Any

import sqlalchemy as sa
from sqlmodel import Field

from tutorpay.models.base import ExportStatusMixin, WeekMetaMixin


class PayrollWeek(WeekMetaMixin, table=True):
    """Generation and lock state of one payroll week, keyed by its Saturday."""

    __tablename__ = "payroll_week"

    week_start: date = Field(primary_key=True)


class PayrollItem(ExportStatusMixin, table=True):
    """One tutor's payable hours for a week.

    Written in full by the payroll generator before the week is locked, folded
    into by additional-hours approvals, and patched on its export fields by the
    export reconciler.
    """

    __tablename__ = "payroll_item"
    __table_args__ = (sa.PrimaryKeyConstraint("week_start", "tutor_id"),)

    week_start: date = Field(
        sa_column=sa.Column(
            sa.Date, sa.ForeignKey("payroll_week.week_start", ondelete="CASCADE"), nullable=False, index=True
        ),
    )
    tutor_id: str = Field(max_length=128)
    tutor_name: str = Field(max_length=255)
    lesson_hours: float = 0.0
    lesson_count: int = 0
    lessons: list[dict[str, Any]] = Field(default_factory=list, sa_type=sa.JSON)
    additional_hours: float = 0.0
    additional_hours_details: list[dict[str, Any]] = Field(default_factory=list, sa_type=sa.JSON)
    total_hours: float = 0.0
    xero_timesheet_id: str | None = Field(default=None, max_length=255)
