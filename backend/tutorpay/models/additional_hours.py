# ruff: noqa: TC003
from __future__ import annotations

from datetime import date, datetime

import sqlalchemy as sa
from sqlmodel import Field

from tutorpay.models.base import TimestampMixin, UUIDBase
from tutorpay.models.enums import RequestStatus


class AdditionalHoursRequest(UUIDBase, TimestampMixin, table=True):
    """A tutor's claim for paid hours worked outside scheduled lessons."""

    __tablename__ = "additional_hours_request"
    __table_args__ = (
        sa.Index("ix_additional_hours_week_status", "week_start", "status"),
        sa.UniqueConstraint("tutor_id", "idempotency_key", name="uq_additional_hours_idempotency"),
    )

    tutor_id: str = Field(max_length=128, index=True)
    tutor_name: str | None = Field(default=None, max_length=255)
    week_start: date = Field(index=True)
    hours: float
    description: str
    notes: str
    status: str = Field(
        default=RequestStatus.PENDING, max_length=50, index=True, sa_column_kwargs={"server_default": "pending"}
    )
    reviewed_at: datetime | None = Field(default=None, sa_type=sa.DateTime(timezone=True))  # ty: ignore[invalid-argument-type]
    reviewed_by: str | None = Field(default=None, max_length=128)
    idempotency_key: str | None = Field(default=None, max_length=255)
