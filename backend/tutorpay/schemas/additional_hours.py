# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Self

from pydantic import BaseModel, Field, field_validator, model_validator

from tutorpay.models.enums import RequestStatus
from tutorpay.services.week import WEEK_START_WEEKDAY

# ---------------------------------------------------------------------------
# Request payloads
# ---------------------------------------------------------------------------


class SubmitAdditionalHoursPayload(BaseModel):
    """Request body for a tutor's additional-hours claim."""

    tutor_id: str = Field(min_length=1, max_length=128)
    tutor_name: str | None = Field(default=None, max_length=255)
    week_start: date
    hours: float = Field(gt=0, allow_inf_nan=False)
    description: str = Field(max_length=1000)
    notes: str = Field(max_length=2000)
    idempotency_key: str | None = Field(default=None, max_length=255)

    @field_validator("description", "notes")
    @classmethod
    def _require_text(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            msg = "must not be empty"
            raise ValueError(msg)
        return stripped

    @model_validator(mode="after")
    def _validate_week(self) -> Self:
        if self.week_start.weekday() != WEEK_START_WEEKDAY:
            msg = "week_start must be a Saturday"
            raise ValueError(msg)
        return self


class ReviewAdditionalHoursPayload(BaseModel):
    """Request body for approving or declining a pending request."""

    approved: bool
    reviewed_by: str | None = Field(default=None, max_length=128)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class AdditionalHoursResponse(BaseModel):
    """Response schema for a single additional-hours request."""

    id: uuid.UUID
    tutor_id: str
    tutor_name: str | None
    week_start: date
    hours: float
    description: str
    notes: str
    status: RequestStatus
    created_at: datetime
    reviewed_at: datetime | None
    reviewed_by: str | None
    idempotency_key: str | None


class AdditionalHoursListResponse(BaseModel):
    """Paginated list of additional-hours requests."""

    items: list[AdditionalHoursResponse]
    total: int
