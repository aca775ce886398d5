# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Self

from pydantic import BaseModel, Field, model_validator

from tutorpay.services.week import week_bounds_problem

# ---------------------------------------------------------------------------
# Request payloads
# ---------------------------------------------------------------------------


class GenerateInvoicesPayload(BaseModel):
    """Request body for generating (or explicitly regenerating) a week's invoices."""

    start: date
    end: date

    @model_validator(mode="after")
    def _validate_week(self) -> Self:
        problem = week_bounds_problem(self.start, self.end)
        if problem is not None:
            raise ValueError(problem)
        return self


class InvoiceLineItem(BaseModel):
    """One (lesson, student) charge on a family invoice."""

    lesson_id: str | None = None
    student_id: str | None = None
    student_name: str
    tutor_name: str
    date: datetime
    duration: float = Field(ge=0)
    subject: str | None = None
    price: float = Field(ge=0)
    original_price: float | None = None


class UpdateInvoicePayload(BaseModel):
    """Manual edit of a generated invoice's line items."""

    line_items: list[InvoiceLineItem]


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class InvoiceWeekMeta(BaseModel):
    """Generation and lock state of an invoicing week."""

    week_start: date
    week_end: date
    generated: bool
    locked: bool
    last_generated: datetime | None
    generated_by: str | None
    locked_at: datetime | None
    has_export_errors: bool
    last_export_attempt: datetime | None


class InvoiceResponse(BaseModel):
    """Response schema for one family invoice."""

    id: uuid.UUID
    week_start: date
    week_end: date
    family_id: str
    family_name: str
    parent_email: str | None
    total: float
    line_items: list[InvoiceLineItem]
    edited_since_generation: bool
    exported_to_xero: bool
    xero_export_error: str | None
    xero_invoice_id: str | None
    xero_invoice_number: str | None
    exported_at: datetime | None
    export_attempted_at: datetime | None
    created_at: datetime


class InvoiceWeekResponse(BaseModel):
    """An invoicing week: meta (None until generated) and its invoices."""

    week_start: date
    week_end: date
    meta: InvoiceWeekMeta | None
    invoices: list[InvoiceResponse]
    total: float


class SkippedInvoice(BaseModel):
    """An invoice that regeneration left untouched."""

    invoice_id: uuid.UUID
    family_name: str
    reason: str


class InvoiceGenerationResponse(BaseModel):
    """Outcome of generating or regenerating a week's invoices."""

    week_start: date
    week_end: date
    generated: int
    skipped: list[SkippedInvoice]
    invoices: list[InvoiceResponse]
