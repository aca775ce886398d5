# ruff: noqa: TC003
from __future__ import annotations

from datetime import date, datetime
from typing import Self

from pydantic import BaseModel, model_validator

from tutorpay.models.enums import LessonType
from tutorpay.services.week import week_bounds_problem

# ---------------------------------------------------------------------------
# Request payloads
# ---------------------------------------------------------------------------


class GeneratePayrollPayload(BaseModel):
    """Request body for generating a week's payroll."""

    week_start: date
    week_end: date

    @model_validator(mode="after")
    def _validate_week(self) -> Self:
        problem = week_bounds_problem(self.week_start, self.week_end)
        if problem is not None:
            raise ValueError(problem)
        return self


# ---------------------------------------------------------------------------
# Shared detail
# ---------------------------------------------------------------------------


class LessonDetail(BaseModel):
    """Per-lesson detail carried on a tutor's hours for audit and display."""

    id: str
    date: datetime
    duration: float
    subject_group_name: str | None = None
    student_names: list[str] = []
    type: LessonType


class AdditionalHoursDetail(BaseModel):
    """An approved additional-hours request folded into a payroll item."""

    request_id: str
    hours: float
    description: str
    notes: str
    approved_at: datetime | None = None


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class PayrollTotals(BaseModel):
    """Week-level totals across all tutors."""

    lesson_hours: float
    additional_hours: float
    total_hours: float
    lesson_count: int
    tutor_count: int


class PayrollWeekMeta(BaseModel):
    """Generation and lock state of a payroll week."""

    week_start: date
    week_end: date
    generated: bool
    locked: bool
    last_generated: datetime | None
    generated_by: str | None
    locked_at: datetime | None
    has_export_errors: bool
    last_export_attempt: datetime | None


class PayrollItemResponse(BaseModel):
    """Response schema for one tutor's payroll item."""

    week_start: date
    tutor_id: str
    tutor_name: str
    lesson_hours: float
    lesson_count: int
    lessons: list[LessonDetail]
    additional_hours: float
    additional_hours_details: list[AdditionalHoursDetail]
    total_hours: float
    exported_to_xero: bool
    xero_export_error: str | None
    xero_timesheet_id: str | None
    exported_at: datetime | None
    export_attempted_at: datetime | None


class PayrollWeekResponse(BaseModel):
    """A payroll week: meta (None until generated), items and totals."""

    week_start: date
    week_end: date
    meta: PayrollWeekMeta | None
    items: list[PayrollItemResponse]
    totals: PayrollTotals


class TutorHoursPreview(BaseModel):
    """Un-persisted lesson hours for one tutor."""

    tutor_id: str
    tutor_name: str
    lesson_hours: float
    lesson_count: int
    lessons: list[LessonDetail]


class PayrollPreviewResponse(BaseModel):
    """Lesson hours per tutor for a week that may not be generated yet."""

    week_start: date
    week_end: date
    tutors: list[TutorHoursPreview]
    totals: PayrollTotals
    pending_request_count: int
