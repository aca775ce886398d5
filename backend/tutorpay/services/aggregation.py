"""Lesson hours aggregation: reduces a week's lessons to per-tutor hours and per-family charges.

Aggregation is best-effort. Lessons without a tutor or with a non-positive
duration are skipped rather than rejected; the persisted artifacts produced by
the generators are what counts as authoritative.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from tutorpay.config import get_settings
from tutorpay.models.enums import LessonType, ReportStatus
from tutorpay.schemas.invoice import InvoiceLineItem
from tutorpay.schemas.payroll import LessonDetail, PayrollTotals
from tutorpay.services.scheduling import get_scheduling_service
from tutorpay.services.week import week_interval

if TYPE_CHECKING:
    from tutorpay.models.payroll import PayrollItem
    from tutorpay.services.directory import DirectoryService, FamilyInfo, StudentInfo
    from tutorpay.services.scheduling import LessonInfo
    from tutorpay.services.week import WeekRange

logger = logging.getLogger(__name__)

_SECONDS_PER_HOUR = 3600


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------


@dataclass
class TutorHours:
    """Lesson hours accumulated for one tutor."""

    tutor_id: str
    tutor_name: str | None = None
    lesson_hours: float = 0.0
    lesson_count: int = 0
    lessons: list[LessonDetail] = field(default_factory=list)


@dataclass
class FamilyBilling:
    """Line items accumulated for one family."""

    family_id: str
    family_name: str
    parent_email: str | None = None
    line_items: list[InvoiceLineItem] = field(default_factory=list)

    @property
    def total(self) -> float:
        return round(sum(item.price for item in self.line_items), 2)


@dataclass
class ReportBreakdown:
    """Attendance report counts for a week, ignoring cancelled reports."""

    present: int = 0
    partial: int = 0
    no_show: int = 0
    unreported: int = 0

    @property
    def total(self) -> int:
        return self.present + self.partial + self.no_show + self.unreported

    def percentages(self) -> dict[str, float]:
        denominator = self.total or 1
        return {
            "present": self.present / denominator * 100,
            "partial": self.partial / denominator * 100,
            "no_show": self.no_show / denominator * 100,
            "unreported": self.unreported / denominator * 100,
        }


# ---------------------------------------------------------------------------
# Pure helpers (no I/O)
# ---------------------------------------------------------------------------


def lesson_duration_hours(lesson: LessonInfo) -> float:
    """Duration of a lesson in fractional hours."""
    return (lesson.end_at - lesson.start_at).total_seconds() / _SECONDS_PER_HOUR


def effective_lesson_type(lesson: LessonInfo) -> LessonType:
    """Lesson type after taking the per-student reports into account.

    A lesson whose every report is cancelled counts as cancelled; a cancelled
    lesson that still has a non-cancelled report counts as a normal lesson.
    """
    if not lesson.reports:
        return lesson.type
    if all(report.status == ReportStatus.CANCELLED for report in lesson.reports):
        return LessonType.CANCELLED
    if lesson.type == LessonType.CANCELLED:
        return LessonType.NORMAL
    return lesson.type


def is_cancelled(lesson: LessonInfo) -> bool:
    return effective_lesson_type(lesson) == LessonType.CANCELLED


def lessons_in_week(lessons: Iterable[LessonInfo], week: WeekRange) -> list[LessonInfo]:
    """Keep lessons whose start date falls inside the week.

    A lesson belongs to the week containing its start, even when it runs past
    Friday midnight.
    """
    return [lesson for lesson in lessons if week.start <= lesson.start_at.date() <= week.end]


def hours_by_tutor(lessons: Iterable[LessonInfo]) -> dict[str, TutorHours]:
    """Accumulate lesson hours per tutor, excluding cancelled lessons."""
    result: dict[str, TutorHours] = {}
    for lesson in lessons:
        lesson_type = effective_lesson_type(lesson)
        if lesson_type == LessonType.CANCELLED:
            continue
        if not lesson.tutor_id:
            logger.debug("Skipping lesson %s with no tutor", lesson.id)
            continue
        duration = lesson_duration_hours(lesson)
        if duration <= 0:
            logger.debug("Skipping lesson %s with non-positive duration", lesson.id)
            continue

        entry = result.get(lesson.tutor_id)
        if entry is None:
            entry = TutorHours(tutor_id=lesson.tutor_id, tutor_name=lesson.tutor_name)
            result[lesson.tutor_id] = entry
        entry.lesson_hours += duration
        entry.lesson_count += 1
        entry.lessons.append(
            LessonDetail(
                id=lesson.id,
                date=lesson.start_at,
                duration=duration,
                subject_group_name=lesson.subject_group_name,
                student_names=list(lesson.student_names),
                type=lesson_type,
            )
        )
    return result


def preview_totals(tutor_hours: Iterable[TutorHours]) -> PayrollTotals:
    """Totals for un-generated lesson hours (no additional hours yet)."""
    values = list(tutor_hours)
    lesson_hours = sum(t.lesson_hours for t in values)
    return PayrollTotals(
        lesson_hours=lesson_hours,
        additional_hours=0.0,
        total_hours=lesson_hours,
        lesson_count=sum(t.lesson_count for t in values),
        tutor_count=sum(1 for t in values if t.lesson_count > 0),
    )


def payroll_totals(items: Sequence[PayrollItem]) -> PayrollTotals:
    """Totals across the generated payroll items of a week."""
    return PayrollTotals(
        lesson_hours=sum(i.lesson_hours for i in items),
        additional_hours=sum(i.additional_hours for i in items),
        total_hours=sum(i.total_hours for i in items),
        lesson_count=sum(i.lesson_count for i in items),
        tutor_count=len(items),
    )


def report_status_breakdown(lessons: Iterable[LessonInfo]) -> ReportBreakdown:
    """Count per-student attendance by status across non-cancelled lessons.

    A student with no report, or a report without a status, counts as unreported.
    Cancelled reports are ignored.
    """
    breakdown = ReportBreakdown()
    for lesson in lessons:
        if is_cancelled(lesson):
            continue
        for student_id in lesson.student_ids:
            report = lesson.report_for(student_id)
            status = report.status if report is not None else None
            if status == ReportStatus.CANCELLED:
                continue
            if status == ReportStatus.PRESENT:
                breakdown.present += 1
            elif status == ReportStatus.PARTIAL:
                breakdown.partial += 1
            elif status == ReportStatus.NO_SHOW:
                breakdown.no_show += 1
            else:
                breakdown.unreported += 1
    return breakdown


def unreported_lesson_count(lessons: Iterable[LessonInfo]) -> int:
    """Number of non-cancelled lessons with at least one student still unreported."""
    count = 0
    for lesson in lessons:
        if is_cancelled(lesson):
            continue
        reported = {r.student_id for r in lesson.reports if r.status is not None}
        if any(student_id not in reported for student_id in lesson.student_ids):
            count += 1
    return count


def price_for(student: StudentInfo, duration: float) -> float:
    """Price of one student's share of a lesson at the student's hourly rate."""
    rate = student.hourly_rate if student.hourly_rate is not None else get_settings().default_hourly_rate
    return round(rate * duration, 2)


# ---------------------------------------------------------------------------
# Collaborator-backed aggregation
# ---------------------------------------------------------------------------


async def fetch_lessons_for_week(week: WeekRange) -> list[LessonInfo]:
    """Fetch every lesson that starts within the week from the scheduling service."""
    start, end = week_interval(week)
    lessons = await get_scheduling_service().list_lessons(start, end)
    return lessons_in_week(lessons, week)


async def hours_by_family(
    lessons: Iterable[LessonInfo],
    directory: DirectoryService,
) -> dict[str, FamilyBilling]:
    """Build one invoice line item per (lesson, student), grouped by family.

    Students who are unknown to the directory, have no family, or whose own
    report on the lesson is cancelled are skipped.
    """
    students: dict[str, StudentInfo | None] = {}
    families: dict[str, FamilyInfo | None] = {}
    result: dict[str, FamilyBilling] = {}

    for lesson in lessons:
        if is_cancelled(lesson):
            continue
        duration = lesson_duration_hours(lesson)
        if duration <= 0:
            continue

        for student_id in lesson.student_ids:
            report = lesson.report_for(student_id)
            if report is not None and report.status == ReportStatus.CANCELLED:
                continue

            if student_id not in students:
                students[student_id] = await directory.get_student(student_id)
            student = students[student_id]
            if student is None or not student.family_id:
                logger.debug("Skipping student %s on lesson %s: no family", student_id, lesson.id)
                continue

            if student.family_id not in families:
                families[student.family_id] = await directory.get_family(student.family_id)
            family = families[student.family_id]
            if family is None:
                logger.debug("Skipping student %s on lesson %s: unknown family", student_id, lesson.id)
                continue

            billing = result.get(family.id)
            if billing is None:
                billing = FamilyBilling(
                    family_id=family.id,
                    family_name=family.family_name,
                    parent_email=family.parent_email,
                )
                result[family.id] = billing

            price = price_for(student, duration)
            billing.line_items.append(
                InvoiceLineItem(
                    lesson_id=lesson.id,
                    student_id=student_id,
                    student_name=lesson.student_name(student_id) or student.full_name,
                    tutor_name=lesson.tutor_name or "Unknown Tutor",
                    date=lesson.start_at,
                    duration=duration,
                    subject=lesson.subject_group_name,
                    price=price,
                    original_price=price,
                )
            )
    return result
