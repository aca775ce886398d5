from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, Field

from tutorpay.models.enums import LessonType, ReportStatus


class LessonReport(BaseModel):
    """Attendance report for one student on a lesson."""

    student_id: str
    status: ReportStatus | None = None  # None until the tutor reports


class LessonInfo(BaseModel):
    """Lesson record owned by the scheduling system. Read-only here."""

    id: str
    tutor_id: str | None = None
    tutor_name: str | None = None
    student_ids: list[str] = Field(default_factory=list)
    student_names: list[str] = Field(default_factory=list)
    subject_group_id: str | None = None
    subject_group_name: str | None = None
    location_id: str | None = None
    start_at: datetime  # timezone-naive business local time
    end_at: datetime
    type: LessonType = LessonType.NORMAL
    reports: list[LessonReport] = Field(default_factory=list)

    def student_name(self, student_id: str) -> str | None:
        """Display name recorded on the lesson for ``student_id``, if any."""
        try:
            index = self.student_ids.index(student_id)
        except ValueError:
            return None
        if index < len(self.student_names):
            return self.student_names[index]
        return None

    def report_for(self, student_id: str) -> LessonReport | None:
        return next((r for r in self.reports if r.student_id == student_id), None)


@runtime_checkable
class SchedulingService(Protocol):
    """Interface for the scheduling system's lesson store."""

    async def list_lessons(self, start: datetime, end: datetime) -> list[LessonInfo]:
        """Return lessons whose start falls within the closed interval [start, end]."""
        ...


class InMemorySchedulingService:
    """In-memory stub implementation for development."""

    def __init__(self) -> None:
        self._lessons: dict[str, LessonInfo] = {}

    def seed(self, lesson: LessonInfo) -> None:
        """Seed a lesson for testing."""
        self._lessons[lesson.id] = lesson

    async def list_lessons(self, start: datetime, end: datetime) -> list[LessonInfo]:
        """Return lessons whose start falls within the closed interval [start, end]."""
        return sorted(
            (lesson for lesson in self._lessons.values() if start <= lesson.start_at <= end),
            key=lambda lesson: lesson.start_at,
        )


_scheduling_service: SchedulingService = InMemorySchedulingService()


def get_scheduling_service() -> SchedulingService:
    """FastAPI dependency for the Scheduling Service."""
    return _scheduling_service


def set_scheduling_service(service: SchedulingService) -> None:
    """Override the service (for testing or production wiring)."""
    global _scheduling_service
    _scheduling_service = service
