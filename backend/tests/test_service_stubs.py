"""Tests for the in-memory Scheduling and Directory service stubs."""

from __future__ import annotations

from datetime import datetime

from tutorpay.services.directory import (
    DirectoryService,
    FamilyInfo,
    InMemoryDirectoryService,
    StudentInfo,
    TutorInfo,
)
from tutorpay.services.scheduling import (
    InMemorySchedulingService,
    LessonInfo,
    LessonReport,
    SchedulingService,
)
from tutorpay.services.xero import AccountingService, InMemoryAccountingService


def _lesson(lesson_id: str, start: datetime) -> LessonInfo:
    return LessonInfo(
        id=lesson_id,
        tutor_id="t1",
        student_ids=["s1", "s2"],
        student_names=["Amy Smith"],
        start_at=start,
        end_at=start.replace(hour=start.hour + 1),
    )


# ---------------------------------------------------------------------------
# InMemorySchedulingService tests
# ---------------------------------------------------------------------------


def test_in_memory_services_satisfy_protocols() -> None:
    assert isinstance(InMemorySchedulingService(), SchedulingService)
    assert isinstance(InMemoryDirectoryService(), DirectoryService)
    assert isinstance(InMemoryAccountingService(), AccountingService)


async def test_scheduling_service_empty() -> None:
    svc = InMemorySchedulingService()
    assert await svc.list_lessons(datetime(2024, 3, 2), datetime(2024, 3, 9)) == []


async def test_scheduling_service_filters_by_closed_interval_and_sorts() -> None:
    svc = InMemorySchedulingService()
    svc.seed(_lesson("late", datetime(2024, 3, 8, 23)))
    svc.seed(_lesson("early", datetime(2024, 3, 2, 0)))
    svc.seed(_lesson("outside", datetime(2024, 3, 9, 9)))

    result = await svc.list_lessons(datetime(2024, 3, 2, 0), datetime(2024, 3, 8, 23))

    assert [lesson.id for lesson in result] == ["early", "late"]


def test_lesson_student_name_and_report_lookup() -> None:
    lesson = _lesson("l1", datetime(2024, 3, 4, 9))
    lesson.reports.append(LessonReport(student_id="s1"))

    assert lesson.student_name("s1") == "Amy Smith"
    assert lesson.student_name("s2") is None
    assert lesson.student_name("unknown") is None
    report = lesson.report_for("s1")
    assert report is not None
    assert report.status is None
    assert lesson.report_for("s2") is None


# ---------------------------------------------------------------------------
# InMemoryDirectoryService tests
# ---------------------------------------------------------------------------


async def test_directory_service_get_not_found() -> None:
    svc = InMemoryDirectoryService()
    assert await svc.get_tutor("t1") is None
    assert await svc.get_student("s1") is None
    assert await svc.get_family("f1") is None


async def test_directory_service_seed_and_get() -> None:
    svc = InMemoryDirectoryService()
    svc.seed_tutor(TutorInfo(id="t1", first_name="Tina", last_name="Tutor", email="tina@example.com"))
    svc.seed_student(StudentInfo(id="s1", first_name="Amy", last_name="Smith", family_id="f1"))
    svc.seed_family(FamilyInfo(id="f1", family_name="Smith"))

    tutor = await svc.get_tutor("t1")
    assert tutor is not None
    assert tutor.full_name == "Tina Tutor"
    student = await svc.get_student("s1")
    assert student is not None
    assert student.family_id == "f1"
    assert student.hourly_rate is None
    family = await svc.get_family("f1")
    assert family is not None
    assert family.parent_email is None
    assert [t.id for t in await svc.list_tutors()] == ["t1"]
