"""Tests for reporting endpoints: audit log queries and weekly attendance summaries."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

import pytest

from tutorpay.models.enums import LessonType, ReportStatus
from tutorpay.services.scheduling import LessonInfo, LessonReport

if TYPE_CHECKING:
    from httpx import AsyncClient

    from tutorpay.services.scheduling import InMemorySchedulingService

WEEK = "2024-03-02"
ADMIN_HEADERS = {"X-User-Id": "admin-1", "X-Role": "admin"}
TUTOR_HEADERS = {"X-User-Id": "t1", "X-Role": "tutor"}
AUDIT_URL = "/audit-log"
ATTENDANCE_URL = f"/reports/attendance/{WEEK}"


# ---------------------------------------------------------------------------
# Test helpers
# ---------------------------------------------------------------------------


async def _submit(client: AsyncClient, description: str = "Parent meeting") -> dict[str, Any]:
    """Submit an additional-hours request (generates a SUBMIT audit entry)."""
    resp = await client.post(
        "/additional-hours",
        json={"tutor_id": "t1", "week_start": WEEK, "hours": 1, "description": description, "notes": "n/a"},
        headers=TUTOR_HEADERS,
    )
    assert resp.status_code == 201, resp.text
    result: dict[str, Any] = resp.json()
    return result


def _lesson(lesson_id: str, reports: list[LessonReport], *, lesson_type: LessonType = LessonType.NORMAL) -> LessonInfo:
    return LessonInfo(
        id=lesson_id,
        tutor_id="t1",
        student_ids=[r.student_id for r in reports] or ["s1"],
        start_at=datetime(2024, 3, 4, 9),
        end_at=datetime(2024, 3, 4, 10),
        type=lesson_type,
        reports=reports,
    )


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------


class TestAuditLog:
    """Tests for the audit log query endpoint."""

    async def test_audit_log_empty(self, async_client: AsyncClient) -> None:
        """No mutations yet returns an empty audit log list."""
        resp = await async_client.get(AUDIT_URL, headers=ADMIN_HEADERS)
        assert resp.status_code == 200
        assert resp.json() == {"items": [], "total": 0}

    async def test_audit_log_after_submit(self, async_client: AsyncClient) -> None:
        request = await _submit(async_client)

        resp = await async_client.get(AUDIT_URL, headers=ADMIN_HEADERS)

        data = resp.json()
        assert data["total"] == 1
        entry = data["items"][0]
        assert entry["entity_type"] == "ADDITIONAL_HOURS_REQUEST"
        assert entry["entity_id"] == request["id"]
        assert entry["action"] == "SUBMIT"
        assert entry["actor_id"] == "t1"
        assert entry["before_json"] is None
        assert entry["after_json"]["hours"] == 1.0

    async def test_audit_log_filters(self, async_client: AsyncClient) -> None:
        request = await _submit(async_client)
        await async_client.post(
            f"/additional-hours/{request['id']}/review",
            json={"approved": True},
            headers=ADMIN_HEADERS,
        )
        await _submit(async_client, description="Marking")

        by_action = await async_client.get(AUDIT_URL, params={"action": "APPROVE"}, headers=ADMIN_HEADERS)
        assert by_action.json()["total"] == 1

        by_entity = await async_client.get(AUDIT_URL, params={"entity_id": request["id"]}, headers=ADMIN_HEADERS)
        assert {e["action"] for e in by_entity.json()["items"]} == {"SUBMIT", "APPROVE"}

        by_actor = await async_client.get(AUDIT_URL, params={"actor_id": "admin-1"}, headers=ADMIN_HEADERS)
        assert by_actor.json()["total"] == 1

        by_type = await async_client.get(AUDIT_URL, params={"entity_type": "INVOICE"}, headers=ADMIN_HEADERS)
        assert by_type.json()["total"] == 0

    async def test_audit_log_pagination(self, async_client: AsyncClient) -> None:
        for i in range(5):
            await _submit(async_client, description=f"Task {i}")

        page = await async_client.get(AUDIT_URL, params={"offset": 1, "limit": 2}, headers=ADMIN_HEADERS)

        assert page.json()["total"] == 5
        assert len(page.json()["items"]) == 2

    async def test_audit_log_admin_only(self, async_client: AsyncClient) -> None:
        resp = await async_client.get(AUDIT_URL, headers=TUTOR_HEADERS)
        assert resp.status_code == 403


# ---------------------------------------------------------------------------
# Attendance summary
# ---------------------------------------------------------------------------


class TestAttendanceSummary:
    """Tests for the weekly attendance summary endpoint."""

    async def test_attendance_summary_empty_week(self, async_client: AsyncClient) -> None:
        resp = await async_client.get(ATTENDANCE_URL, headers=ADMIN_HEADERS)

        assert resp.status_code == 200
        data = resp.json()
        assert data["week_end"] == "2024-03-08"
        assert data["lesson_count"] == 0
        assert data["present_pct"] == 0.0

    async def test_attendance_summary_counts(
        self,
        async_client: AsyncClient,
        scheduling: InMemorySchedulingService,
    ) -> None:
        scheduling.seed(
            _lesson(
                "l1",
                [
                    LessonReport(student_id="s1", status=ReportStatus.PRESENT),
                    LessonReport(student_id="s2", status=ReportStatus.PRESENT),
                    LessonReport(student_id="s3", status=ReportStatus.NO_SHOW),
                    LessonReport(student_id="s4", status=None),
                ],
            )
        )
        scheduling.seed(
            _lesson(
                "l2",
                [LessonReport(student_id="s5", status=ReportStatus.CANCELLED)],
            )
        )

        data = (await async_client.get(ATTENDANCE_URL, headers=ADMIN_HEADERS)).json()

        assert data["lesson_count"] == 2
        assert data["unreported_lessons"] == 1
        assert (data["present"], data["partial"], data["no_show"], data["unreported"]) == (2, 0, 1, 1)
        assert data["present_pct"] == pytest.approx(50.0)
        assert data["no_show_pct"] == pytest.approx(25.0)

    async def test_attendance_summary_rejects_bad_week_key(self, async_client: AsyncClient) -> None:
        resp = await async_client.get("/reports/attendance/2024-03-05", headers=ADMIN_HEADERS)
        assert resp.status_code == 422

    async def test_attendance_summary_admin_only(self, async_client: AsyncClient) -> None:
        resp = await async_client.get(ATTENDANCE_URL, headers=TUTOR_HEADERS)
        assert resp.status_code == 403
