# ruff: noqa: B008, TC001, TC003
from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Query

from tutorpay.api.deps import AdminDep, WeekDep
from tutorpay.db import SessionDep
from tutorpay.schemas.report import AttendanceSummaryResponse, AuditLogListResponse
from tutorpay.services import report as report_service

reports_router = APIRouter(tags=["reports"])


@reports_router.get(
    "/audit-log",
    response_model=AuditLogListResponse,
)
async def query_audit_log(
    session: SessionDep,
    auth: AdminDep,
    entity_type: str | None = Query(default=None),
    entity_id: str | None = Query(default=None),
    action: str | None = Query(default=None),
    actor_id: str | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
) -> AuditLogListResponse:
    """Query audit log entries with optional filters (admin only)."""
    return await report_service.query_audit_log(
        session,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_id=actor_id,
        start_date=start_date,
        end_date=end_date,
        offset=offset,
        limit=limit,
    )


@reports_router.get(
    "/reports/attendance/{week_key}",
    response_model=AttendanceSummaryResponse,
)
async def get_attendance_summary(
    week_start: WeekDep,
    auth: AdminDep,
) -> AttendanceSummaryResponse:
    """Attendance report breakdown for a week's lessons (admin only)."""
    return await report_service.attendance_summary(week_start)
