"""Reporting service: audit log queries and weekly attendance summaries."""

from __future__ import annotations

from datetime import date, datetime, time
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlmodel import col

from tutorpay.models.audit import AuditLog
from tutorpay.schemas.report import AttendanceSummaryResponse, AuditLogEntryResponse, AuditLogListResponse
from tutorpay.services.aggregation import fetch_lessons_for_week, report_status_breakdown, unreported_lesson_count
from tutorpay.services.week import week_range_for

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


async def query_audit_log(
    session: AsyncSession,
    *,
    entity_type: str | None = None,
    entity_id: str | None = None,
    action: str | None = None,
    actor_id: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    offset: int = 0,
    limit: int = 50,
) -> AuditLogListResponse:
    """Query audit log entries with optional filters."""
    filters = []

    if entity_type is not None:
        filters.append(col(AuditLog.entity_type) == entity_type)
    if entity_id is not None:
        filters.append(col(AuditLog.entity_id) == entity_id)
    if action is not None:
        filters.append(col(AuditLog.action) == action)
    if actor_id is not None:
        filters.append(col(AuditLog.actor_id) == actor_id)
    if start_date is not None:
        filters.append(col(AuditLog.created_at) >= datetime.combine(start_date, time.min))
    if end_date is not None:
        filters.append(col(AuditLog.created_at) <= datetime.combine(end_date, time.max))

    count_result = await session.execute(select(func.count()).select_from(AuditLog).where(*filters))
    total = count_result.scalar_one()

    result = await session.execute(
        select(AuditLog).where(*filters).order_by(col(AuditLog.created_at).desc()).offset(offset).limit(limit)
    )
    entries = list(result.scalars().all())

    return AuditLogListResponse(
        items=[
            AuditLogEntryResponse(
                id=e.id,
                actor_id=e.actor_id,
                entity_type=e.entity_type,
                entity_id=e.entity_id,
                action=e.action,
                before_json=e.before_json,
                after_json=e.after_json,
                created_at=e.created_at,
            )
            for e in entries
        ],
        total=total,
    )


async def attendance_summary(week_start: date) -> AttendanceSummaryResponse:
    """Attendance report breakdown for a week's lessons."""
    week = week_range_for(week_start)
    lessons = await fetch_lessons_for_week(week)
    breakdown = report_status_breakdown(lessons)
    percentages = breakdown.percentages()
    return AttendanceSummaryResponse(
        week_start=week.start,
        week_end=week.end,
        lesson_count=len(lessons),
        unreported_lessons=unreported_lesson_count(lessons),
        present=breakdown.present,
        partial=breakdown.partial,
        no_show=breakdown.no_show,
        unreported=breakdown.unreported,
        present_pct=round(percentages["present"], 1),
        partial_pct=round(percentages["partial"], 1),
        no_show_pct=round(percentages["no_show"], 1),
        unreported_pct=round(percentages["unreported"], 1),
    )
