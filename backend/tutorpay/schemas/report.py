# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel


class AuditLogEntryResponse(BaseModel):
    """Response schema for a single audit log entry."""

    id: uuid.UUID
    actor_id: str
    entity_type: str
    entity_id: str
    action: str
    before_json: dict[str, Any] | None
    after_json: dict[str, Any] | None
    created_at: datetime


class AuditLogListResponse(BaseModel):
    """Paginated list of audit log entries."""

    items: list[AuditLogEntryResponse]
    total: int


class AttendanceSummaryResponse(BaseModel):
    """Per-student attendance report counts for a week."""

    week_start: date
    week_end: date
    lesson_count: int
    unreported_lessons: int
    present: int
    partial: int
    no_show: int
    unreported: int
    present_pct: float
    partial_pct: float
    no_show_pct: float
    unreported_pct: float
