# ruff: noqa: TC003
from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlmodel import col

from tutorpay.models.enums import AuditAction, AuditEntityType
from tutorpay.models.payroll import PayrollItem, PayrollWeek
from tutorpay.schemas.payroll import (
    PayrollItemResponse,
    PayrollPreviewResponse,
    PayrollWeekMeta,
    PayrollWeekResponse,
    TutorHoursPreview,
)
from tutorpay.services.additional_hours import (
    UNKNOWN_TUTOR,
    approved_requests_for_week,
    count_pending,
    fold_into_item,
)
from tutorpay.services.aggregation import (
    fetch_lessons_for_week,
    hours_by_tutor,
    payroll_totals,
    preview_totals,
)
from tutorpay.services.audit import model_to_audit_dict, write_audit_log
from tutorpay.services.directory import get_directory_service
from tutorpay.services.week import business_today, validate_week_bounds, week_range_for
from tutorpay.services.week_meta import claim_week, ensure_week_open

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from tutorpay.models.additional_hours import AdditionalHoursRequest
    from tutorpay.schemas.auth import AuthContext
    from tutorpay.schemas.payroll import GeneratePayrollPayload
    from tutorpay.services.aggregation import TutorHours

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _build_meta(meta: PayrollWeek) -> PayrollWeekMeta:
    return PayrollWeekMeta(
        week_start=meta.week_start,
        week_end=meta.week_end,
        generated=meta.generated,
        locked=meta.locked,
        last_generated=meta.last_generated,
        generated_by=meta.generated_by,
        locked_at=meta.locked_at,
        has_export_errors=meta.has_export_errors,
        last_export_attempt=meta.last_export_attempt,
    )


def _build_item_response(item: PayrollItem) -> PayrollItemResponse:
    """Map a payroll item model to its response schema."""
    return PayrollItemResponse(
        week_start=item.week_start,
        tutor_id=item.tutor_id,
        tutor_name=item.tutor_name,
        lesson_hours=item.lesson_hours,
        lesson_count=item.lesson_count,
        lessons=item.lessons,  # ty: ignore[invalid-argument-type]
        additional_hours=item.additional_hours,
        additional_hours_details=item.additional_hours_details,  # ty: ignore[invalid-argument-type]
        total_hours=item.total_hours,
        exported_to_xero=item.exported_to_xero,
        xero_export_error=item.xero_export_error,
        xero_timesheet_id=item.xero_timesheet_id,
        exported_at=item.exported_at,
        export_attempted_at=item.export_attempted_at,
    )


async def _tutor_names(tutor_ids: set[str], hours: dict[str, TutorHours]) -> dict[str, str]:
    """Resolve display names from the directory, falling back to the lesson record."""
    directory = get_directory_service()
    names: dict[str, str] = {}
    for tutor_id in tutor_ids:
        tutor = await directory.get_tutor(tutor_id)
        if tutor is not None:
            names[tutor_id] = tutor.full_name
        elif tutor_id in hours and hours[tutor_id].tutor_name:
            names[tutor_id] = hours[tutor_id].tutor_name or UNKNOWN_TUTOR
        else:
            names[tutor_id] = UNKNOWN_TUTOR
    return names


async def list_items(session: AsyncSession, week_start: date) -> list[PayrollItem]:
    """Payroll items of a week, highest total hours first."""
    result = await session.execute(
        select(PayrollItem)
        .where(col(PayrollItem.week_start) == week_start)
        .order_by(col(PayrollItem.total_hours).desc(), col(PayrollItem.tutor_name))
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def generate_weekly_payroll(
    session: AsyncSession,
    auth: AuthContext,
    payload: GeneratePayrollPayload,
    *,
    today: date | None = None,
) -> PayrollWeekResponse:
    """Materialize a week's payroll: one item per tutor, written once.

    Flow:
    1. Validate the week bounds and that the week is open for generation
    2. Aggregate lesson hours per tutor
    3. Claim the week (check-and-set on the meta row)
    4. Read approved additional hours under the claim
    5. Write one item per tutor with lessons or approved additional hours
    6. Audit log and commit

    Approved requests are read only after the claim. A review holds the same
    meta row lock, so an approval either commits before this read or waits
    for the commit and folds into the written item itself.
    """
    week = validate_week_bounds(payload.week_start, payload.week_end)
    today = today or business_today()

    # 1. Fail fast before touching the scheduling system.
    ensure_week_open(await session.get(PayrollWeek, week.start), PayrollWeek, week, today)

    # 2. Aggregate.
    lessons = await fetch_lessons_for_week(week)
    hours = {tid: th for tid, th in hours_by_tutor(lessons).items() if th.lesson_count > 0}

    # 3. Claim.
    meta = await claim_week(session, PayrollWeek, week, actor_id=auth.user_id, today=today)

    # 4. Approved hours.
    approved = await approved_requests_for_week(session, week.start)
    by_tutor: dict[str, list[AdditionalHoursRequest]] = defaultdict(list)
    for request in approved:
        by_tutor[request.tutor_id].append(request)

    tutor_ids = set(hours) | set(by_tutor)
    names = await _tutor_names(tutor_ids, hours)

    # 5. Items.
    for tutor_id in sorted(tutor_ids):
        tutor_hours = hours.get(tutor_id)
        item = PayrollItem(
            week_start=week.start,
            tutor_id=tutor_id,
            tutor_name=names[tutor_id],
            lesson_hours=tutor_hours.lesson_hours if tutor_hours else 0.0,
            lesson_count=tutor_hours.lesson_count if tutor_hours else 0,
            lessons=[d.model_dump(mode="json") for d in tutor_hours.lessons] if tutor_hours else [],
        )
        item.total_hours = item.lesson_hours
        for request in by_tutor.get(tutor_id, []):
            fold_into_item(item, request)
        session.add(item)

    await session.flush()

    # 6. Audit log.
    await write_audit_log(
        session,
        actor_id=auth.user_id,
        entity_type=AuditEntityType.PAYROLL_WEEK,
        entity_id=week.key,
        action=AuditAction.GENERATE,
        after_json={**model_to_audit_dict(meta), "item_count": len(tutor_ids)},
    )

    await session.commit()
    logger.info(
        "Generated payroll for week %s: %d tutors, %d approved requests folded",
        week.key,
        len(tutor_ids),
        len(approved),
    )
    return await get_payroll_week(session, week.start)


async def get_payroll_week(session: AsyncSession, week_start: date) -> PayrollWeekResponse:
    """Read a week's payroll meta, items and totals."""
    week = week_range_for(week_start)
    meta = await session.get(PayrollWeek, week.start)
    items = await list_items(session, week.start)
    return PayrollWeekResponse(
        week_start=week.start,
        week_end=week.end,
        meta=_build_meta(meta) if meta is not None else None,
        items=[_build_item_response(i) for i in items],
        totals=payroll_totals(items),
    )


async def preview_payroll(session: AsyncSession, week_start: date) -> PayrollPreviewResponse:
    """Lesson hours per tutor for a week, without persisting anything."""
    week = week_range_for(week_start)
    lessons = await fetch_lessons_for_week(week)
    hours = hours_by_tutor(lessons)
    names = await _tutor_names(set(hours), hours)

    tutors = sorted(
        (
            TutorHoursPreview(
                tutor_id=th.tutor_id,
                tutor_name=names[th.tutor_id],
                lesson_hours=th.lesson_hours,
                lesson_count=th.lesson_count,
                lessons=th.lessons,
            )
            for th in hours.values()
        ),
        key=lambda t: t.lesson_hours,
        reverse=True,
    )
    return PayrollPreviewResponse(
        week_start=week.start,
        week_end=week.end,
        tutors=tutors,
        totals=preview_totals(hours.values()),
        pending_request_count=await count_pending(session, week.start),
    )
