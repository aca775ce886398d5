# ruff: noqa: TC003
from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlmodel import col

from tutorpay.exceptions import (
    NotFoundError,
    PermissionDeniedError,
    PreconditionError,
    StateTransitionError,
)
from tutorpay.models.additional_hours import AdditionalHoursRequest
from tutorpay.models.enums import AuditAction, AuditEntityType, RequestStatus
from tutorpay.models.payroll import PayrollItem, PayrollWeek
from tutorpay.schemas.additional_hours import AdditionalHoursListResponse, AdditionalHoursResponse
from tutorpay.schemas.payroll import AdditionalHoursDetail
from tutorpay.services.audit import model_to_audit_dict, write_audit_log
from tutorpay.services.directory import get_directory_service
from tutorpay.services.week import week_range_for
from tutorpay.services.week_meta import ensure_week_row

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from tutorpay.schemas.additional_hours import ReviewAdditionalHoursPayload, SubmitAdditionalHoursPayload
    from tutorpay.schemas.auth import AuthContext

logger = logging.getLogger(__name__)

UNKNOWN_TUTOR = "Unknown Tutor"


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _build_request_response(request: AdditionalHoursRequest) -> AdditionalHoursResponse:
    """Map a request model to its response schema."""
    return AdditionalHoursResponse(
        id=request.id,
        tutor_id=request.tutor_id,
        tutor_name=request.tutor_name,
        week_start=request.week_start,
        hours=request.hours,
        description=request.description,
        notes=request.notes,
        status=RequestStatus(request.status),
        created_at=request.created_at,
        reviewed_at=request.reviewed_at,
        reviewed_by=request.reviewed_by,
        idempotency_key=request.idempotency_key,
    )


async def _get_request_or_404(
    session: AsyncSession,
    request_id: uuid.UUID,
    *,
    for_update: bool = False,
) -> AdditionalHoursRequest:
    """Fetch a request by ID. Raises 404 if not found."""
    query = select(AdditionalHoursRequest).where(col(AdditionalHoursRequest.id) == request_id)
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    request = result.scalar_one_or_none()
    if request is None:
        raise NotFoundError("Additional hours request not found")
    return request


def _check_tutor_access(auth: AuthContext, tutor_id: str) -> None:
    if not auth.is_admin and auth.user_id != tutor_id:
        raise PermissionDeniedError("Tutors can only access their own additional hours requests")


async def _resolve_tutor_name(request: AdditionalHoursRequest) -> str:
    if request.tutor_name:
        return request.tutor_name
    tutor = await get_directory_service().get_tutor(request.tutor_id)
    if tutor is not None:
        return tutor.full_name
    return UNKNOWN_TUTOR


# ---------------------------------------------------------------------------
# Folding approved hours into payroll items
# ---------------------------------------------------------------------------


def fold_into_item(item: PayrollItem, request: AdditionalHoursRequest) -> None:
    """Add an approved request's hours to a payroll item and recompute its total.

    JSON columns are reassigned rather than mutated so the change is flushed.
    """
    detail = AdditionalHoursDetail(
        request_id=str(request.id),
        hours=request.hours,
        description=request.description,
        notes=request.notes,
        approved_at=request.reviewed_at,
    )
    item.additional_hours_details = [*item.additional_hours_details, detail.model_dump(mode="json")]
    item.additional_hours = item.additional_hours + request.hours
    item.total_hours = item.lesson_hours + item.additional_hours


async def approved_requests_for_week(
    session: AsyncSession,
    week_start: date,
) -> list[AdditionalHoursRequest]:
    """Approved requests for a week, oldest first."""
    result = await session.execute(
        select(AdditionalHoursRequest)
        .where(
            col(AdditionalHoursRequest.week_start) == week_start,
            col(AdditionalHoursRequest.status) == RequestStatus.APPROVED.value,
        )
        .order_by(col(AdditionalHoursRequest.created_at))
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def count_pending(session: AsyncSession, week_start: date) -> int:
    """Number of pending requests for a week. Non-zero blocks a full payroll export."""
    result = await session.execute(
        select(func.count())
        .select_from(AdditionalHoursRequest)
        .where(
            col(AdditionalHoursRequest.week_start) == week_start,
            col(AdditionalHoursRequest.status) == RequestStatus.PENDING.value,
        )
    )
    return result.scalar_one()


async def _fold_into_generated_payroll(
    session: AsyncSession,
    request: AdditionalHoursRequest,
) -> tuple[PayrollItem, dict[str, Any] | None]:
    """Fold a just-approved request into its week's already-generated payroll.

    Returns the item and its audit snapshot from before the fold (None if new).
    """
    result = await session.execute(
        select(PayrollItem)
        .where(
            col(PayrollItem.week_start) == request.week_start,
            col(PayrollItem.tutor_id) == request.tutor_id,
        )
        .with_for_update()
    )
    item = result.scalar_one_or_none()
    before_dict = model_to_audit_dict(item) if item is not None else None

    if item is None:
        item = PayrollItem(
            week_start=request.week_start,
            tutor_id=request.tutor_id,
            tutor_name=await _resolve_tutor_name(request),
        )
        session.add(item)
    elif item.exported_to_xero:
        raise PreconditionError(
            f"Payroll for tutor {request.tutor_id} in week {request.week_start.isoformat()} "
            "has already been exported; additional hours can no longer be applied"
        )

    fold_into_item(item, request)
    return item, before_dict


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def submit_request(
    session: AsyncSession,
    auth: AuthContext,
    payload: SubmitAdditionalHoursPayload,
) -> AdditionalHoursResponse:
    """Submit an additional-hours claim. Always created as pending.

    Input is validated by the payload schema before this runs. A tutor may only
    claim hours for themselves; an admin may submit on any tutor's behalf.
    """
    _check_tutor_access(auth, payload.tutor_id)

    week = await session.get(PayrollWeek, payload.week_start)
    if week is not None and week.locked:
        raise PreconditionError(f"Payroll for week {payload.week_start.isoformat()} is locked")

    request = AdditionalHoursRequest(
        tutor_id=payload.tutor_id,
        tutor_name=payload.tutor_name,
        week_start=payload.week_start,
        hours=payload.hours,
        description=payload.description,
        notes=payload.notes,
        status=RequestStatus.PENDING.value,
        idempotency_key=payload.idempotency_key,
    )
    session.add(request)

    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        # Idempotency: if the key already exists, return the existing request.
        if payload.idempotency_key is not None:
            result = await session.execute(
                select(AdditionalHoursRequest).where(
                    col(AdditionalHoursRequest.tutor_id) == payload.tutor_id,
                    col(AdditionalHoursRequest.idempotency_key) == payload.idempotency_key,
                )
            )
            existing = result.scalar_one_or_none()
            if existing is not None:
                return _build_request_response(existing)
        raise PreconditionError("Duplicate additional hours request") from None

    await write_audit_log(
        session,
        actor_id=auth.user_id,
        entity_type=AuditEntityType.ADDITIONAL_HOURS_REQUEST,
        entity_id=request.id,
        action=AuditAction.SUBMIT,
        after_json=model_to_audit_dict(request),
    )

    await session.commit()
    await session.refresh(request)
    logger.info("Additional hours request %s submitted for tutor %s", request.id, request.tutor_id)
    return _build_request_response(request)


async def review_request(
    session: AsyncSession,
    auth: AuthContext,
    request_id: uuid.UUID,
    payload: ReviewAdditionalHoursPayload,
) -> AdditionalHoursResponse:
    """Approve or decline a pending request.

    1. Lock the request; it must still be pending.
    2. Lock the week's payroll meta row, creating it if needed; a locked week
       refuses all reviews.
    3. Record the decision.
    4. On approval of a generated week, fold the hours into the tutor's item.
    5. Audit log and commit as one transaction.
    """
    request = await _get_request_or_404(session, request_id, for_update=True)

    if request.status != RequestStatus.PENDING.value:
        raise StateTransitionError(f"Request has already been {request.status}")

    # Same row lock as the payroll generator's claim; see generate_weekly_payroll.
    await ensure_week_row(session, PayrollWeek, week_range_for(request.week_start))
    week = await session.get(PayrollWeek, request.week_start, with_for_update=True, populate_existing=True)
    if week is not None and week.locked:
        raise PreconditionError(f"Payroll for week {request.week_start.isoformat()} is locked")

    before_dict = model_to_audit_dict(request)
    new_status = RequestStatus.APPROVED if payload.approved else RequestStatus.DECLINED

    request.status = new_status.value
    request.reviewed_at = datetime.now(UTC)
    request.reviewed_by = payload.reviewed_by or auth.user_id

    item: PayrollItem | None = None
    item_before: dict[str, Any] | None = None
    if new_status == RequestStatus.APPROVED and week is not None and week.generated:
        try:
            item, item_before = await _fold_into_generated_payroll(session, request)
        except PreconditionError:
            await session.rollback()
            raise
        logger.info(
            "Folded %.2f additional hours into payroll for tutor %s, week %s",
            request.hours,
            request.tutor_id,
            request.week_start,
        )
    await session.flush()

    await write_audit_log(
        session,
        actor_id=auth.user_id,
        entity_type=AuditEntityType.ADDITIONAL_HOURS_REQUEST,
        entity_id=request.id,
        action=AuditAction.APPROVE if payload.approved else AuditAction.DECLINE,
        before_json=before_dict,
        after_json=model_to_audit_dict(request),
    )
    if item is not None:
        await write_audit_log(
            session,
            actor_id=auth.user_id,
            entity_type=AuditEntityType.PAYROLL_ITEM,
            entity_id=f"{item.week_start.isoformat()}/{item.tutor_id}",
            action=AuditAction.UPDATE,
            before_json=item_before,
            after_json=model_to_audit_dict(item),
        )

    await session.commit()
    await session.refresh(request)
    logger.info("Additional hours request %s %s by %s", request.id, request.status, request.reviewed_by)
    return _build_request_response(request)


async def get_request(
    session: AsyncSession,
    auth: AuthContext,
    request_id: uuid.UUID,
) -> AdditionalHoursResponse:
    """Get a single request by ID."""
    request = await _get_request_or_404(session, request_id)
    _check_tutor_access(auth, request.tutor_id)
    return _build_request_response(request)


async def list_pending(session: AsyncSession, week_start: date) -> list[AdditionalHoursResponse]:
    """Pending requests for a week, oldest first."""
    result = await session.execute(
        select(AdditionalHoursRequest)
        .where(
            col(AdditionalHoursRequest.week_start) == week_start,
            col(AdditionalHoursRequest.status) == RequestStatus.PENDING.value,
        )
        .order_by(col(AdditionalHoursRequest.created_at))
    )
    return [_build_request_response(r) for r in result.scalars().all()]


async def list_requests(
    session: AsyncSession,
    *,
    week_start: date | None = None,
    tutor_id: str | None = None,
    status_filter: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> AdditionalHoursListResponse:
    """List requests with optional filters, ordered by created_at DESC."""
    filters = []
    if week_start is not None:
        filters.append(col(AdditionalHoursRequest.week_start) == week_start)
    if tutor_id is not None:
        filters.append(col(AdditionalHoursRequest.tutor_id) == tutor_id)
    if status_filter is not None:
        filters.append(col(AdditionalHoursRequest.status) == status_filter)

    count_result = await session.execute(select(func.count()).select_from(AdditionalHoursRequest).where(*filters))
    total = count_result.scalar_one()

    result = await session.execute(
        select(AdditionalHoursRequest)
        .where(*filters)
        .order_by(col(AdditionalHoursRequest.created_at).desc())
        .offset(offset)
        .limit(limit)
    )
    requests: Sequence[AdditionalHoursRequest] = result.scalars().all()

    return AdditionalHoursListResponse(
        items=[_build_request_response(r) for r in requests],
        total=total,
    )
