# ruff: noqa: B008, TC001, TC003
from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Query, status

from tutorpay.api.deps import AdminDep, AuthDep
from tutorpay.db import SessionDep
from tutorpay.exceptions import PermissionDeniedError
from tutorpay.models.enums import RequestStatus
from tutorpay.schemas.additional_hours import (
    AdditionalHoursListResponse,
    AdditionalHoursResponse,
    ReviewAdditionalHoursPayload,
    SubmitAdditionalHoursPayload,
)
from tutorpay.services import additional_hours as additional_hours_service
from tutorpay.services.week import parse_week_key

additional_hours_router = APIRouter(prefix="/additional-hours", tags=["additional-hours"])


@additional_hours_router.post("", response_model=AdditionalHoursResponse, status_code=status.HTTP_201_CREATED)
async def submit_request(
    payload: SubmitAdditionalHoursPayload,
    session: SessionDep,
    auth: AuthDep,
) -> AdditionalHoursResponse:
    """Submit an additional-hours claim for a week."""
    return await additional_hours_service.submit_request(session, auth, payload)


@additional_hours_router.get("", response_model=AdditionalHoursListResponse)
async def list_requests(
    session: SessionDep,
    auth: AuthDep,
    week: str | None = Query(default=None, description="Week key, YYYY-MM-DD (a Saturday)"),
    tutor_id: str | None = Query(default=None),
    status_filter: RequestStatus | None = Query(default=None, alias="status"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
) -> AdditionalHoursListResponse:
    """List additional-hours requests. Tutors only see their own."""
    if not auth.is_admin:
        if tutor_id is not None and tutor_id != auth.user_id:
            raise PermissionDeniedError("Tutors can only list their own additional hours requests")
        tutor_id = auth.user_id

    week_start: date | None = parse_week_key(week) if week is not None else None
    return await additional_hours_service.list_requests(
        session,
        week_start=week_start,
        tutor_id=tutor_id,
        status_filter=status_filter.value if status_filter is not None else None,
        offset=offset,
        limit=limit,
    )


@additional_hours_router.get("/{request_id}", response_model=AdditionalHoursResponse)
async def get_request(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
) -> AdditionalHoursResponse:
    """Get a single additional-hours request."""
    return await additional_hours_service.get_request(session, auth, request_id)


@additional_hours_router.post("/{request_id}/review", response_model=AdditionalHoursResponse)
async def review_request(
    request_id: uuid.UUID,
    payload: ReviewAdditionalHoursPayload,
    session: SessionDep,
    auth: AdminDep,
) -> AdditionalHoursResponse:
    """Approve or decline a pending request (admin only)."""
    return await additional_hours_service.review_request(session, auth, request_id, payload)
