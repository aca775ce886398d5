# ruff: noqa: B008, TC001, TC003
from __future__ import annotations

from fastapi import APIRouter, status

from tutorpay.api.deps import AdminDep, AuthDep, WeekDep
from tutorpay.db import SessionDep
from tutorpay.schemas.export import ExportPayrollPayload, ExportResult
from tutorpay.schemas.payroll import GeneratePayrollPayload, PayrollPreviewResponse, PayrollWeekResponse
from tutorpay.services import export as export_service
from tutorpay.services import payroll as payroll_service

payroll_router = APIRouter(prefix="/payroll", tags=["payroll"])


@payroll_router.post("/generate", response_model=PayrollWeekResponse, status_code=status.HTTP_201_CREATED)
async def generate_weekly_payroll(
    payload: GeneratePayrollPayload,
    session: SessionDep,
    auth: AdminDep,
) -> PayrollWeekResponse:
    """Generate a finished week's payroll (admin only). Refuses if already generated or locked."""
    return await payroll_service.generate_weekly_payroll(session, auth, payload)


@payroll_router.get("/{week_key}", response_model=PayrollWeekResponse)
async def get_payroll_week(
    week_start: WeekDep,
    session: SessionDep,
    auth: AdminDep,
) -> PayrollWeekResponse:
    """Get a week's payroll meta, items and totals."""
    return await payroll_service.get_payroll_week(session, week_start)


@payroll_router.get("/{week_key}/preview", response_model=PayrollPreviewResponse)
async def preview_payroll(
    week_start: WeekDep,
    session: SessionDep,
    auth: AuthDep,
) -> PayrollPreviewResponse:
    """Preview lesson hours per tutor for a week without generating anything."""
    return await payroll_service.preview_payroll(session, week_start)


@payroll_router.post("/{week_key}/export", response_model=ExportResult)
async def export_payroll(
    week_start: WeekDep,
    session: SessionDep,
    auth: AdminDep,
    payload: ExportPayrollPayload | None = None,
) -> ExportResult:
    """Export a week's payroll to Xero (admin only). ``tutor_ids`` scopes a retry."""
    return await export_service.export_payroll(session, auth, week_start, payload)
