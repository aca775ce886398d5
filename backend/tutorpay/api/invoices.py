# ruff: noqa: B008, TC001, TC003
from __future__ import annotations

import uuid

from fastapi import APIRouter, status

from tutorpay.api.deps import AdminDep, WeekDep
from tutorpay.db import SessionDep
from tutorpay.schemas.export import ExportInvoicesPayload, ExportResult
from tutorpay.schemas.invoice import (
    GenerateInvoicesPayload,
    InvoiceGenerationResponse,
    InvoiceResponse,
    InvoiceWeekResponse,
    UpdateInvoicePayload,
)
from tutorpay.services import export as export_service
from tutorpay.services import invoice as invoice_service

invoices_router = APIRouter(prefix="/invoices", tags=["invoices"])


@invoices_router.post("/generate", response_model=InvoiceGenerationResponse, status_code=status.HTTP_201_CREATED)
async def generate_weekly_invoices(
    payload: GenerateInvoicesPayload,
    session: SessionDep,
    auth: AdminDep,
) -> InvoiceGenerationResponse:
    """Generate one invoice per family for a finished week (admin only)."""
    return await invoice_service.generate_weekly_invoices(session, auth, payload)


@invoices_router.post("/regenerate", response_model=InvoiceGenerationResponse)
async def regenerate_weekly_invoices(
    payload: GenerateInvoicesPayload,
    session: SessionDep,
    auth: AdminDep,
) -> InvoiceGenerationResponse:
    """Rebuild a generated week's invoices, skipping edited or exported ones (admin only)."""
    return await invoice_service.regenerate_weekly_invoices(session, auth, payload)


@invoices_router.get("/{week_key}", response_model=InvoiceWeekResponse)
async def get_invoice_week(
    week_start: WeekDep,
    session: SessionDep,
    auth: AdminDep,
) -> InvoiceWeekResponse:
    """Get a week's invoice meta and invoices."""
    return await invoice_service.get_invoice_week(session, week_start)


@invoices_router.patch("/{week_key}/{invoice_id}", response_model=InvoiceResponse)
async def update_invoice(
    week_start: WeekDep,
    invoice_id: uuid.UUID,
    payload: UpdateInvoicePayload,
    session: SessionDep,
    auth: AdminDep,
) -> InvoiceResponse:
    """Replace an invoice's line items by hand (admin only)."""
    return await invoice_service.update_invoice(session, auth, week_start, invoice_id, payload)


@invoices_router.post("/{week_key}/export", response_model=ExportResult)
async def export_invoices(
    week_start: WeekDep,
    session: SessionDep,
    auth: AdminDep,
    payload: ExportInvoicesPayload | None = None,
) -> ExportResult:
    """Export a week's invoices to Xero (admin only). ``target_ids`` scopes a retry."""
    return await export_service.export_invoices(session, auth, week_start, payload)
