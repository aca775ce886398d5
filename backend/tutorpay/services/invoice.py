# ruff: noqa: TC003
from __future__ import annotations

import logging
import uuid
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlmodel import col

from tutorpay.config import get_settings
from tutorpay.exceptions import NotFoundError, PreconditionError
from tutorpay.models.enums import AuditAction, AuditEntityType
from tutorpay.models.invoice import Invoice, InvoiceWeek
from tutorpay.schemas.invoice import (
    InvoiceGenerationResponse,
    InvoiceResponse,
    InvoiceWeekMeta,
    InvoiceWeekResponse,
    SkippedInvoice,
)
from tutorpay.services.aggregation import fetch_lessons_for_week, hours_by_family, unreported_lesson_count
from tutorpay.services.audit import model_to_audit_dict, write_audit_log
from tutorpay.services.directory import get_directory_service
from tutorpay.services.week import business_today, validate_week_bounds, week_range_for
from tutorpay.services.week_meta import claim_week, ensure_week_open

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from tutorpay.schemas.auth import AuthContext
    from tutorpay.schemas.invoice import GenerateInvoicesPayload, InvoiceLineItem, UpdateInvoicePayload
    from tutorpay.services.aggregation import FamilyBilling
    from tutorpay.services.scheduling import LessonInfo
    from tutorpay.services.week import WeekRange

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _build_meta(meta: InvoiceWeek) -> InvoiceWeekMeta:
    return InvoiceWeekMeta(
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


def _build_invoice_response(invoice: Invoice) -> InvoiceResponse:
    """Map an invoice model to its response schema."""
    return InvoiceResponse(
        id=invoice.id,
        week_start=invoice.week_start,
        week_end=invoice.week_end,
        family_id=invoice.family_id,
        family_name=invoice.family_name,
        parent_email=invoice.parent_email,
        total=invoice.total,
        line_items=invoice.line_items,  # ty: ignore[invalid-argument-type]
        edited_since_generation=invoice.edited_since_generation,
        exported_to_xero=invoice.exported_to_xero,
        xero_export_error=invoice.xero_export_error,
        xero_invoice_id=invoice.xero_invoice_id,
        xero_invoice_number=invoice.xero_invoice_number,
        exported_at=invoice.exported_at,
        export_attempted_at=invoice.export_attempted_at,
        created_at=invoice.created_at,
    )


def _line_items_json(line_items: list[InvoiceLineItem]) -> list[dict]:
    return [item.model_dump(mode="json") for item in line_items]


def _total(line_items: list[InvoiceLineItem]) -> float:
    return round(sum(item.price for item in line_items), 2)


def _new_invoice(week: WeekRange, billing: FamilyBilling) -> Invoice:
    return Invoice(
        week_start=week.start,
        week_end=week.end,
        family_id=billing.family_id,
        family_name=billing.family_name,
        parent_email=billing.parent_email,
        total=billing.total,
        line_items=_line_items_json(billing.line_items),
    )


def _check_reports(lessons: list[LessonInfo], week: WeekRange) -> None:
    if not get_settings().invoice_requires_reports:
        return
    unreported = unreported_lesson_count(lessons)
    if unreported:
        raise PreconditionError(
            f"{unreported} lesson(s) in week {week.key} have unreported attendance; "
            "invoices cannot be generated until every lesson is reported"
        )


async def list_invoices(session: AsyncSession, week_start: date, *, for_update: bool = False) -> list[Invoice]:
    """Invoices of a week, sorted by family name.

    With ``for_update`` the rows are locked and re-read from the database.
    """
    query = select(Invoice).where(col(Invoice.week_start) == week_start).order_by(col(Invoice.family_name))
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await session.execute(query)
    return list(result.scalars().all())


async def _get_invoice_or_404(session: AsyncSession, week_start: date, invoice_id: uuid.UUID) -> Invoice:
    result = await session.execute(
        select(Invoice).where(col(Invoice.id) == invoice_id, col(Invoice.week_start) == week_start).with_for_update()
    )
    invoice = result.scalar_one_or_none()
    if invoice is None:
        raise NotFoundError("Invoice not found")
    return invoice


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def generate_weekly_invoices(
    session: AsyncSession,
    auth: AuthContext,
    payload: GenerateInvoicesPayload,
    *,
    today: date | None = None,
) -> InvoiceGenerationResponse:
    """Materialize one invoice per family for the week. Refuses if already generated."""
    week = validate_week_bounds(payload.start, payload.end)
    today = today or business_today()

    ensure_week_open(await session.get(InvoiceWeek, week.start), InvoiceWeek, week, today)

    lessons = await fetch_lessons_for_week(week)
    _check_reports(lessons, week)
    billing = await hours_by_family(lessons, get_directory_service())

    meta = await claim_week(session, InvoiceWeek, week, actor_id=auth.user_id, today=today)

    invoices = [_new_invoice(week, b) for b in billing.values()]
    session.add_all(invoices)
    await session.flush()

    await write_audit_log(
        session,
        actor_id=auth.user_id,
        entity_type=AuditEntityType.INVOICE_WEEK,
        entity_id=week.key,
        action=AuditAction.GENERATE,
        after_json={**model_to_audit_dict(meta), "invoice_count": len(invoices)},
    )

    await session.commit()
    logger.info("Generated %d invoices for week %s", len(invoices), week.key)

    return InvoiceGenerationResponse(
        week_start=week.start,
        week_end=week.end,
        generated=len(invoices),
        skipped=[],
        invoices=[_build_invoice_response(i) for i in await list_invoices(session, week.start)],
    )


async def regenerate_weekly_invoices(
    session: AsyncSession,
    auth: AuthContext,
    payload: GenerateInvoicesPayload,
) -> InvoiceGenerationResponse:
    """Rebuild a generated, unlocked week's invoices from current lessons.

    Invoices edited since generation or already exported are left untouched and
    reported as skipped. Families that no longer have charges lose their
    untouched invoice; new families gain one.
    """
    week = validate_week_bounds(payload.start, payload.end)

    meta = await session.get(InvoiceWeek, week.start, with_for_update=True)
    if meta is None or not meta.generated:
        raise PreconditionError(f"Invoices for week {week.key} have not been generated yet")
    if meta.locked:
        raise PreconditionError(f"Invoices for week {week.key} are locked and cannot be regenerated")

    lessons = await fetch_lessons_for_week(week)
    _check_reports(lessons, week)
    billing = await hours_by_family(lessons, get_directory_service())

    # Locked and re-read: a concurrent export may have latched an invoice.
    existing = {invoice.family_id: invoice for invoice in await list_invoices(session, week.start, for_update=True)}
    skipped: list[SkippedInvoice] = []
    rebuilt = 0

    for family_id, invoice in existing.items():
        if invoice.exported_to_xero:
            skipped.append(
                SkippedInvoice(invoice_id=invoice.id, family_name=invoice.family_name, reason="Already exported")
            )
            continue
        if invoice.edited_since_generation:
            skipped.append(
                SkippedInvoice(invoice_id=invoice.id, family_name=invoice.family_name, reason="Edited since generation")
            )
            continue

        fresh = billing.get(family_id)
        if fresh is None:
            await session.delete(invoice)
            continue
        invoice.family_name = fresh.family_name
        invoice.parent_email = fresh.parent_email
        invoice.line_items = _line_items_json(fresh.line_items)
        invoice.total = fresh.total
        rebuilt += 1

    for family_id, fresh in billing.items():
        if family_id not in existing:
            session.add(_new_invoice(week, fresh))
            rebuilt += 1

    before_dict = model_to_audit_dict(meta)
    meta.last_generated = datetime.now(UTC)
    meta.generated_by = auth.user_id
    await session.flush()

    await write_audit_log(
        session,
        actor_id=auth.user_id,
        entity_type=AuditEntityType.INVOICE_WEEK,
        entity_id=week.key,
        action=AuditAction.REGENERATE,
        before_json=before_dict,
        after_json={
            **model_to_audit_dict(meta),
            "invoice_count": rebuilt,
            "skipped": [str(s.invoice_id) for s in skipped],
        },
    )

    await session.commit()
    logger.info("Regenerated %d invoices for week %s, skipped %d", rebuilt, week.key, len(skipped))

    return InvoiceGenerationResponse(
        week_start=week.start,
        week_end=week.end,
        generated=rebuilt,
        skipped=skipped,
        invoices=[_build_invoice_response(i) for i in await list_invoices(session, week.start)],
    )


async def update_invoice(
    session: AsyncSession,
    auth: AuthContext,
    week_start: date,
    invoice_id: uuid.UUID,
    payload: UpdateInvoicePayload,
) -> InvoiceResponse:
    """Replace an invoice's line items by hand. Marks it edited so regeneration skips it."""
    meta = await session.get(InvoiceWeek, week_start)
    invoice = await _get_invoice_or_404(session, week_start, invoice_id)

    if meta is not None and meta.locked:
        raise PreconditionError(f"Invoices for week {week_start.isoformat()} are locked")
    if invoice.exported_to_xero:
        raise PreconditionError("Invoice has already been exported and can no longer be edited")

    before_dict = model_to_audit_dict(invoice)

    invoice.line_items = _line_items_json(payload.line_items)
    invoice.total = _total(payload.line_items)
    invoice.edited_since_generation = True

    await session.flush()

    await write_audit_log(
        session,
        actor_id=auth.user_id,
        entity_type=AuditEntityType.INVOICE,
        entity_id=invoice.id,
        action=AuditAction.UPDATE,
        before_json=before_dict,
        after_json=model_to_audit_dict(invoice),
    )

    await session.commit()
    await session.refresh(invoice)
    logger.info("Invoice %s for %s edited by %s", invoice.id, invoice.family_name, auth.user_id)
    return _build_invoice_response(invoice)


async def get_invoice_week(session: AsyncSession, week_start: date) -> InvoiceWeekResponse:
    """Read a week's invoice meta and invoices."""
    week = week_range_for(week_start)
    meta = await session.get(InvoiceWeek, week.start)
    invoices = await list_invoices(session, week.start)
    return InvoiceWeekResponse(
        week_start=week.start,
        week_end=week.end,
        meta=_build_meta(meta) if meta is not None else None,
        invoices=[_build_invoice_response(i) for i in invoices],
        total=round(sum(i.total for i in invoices), 2),
    )
