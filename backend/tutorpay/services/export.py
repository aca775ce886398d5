"""Export reconciler: pushes generated payroll items and invoices to the accounting system.

Each item is an independent unit. Its post and status write are committed on
their own, so a failure or a crash mid-batch leaves earlier items recorded and
later items simply unexported. ``exported_to_xero`` is write-once: an exported
item is never posted again, even when a retry names it explicitly.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from sqlalchemy.exc import InvalidRequestError
from sqlmodel import col

from tutorpay.config import get_settings
from tutorpay.exceptions import ExternalServiceError, PendingRequestsError, PreconditionError
from tutorpay.models.enums import AuditAction, AuditEntityType, ExportScope
from tutorpay.models.invoice import Invoice, InvoiceWeek
from tutorpay.models.payroll import PayrollItem, PayrollWeek
from tutorpay.schemas.export import ExportErrorDetail, ExportItemResult, ExportResult
from tutorpay.services.additional_hours import count_pending
from tutorpay.services.audit import model_to_audit_dict, write_audit_log
from tutorpay.services.directory import get_directory_service
from tutorpay.services.invoice import list_invoices
from tutorpay.services.payroll import list_items
from tutorpay.services.week import week_range_for
from tutorpay.services.xero import get_accounting_service

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from tutorpay.schemas.auth import AuthContext
    from tutorpay.schemas.export import ExportInvoicesPayload, ExportPayrollPayload
    from tutorpay.services.week import WeekRange

logger = logging.getLogger(__name__)

ALREADY_EXPORTED = "Already exported"
NOT_FOUND = "Not found"

ExportModel = PayrollItem | Invoice


@dataclass
class _ScopeAdapter:
    """How one export scope names, posts and records its items."""

    scope: ExportScope
    meta_cls: type[PayrollWeek] | type[InvoiceWeek]
    item_cls: type[PayrollItem] | type[Invoice]
    entity_type: AuditEntityType
    key: Callable[[Any], str]
    name: Callable[[Any], str]
    post: Callable[[Any, WeekRange], Awaitable[ExportItemResult]]


# ---------------------------------------------------------------------------
# Scope adapters
# ---------------------------------------------------------------------------


async def _post_timesheet(item: PayrollItem, week: WeekRange) -> ExportItemResult:
    tutor = await get_directory_service().get_tutor(item.tutor_id)
    if tutor is None or not tutor.email:
        raise ExternalServiceError("Tutor email not found")
    receipt = await get_accounting_service().post_timesheet(item, tutor.email, week)
    item.xero_timesheet_id = receipt.timesheet_id
    return ExportItemResult(
        item_id=item.tutor_id,
        name=item.tutor_name,
        exported=True,
        external_id=receipt.timesheet_id,
        hours=item.total_hours,
    )


async def _post_invoice(invoice: Invoice, week: WeekRange) -> ExportItemResult:
    receipt = await get_accounting_service().post_invoice(invoice, week)
    invoice.xero_invoice_id = receipt.invoice_id
    invoice.xero_invoice_number = receipt.invoice_number
    return ExportItemResult(
        item_id=str(invoice.id),
        name=invoice.family_name,
        exported=True,
        external_id=receipt.invoice_id,
        external_number=receipt.invoice_number,
        total=invoice.total,
    )


_PAYROLL = _ScopeAdapter(
    scope=ExportScope.PAYROLL,
    meta_cls=PayrollWeek,
    item_cls=PayrollItem,
    entity_type=AuditEntityType.PAYROLL_ITEM,
    key=lambda item: item.tutor_id,
    name=lambda item: item.tutor_name,
    post=_post_timesheet,
)

_INVOICES = _ScopeAdapter(
    scope=ExportScope.INVOICES,
    meta_cls=InvoiceWeek,
    item_cls=Invoice,
    entity_type=AuditEntityType.INVOICE,
    key=lambda invoice: str(invoice.id),
    name=lambda invoice: invoice.family_name,
    post=_post_invoice,
)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _select_targets(
    adapter: _ScopeAdapter,
    items: Sequence[ExportModel],
    target_ids: list[str] | None,
) -> tuple[list[ExportModel], list[ExportItemResult]]:
    """Pick the items to attempt; unknown target ids come back as skipped results."""
    if target_ids is None:
        return list(items), []

    by_key = {adapter.key(item): item for item in items}
    selected: list[ExportModel] = []
    missing: list[ExportItemResult] = []
    for target in dict.fromkeys(target_ids):
        item = by_key.get(target)
        if item is None:
            missing.append(ExportItemResult(item_id=target, skipped=True, reason=NOT_FOUND))
        else:
            selected.append(item)
    return selected, missing


def _retries_failed_items_only(items: Sequence[PayrollItem], target_ids: list[str] | None) -> bool:
    """True when every targeted, unexported item has already failed an attempt."""
    if target_ids is None:
        return False
    by_tutor = {item.tutor_id: item for item in items}
    targeted = [by_tutor[t] for t in target_ids if t in by_tutor]
    return all(item.exported_to_xero or item.xero_export_error is not None for item in targeted)


async def _attempt_item(
    session: AsyncSession,
    auth: AuthContext,
    adapter: _ScopeAdapter,
    item: ExportModel,
    week: WeekRange,
) -> tuple[ExportItemResult, str | None]:
    """Post one item and commit its outcome. Returns the result and any error message."""
    key = adapter.key(item)
    name = adapter.name(item)
    # Lock the row and re-read it so a concurrent export cannot post it twice.
    try:
        await session.refresh(item, with_for_update=True)
    except InvalidRequestError:
        # Deleted by a concurrent invoice regeneration.
        session.expunge(item)
        await session.commit()
        return ExportItemResult(item_id=key, name=name, skipped=True, reason=NOT_FOUND), None
    if item.exported_to_xero:
        await session.commit()
        return ExportItemResult(item_id=key, name=name, skipped=True, reason=ALREADY_EXPORTED), None

    before_dict = model_to_audit_dict(item)
    timeout = get_settings().xero_timeout_seconds
    error: str | None = None
    result: ExportItemResult | None = None
    try:
        result = await asyncio.wait_for(adapter.post(item, week), timeout=timeout)
    except TimeoutError:
        error = f"Timed out after {timeout:g}s waiting for Xero"
    except ExternalServiceError as exc:
        error = exc.message
    except Exception as exc:
        logger.exception("Unexpected error exporting %s %s for week %s", adapter.scope, key, week.key)
        error = str(exc) or type(exc).__name__

    now = datetime.now(UTC)
    item.export_attempted_at = now
    if error is None and result is not None:
        item.exported_to_xero = True
        item.xero_export_error = None
        item.exported_at = now
        logger.info("Exported %s %s (%s) for week %s", adapter.scope, key, name, week.key)
    else:
        item.xero_export_error = error
        result = ExportItemResult(item_id=key, name=name, reason=error)
        logger.warning("Export of %s %s (%s) for week %s failed: %s", adapter.scope, key, name, week.key, error)

    await session.flush()
    await write_audit_log(
        session,
        actor_id=auth.user_id,
        entity_type=adapter.entity_type,
        entity_id=f"{week.key}/{key}" if adapter.scope == ExportScope.PAYROLL else key,
        action=AuditAction.EXPORT if error is None else AuditAction.EXPORT_FAILED,
        before_json=before_dict,
        after_json=model_to_audit_dict(item),
    )
    await session.commit()
    return result, error


async def _count_unexported(session: AsyncSession, adapter: _ScopeAdapter, week_start: date) -> tuple[int, int]:
    """(unexported items, unexported items carrying an error) for the week."""
    item_cls = adapter.item_cls
    base = [col(item_cls.week_start) == week_start, col(item_cls.exported_to_xero).is_(False)]
    unexported = await session.execute(select(func.count()).select_from(item_cls).where(*base))
    failing = await session.execute(
        select(func.count()).select_from(item_cls).where(*base, col(item_cls.xero_export_error).is_not(None))
    )
    return unexported.scalar_one(), failing.scalar_one()


async def _run_export(
    session: AsyncSession,
    auth: AuthContext,
    adapter: _ScopeAdapter,
    week: WeekRange,
    items: Sequence[ExportModel],
    target_ids: list[str] | None,
) -> ExportResult:
    selected, results = _select_targets(adapter, items, target_ids)
    error_details: list[ExportErrorDetail] = []
    exported = errors = 0
    skipped = len(results)

    for item in selected:
        if item.exported_to_xero:
            results.append(
                ExportItemResult(
                    item_id=adapter.key(item), name=adapter.name(item), skipped=True, reason=ALREADY_EXPORTED
                )
            )
            skipped += 1
            continue

        result, error = await _attempt_item(session, auth, adapter, item, week)
        results.append(result)
        if result.skipped:
            skipped += 1
        elif error is None:
            exported += 1
        else:
            errors += 1
            error_details.append(ExportErrorDetail(item_id=result.item_id, name=result.name, error=error))

    # Lock the week once every item is out; otherwise flag it for a retry.
    # Pending requests keep the week open so they can still be reviewed.
    unexported, failing = await _count_unexported(session, adapter, week.start)
    pending = await count_pending(session, week.start) if adapter.scope == ExportScope.PAYROLL else 0
    meta = await session.get(adapter.meta_cls, week.start, with_for_update=True, populate_existing=True)
    if meta is None:
        msg = f"Week {week.key} disappeared during export"
        raise PreconditionError(msg)

    now = datetime.now(UTC)
    before_dict = model_to_audit_dict(meta)
    meta.last_export_attempt = now
    meta.has_export_errors = failing > 0
    newly_locked = unexported == 0 and pending == 0 and not meta.locked
    if newly_locked:
        meta.locked = True
        meta.locked_at = now
    await session.flush()

    if newly_locked:
        await write_audit_log(
            session,
            actor_id=auth.user_id,
            entity_type=AuditEntityType.PAYROLL_WEEK
            if adapter.scope == ExportScope.PAYROLL
            else AuditEntityType.INVOICE_WEEK,
            entity_id=week.key,
            action=AuditAction.LOCK,
            before_json=before_dict,
            after_json=model_to_audit_dict(meta),
        )
    await session.commit()

    if newly_locked:
        logger.info("All %s items for week %s exported; week locked", adapter.scope, week.key)
    logger.info(
        "Export of %s for week %s: %d exported, %d errors, %d skipped",
        adapter.scope,
        week.key,
        exported,
        errors,
        skipped,
    )

    return ExportResult(
        scope=adapter.scope,
        week_start=week.key,
        is_retry=target_ids is not None,
        exported=exported,
        errors=errors,
        skipped=skipped,
        all_exported=unexported == 0,
        locked=meta.locked,
        results=results,
        error_details=error_details,
    )


async def _require_generated(
    session: AsyncSession,
    adapter: _ScopeAdapter,
    week: WeekRange,
) -> None:
    meta = await session.get(adapter.meta_cls, week.start)
    if meta is None or not meta.generated:
        label = "Payroll" if adapter.scope == ExportScope.PAYROLL else "Invoices"
        raise PreconditionError(f"{label} for week {week.key} must be generated before export")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def export_payroll(
    session: AsyncSession,
    auth: AuthContext,
    week_start: date,
    payload: ExportPayrollPayload | None = None,
) -> ExportResult:
    """Export a week's payroll items to Xero as draft timesheets.

    Refuses while any additional-hours request for the week is pending, unless
    ``tutor_ids`` names only items that already failed an export attempt. The
    week is never locked while a request is pending.
    """
    week = week_range_for(week_start)
    target_ids = payload.tutor_ids if payload is not None else None
    items = await list_items(session, week.start)

    pending = await count_pending(session, week.start)
    if pending and not _retries_failed_items_only(items, target_ids):
        raise PendingRequestsError(
            f"{pending} additional hours request(s) for week {week.key} must be reviewed before export",
            pending_count=pending,
        )

    await _require_generated(session, _PAYROLL, week)
    if not items:
        raise PreconditionError(f"No payroll items to export for week {week.key}")

    return await _run_export(session, auth, _PAYROLL, week, items, target_ids)


async def export_invoices(
    session: AsyncSession,
    auth: AuthContext,
    week_start: date,
    payload: ExportInvoicesPayload | None = None,
) -> ExportResult:
    """Export a week's invoices to Xero. Passing ``target_ids`` scopes the call to a retry."""
    week = week_range_for(week_start)
    target_ids = payload.target_ids if payload is not None else None

    await _require_generated(session, _INVOICES, week)
    invoices = await list_invoices(session, week.start)
    if not invoices:
        raise PreconditionError(f"No invoices to export for week {week.key}")

    return await _run_export(session, auth, _INVOICES, week, invoices, target_ids)
