"""Tests for the Xero export reconciler: per-item isolation, scoped retries,
write-once export status, week locking and the pending-requests gate.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

import pytest
from sqlalchemy import delete, select
from sqlmodel import col

from tutorpay.config import get_settings
from tutorpay.models.audit import AuditLog
from tutorpay.models.enums import ReportStatus
from tutorpay.models.invoice import Invoice, InvoiceWeek
from tutorpay.models.payroll import PayrollItem, PayrollWeek
from tutorpay.services.directory import FamilyInfo, StudentInfo, TutorInfo
from tutorpay.services.scheduling import LessonInfo, LessonReport

if TYPE_CHECKING:
    from httpx import AsyncClient
    from sqlalchemy.ext.asyncio import AsyncSession

    from tutorpay.services.directory import InMemoryDirectoryService
    from tutorpay.services.scheduling import InMemorySchedulingService
    from tutorpay.services.xero import InMemoryAccountingService

WEEK = "2024-03-02"
WEEK_END = "2024-03-08"
WEEK_START_DATE = date(2024, 3, 2)

ADMIN_HEADERS = {"X-User-Id": "admin-1", "X-Role": "admin"}
TUTOR_HEADERS = {"X-User-Id": "tutor-a", "X-Role": "tutor"}
PAYROLL_EXPORT_URL = f"/payroll/{WEEK}/export"
INVOICE_EXPORT_URL = f"/invoices/{WEEK}/export"

TUTORS = ("tutor-a", "tutor-b", "tutor-c")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _seed(scheduling: InMemorySchedulingService, directory: InMemoryDirectoryService) -> None:
    """Three tutors with one reported lesson each; each lesson bills a different family."""
    for index, tutor_id in enumerate(TUTORS):
        letter = tutor_id[-1]
        directory.seed_tutor(
            TutorInfo(id=tutor_id, first_name=letter.upper(), last_name="Tutor", email=f"{letter}@example.com")
        )
        directory.seed_family(FamilyInfo(id=f"f-{letter}", family_name=f"Family {letter.upper()}"))
        directory.seed_student(
            StudentInfo(id=f"s-{letter}", first_name="Kid", last_name=letter.upper(), family_id=f"f-{letter}")
        )
        scheduling.seed(
            LessonInfo(
                id=f"lesson-{letter}",
                tutor_id=tutor_id,
                student_ids=[f"s-{letter}"],
                start_at=datetime(2024, 3, 4 + index, 9),
                end_at=datetime(2024, 3, 4 + index, 10 + index),
                reports=[LessonReport(student_id=f"s-{letter}", status=ReportStatus.PRESENT)],
            )
        )


# ---------------------------------------------------------------------------
# Test helpers
# ---------------------------------------------------------------------------


async def _generate_payroll(client: AsyncClient) -> None:
    resp = await client.post(
        "/payroll/generate",
        json={"week_start": WEEK, "week_end": WEEK_END},
        headers=ADMIN_HEADERS,
    )
    assert resp.status_code == 201, resp.text


async def _generate_invoices(client: AsyncClient) -> dict[str, str]:
    """Generate invoices and return invoice ids keyed by family id."""
    resp = await client.post("/invoices/generate", json={"start": WEEK, "end": WEEK_END}, headers=ADMIN_HEADERS)
    assert resp.status_code == 201, resp.text
    return {i["family_id"]: i["id"] for i in resp.json()["invoices"]}


async def _export_payroll(client: AsyncClient, tutor_ids: list[str] | None = None) -> Any:
    body = {"tutor_ids": tutor_ids} if tutor_ids is not None else None
    return await client.post(PAYROLL_EXPORT_URL, json=body, headers=ADMIN_HEADERS)


async def _items(db_session: AsyncSession) -> dict[str, PayrollItem]:
    result = await db_session.execute(select(PayrollItem).execution_options(populate_existing=True))
    return {item.tutor_id: item for item in result.scalars().all()}


async def _payroll_meta(db_session: AsyncSession) -> PayrollWeek:
    meta = await db_session.get(PayrollWeek, WEEK_START_DATE, populate_existing=True)
    assert meta is not None
    return meta


async def _submit_pending(client: AsyncClient) -> str:
    resp = await client.post(
        "/additional-hours",
        json={
            "tutor_id": "tutor-a",
            "week_start": WEEK,
            "hours": 1,
            "description": "Marking",
            "notes": "Mock exams",
        },
        headers=TUTOR_HEADERS,
    )
    assert resp.status_code == 201, resp.text
    request_id: str = resp.json()["id"]
    return request_id


# ---------------------------------------------------------------------------
# Preconditions
# ---------------------------------------------------------------------------


async def test_export_requires_generated_week(async_client: AsyncClient) -> None:
    resp = await _export_payroll(async_client)
    assert resp.status_code == 409
    assert "must be generated" in resp.json()["detail"]


async def test_export_refused_while_requests_pending(
    async_client: AsyncClient,
    accounting: InMemoryAccountingService,
) -> None:
    await _generate_payroll(async_client)
    await _submit_pending(async_client)

    resp = await _export_payroll(async_client)

    assert resp.status_code == 409
    assert resp.json()["error"] == "PendingRequestsError"
    assert "1 additional hours request" in resp.json()["detail"]
    assert accounting.timesheets == []


async def test_pending_gate_checked_before_generation(async_client: AsyncClient) -> None:
    await _submit_pending(async_client)
    resp = await _export_payroll(async_client)
    assert resp.json()["error"] == "PendingRequestsError"


async def test_scoped_retry_of_failed_item_bypasses_pending_gate(
    async_client: AsyncClient,
    db_session: AsyncSession,
    accounting: InMemoryAccountingService,
) -> None:
    """Retrying an item that already failed is allowed while a request is pending; the week stays open."""
    await _generate_payroll(async_client)
    accounting.fail("tutor-b")
    await _export_payroll(async_client)
    request_id = await _submit_pending(async_client)
    accounting.succeed("tutor-b")

    resp = await _export_payroll(async_client, ["tutor-b"])

    assert resp.status_code == 200
    data = resp.json()
    assert data["exported"] == 1
    assert data["all_exported"] is True
    assert data["locked"] is False
    assert (await _payroll_meta(db_session)).locked is False

    review = await async_client.post(
        f"/additional-hours/{request_id}/review",
        json={"approved": False},
        headers=ADMIN_HEADERS,
    )
    assert review.status_code == 200

    rerun = (await _export_payroll(async_client)).json()
    assert rerun["skipped"] == 3
    assert rerun["locked"] is True


async def test_scoped_export_of_unattempted_items_refused_while_pending(
    async_client: AsyncClient,
    accounting: InMemoryAccountingService,
) -> None:
    await _generate_payroll(async_client)
    await _submit_pending(async_client)

    resp = await _export_payroll(async_client, list(TUTORS))

    assert resp.status_code == 409
    assert resp.json()["error"] == "PendingRequestsError"
    assert accounting.timesheets == []


async def test_scoped_export_mixing_failed_and_unattempted_items_refused_while_pending(
    async_client: AsyncClient,
    db_session: AsyncSession,
    accounting: InMemoryAccountingService,
) -> None:
    await _generate_payroll(async_client)
    items = await _items(db_session)
    items["tutor-b"].xero_export_error = "Simulated Xero failure"
    await db_session.commit()
    await _submit_pending(async_client)

    resp = await _export_payroll(async_client, ["tutor-b", "tutor-c"])

    assert resp.status_code == 409
    assert accounting.timesheets == []


async def test_export_requires_admin(async_client: AsyncClient) -> None:
    await _generate_payroll(async_client)
    resp = await async_client.post(PAYROLL_EXPORT_URL, headers=TUTOR_HEADERS)
    assert resp.status_code == 403


async def test_empty_retry_scope_is_rejected(async_client: AsyncClient) -> None:
    await _generate_payroll(async_client)
    resp = await _export_payroll(async_client, [])
    assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Payroll export
# ---------------------------------------------------------------------------


async def test_full_export_posts_every_item_and_locks_week(
    async_client: AsyncClient,
    db_session: AsyncSession,
    accounting: InMemoryAccountingService,
) -> None:
    await _generate_payroll(async_client)

    resp = await _export_payroll(async_client)

    assert resp.status_code == 200
    data = resp.json()
    assert data["scope"] == "payroll"
    assert data["is_retry"] is False
    assert (data["exported"], data["errors"], data["skipped"]) == (3, 0, 0)
    assert data["all_exported"] is True
    assert data["locked"] is True
    assert {t["tutor_id"] for t in accounting.timesheets} == set(TUTORS)
    assert accounting.timesheets[0]["email"] in {"a@example.com", "b@example.com", "c@example.com"}

    items = await _items(db_session)
    for item in items.values():
        assert item.exported_to_xero is True
        assert item.exported_at is not None
        assert item.xero_timesheet_id is not None
        assert item.xero_export_error is None

    meta = await _payroll_meta(db_session)
    assert meta.locked is True
    assert meta.locked_at is not None
    assert meta.has_export_errors is False
    assert meta.last_export_attempt is not None


async def test_partial_failure_then_scoped_retry(
    async_client: AsyncClient,
    db_session: AsyncSession,
    accounting: InMemoryAccountingService,
) -> None:
    """One rejected item does not block the others; a retry of just that item finishes the week."""
    await _generate_payroll(async_client)
    accounting.fail("tutor-b", "Employee not found in Xero for email: b@example.com")

    first = (await _export_payroll(async_client)).json()

    assert (first["exported"], first["errors"]) == (2, 1)
    assert first["all_exported"] is False
    assert first["locked"] is False
    assert first["error_details"] == [
        {
            "item_id": "tutor-b",
            "name": "B Tutor",
            "error": "Employee not found in Xero for email: b@example.com",
        }
    ]
    items = await _items(db_session)
    assert items["tutor-a"].exported_to_xero is True
    assert items["tutor-c"].exported_to_xero is True
    assert items["tutor-b"].exported_to_xero is False
    assert items["tutor-b"].xero_export_error == "Employee not found in Xero for email: b@example.com"
    assert items["tutor-b"].export_attempted_at is not None
    meta = await _payroll_meta(db_session)
    assert meta.has_export_errors is True
    assert meta.locked is False

    accounting.succeed("tutor-b")
    exported_at_a = items["tutor-a"].exported_at

    retry = (await _export_payroll(async_client, ["tutor-b"])).json()

    assert retry["is_retry"] is True
    assert (retry["exported"], retry["errors"], retry["skipped"]) == (1, 0, 0)
    assert retry["all_exported"] is True
    assert retry["locked"] is True
    assert [t["tutor_id"] for t in accounting.timesheets] == ["tutor-c", "tutor-a", "tutor-b"]

    items = await _items(db_session)
    assert items["tutor-b"].exported_to_xero is True
    assert items["tutor-b"].xero_export_error is None
    assert items["tutor-a"].exported_at == exported_at_a
    meta = await _payroll_meta(db_session)
    assert meta.locked is True
    assert meta.has_export_errors is False


async def test_exported_items_are_never_posted_again(
    async_client: AsyncClient,
    accounting: InMemoryAccountingService,
) -> None:
    """A retry that names an already-exported item skips it without contacting Xero."""
    await _generate_payroll(async_client)
    accounting.fail("tutor-b")
    await _export_payroll(async_client)

    retry = (await _export_payroll(async_client, ["tutor-a", "tutor-a", "missing"])).json()

    assert (retry["exported"], retry["errors"], retry["skipped"]) == (0, 0, 2)
    reasons = {r["item_id"]: r["reason"] for r in retry["results"]}
    assert reasons == {"tutor-a": "Already exported", "missing": "Not found"}
    assert [t["tutor_id"] for t in accounting.timesheets].count("tutor-a") == 1


async def test_unscoped_rerun_only_attempts_unexported_items(
    async_client: AsyncClient,
    accounting: InMemoryAccountingService,
) -> None:
    await _generate_payroll(async_client)
    accounting.fail("tutor-b")
    await _export_payroll(async_client)
    accounting.succeed("tutor-b")

    rerun = (await _export_payroll(async_client)).json()

    assert (rerun["exported"], rerun["skipped"]) == (1, 2)
    assert rerun["locked"] is True
    assert len(accounting.timesheets) == 3


async def test_timeout_is_recorded_as_item_error(
    async_client: AsyncClient,
    db_session: AsyncSession,
    accounting: InMemoryAccountingService,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    await _generate_payroll(async_client)
    monkeypatch.setattr(get_settings(), "xero_timeout_seconds", 0.05)
    accounting.delay("tutor-c", 5)

    data = (await _export_payroll(async_client)).json()

    assert (data["exported"], data["errors"]) == (2, 1)
    items = await _items(db_session)
    assert items["tutor-c"].exported_to_xero is False
    assert items["tutor-c"].xero_export_error is not None
    assert "Timed out" in items["tutor-c"].xero_export_error


async def test_missing_tutor_email_is_recorded_as_item_error(
    async_client: AsyncClient,
    db_session: AsyncSession,
    directory: InMemoryDirectoryService,
) -> None:
    await _generate_payroll(async_client)
    directory.seed_tutor(TutorInfo(id="tutor-a", first_name="A", last_name="Tutor"))

    data = (await _export_payroll(async_client)).json()

    assert data["errors"] == 1
    items = await _items(db_session)
    assert items["tutor-a"].xero_export_error == "Tutor email not found"


async def test_unexpected_error_is_contained_to_its_item(
    async_client: AsyncClient,
    db_session: AsyncSession,
    accounting: InMemoryAccountingService,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    await _generate_payroll(async_client)
    original = accounting.post_timesheet

    async def _flaky(item: PayrollItem, tutor_email: str, week: Any) -> Any:
        if item.tutor_id == "tutor-a":
            raise RuntimeError("connection reset")
        return await original(item, tutor_email, week)

    monkeypatch.setattr(accounting, "post_timesheet", _flaky)

    data = (await _export_payroll(async_client)).json()

    assert (data["exported"], data["errors"]) == (2, 1)
    items = await _items(db_session)
    assert items["tutor-a"].xero_export_error == "connection reset"


async def test_export_writes_audit_entries(
    async_client: AsyncClient,
    db_session: AsyncSession,
    accounting: InMemoryAccountingService,
) -> None:
    await _generate_payroll(async_client)
    accounting.fail("tutor-b")
    await _export_payroll(async_client)
    accounting.succeed("tutor-b")
    await _export_payroll(async_client, ["tutor-b"])

    result = await db_session.execute(
        select(AuditLog).where(col(AuditLog.entity_type).in_(["PAYROLL_ITEM", "PAYROLL_WEEK"]))
    )
    actions = sorted((e.entity_id, e.action) for e in result.scalars().all())
    assert actions == sorted(
        [
            (WEEK, "GENERATE"),
            (f"{WEEK}/tutor-a", "EXPORT"),
            (f"{WEEK}/tutor-b", "EXPORT_FAILED"),
            (f"{WEEK}/tutor-c", "EXPORT"),
            (f"{WEEK}/tutor-b", "EXPORT"),
            (WEEK, "LOCK"),
        ]
    )


# ---------------------------------------------------------------------------
# Locked weeks
# ---------------------------------------------------------------------------


async def test_locked_week_refuses_generation_and_new_requests(async_client: AsyncClient) -> None:
    await _generate_payroll(async_client)
    await _export_payroll(async_client)

    regenerate = await async_client.post(
        "/payroll/generate",
        json={"week_start": WEEK, "week_end": WEEK_END},
        headers=ADMIN_HEADERS,
    )
    assert regenerate.status_code == 409
    assert "locked" in regenerate.json()["detail"]

    submit = await async_client.post(
        "/additional-hours",
        json={"tutor_id": "tutor-a", "week_start": WEEK, "hours": 1, "description": "Late", "notes": "Late"},
        headers=TUTOR_HEADERS,
    )
    assert submit.status_code == 409


async def test_export_of_locked_week_is_a_no_op(
    async_client: AsyncClient,
    accounting: InMemoryAccountingService,
) -> None:
    await _generate_payroll(async_client)
    await _export_payroll(async_client)

    again = (await _export_payroll(async_client)).json()

    assert (again["exported"], again["skipped"]) == (0, 3)
    assert again["locked"] is True
    assert len(accounting.timesheets) == 3


# ---------------------------------------------------------------------------
# Invoice export
# ---------------------------------------------------------------------------


async def test_invoice_export_records_xero_ids_and_locks(
    async_client: AsyncClient,
    db_session: AsyncSession,
    accounting: InMemoryAccountingService,
) -> None:
    await _generate_invoices(async_client)

    resp = await async_client.post(INVOICE_EXPORT_URL, headers=ADMIN_HEADERS)

    assert resp.status_code == 200
    data = resp.json()
    assert data["scope"] == "invoices"
    assert data["exported"] == 3
    assert data["locked"] is True
    assert len(accounting.invoices) == 3

    result = await db_session.execute(select(Invoice).execution_options(populate_existing=True))
    for invoice in result.scalars().all():
        assert invoice.exported_to_xero is True
        assert invoice.xero_invoice_id == f"xero-{invoice.id}"
        assert invoice.xero_invoice_number is not None
    meta = await db_session.get(InvoiceWeek, WEEK_START_DATE, populate_existing=True)
    assert meta is not None
    assert meta.locked is True


async def test_invoice_partial_failure_and_retry(
    async_client: AsyncClient,
    db_session: AsyncSession,
    accounting: InMemoryAccountingService,
) -> None:
    ids = await _generate_invoices(async_client)
    accounting.fail(ids["f-b"], "Contact not found in Xero for email: b@example.com")

    first = (await async_client.post(INVOICE_EXPORT_URL, headers=ADMIN_HEADERS)).json()
    assert (first["exported"], first["errors"]) == (2, 1)
    assert first["locked"] is False

    accounting.succeed(ids["f-b"])
    retry = (
        await async_client.post(INVOICE_EXPORT_URL, json={"target_ids": [ids["f-b"]]}, headers=ADMIN_HEADERS)
    ).json()

    assert retry["exported"] == 1
    assert retry["locked"] is True
    assert len(accounting.invoices) == 3


async def test_invoice_export_requires_generated_week(async_client: AsyncClient) -> None:
    resp = await async_client.post(INVOICE_EXPORT_URL, headers=ADMIN_HEADERS)
    assert resp.status_code == 409


async def test_invoice_export_ignores_pending_payroll_requests(async_client: AsyncClient) -> None:
    await _generate_invoices(async_client)
    await _submit_pending(async_client)

    resp = await async_client.post(INVOICE_EXPORT_URL, headers=ADMIN_HEADERS)

    assert resp.status_code == 200
    assert resp.json()["exported"] == 3


async def test_invoice_removed_mid_export_is_reported_not_found(
    async_client: AsyncClient,
    db_session: AsyncSession,
    accounting: InMemoryAccountingService,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """An invoice deleted by a regeneration while the batch runs is skipped, not posted."""
    ids = await _generate_invoices(async_client)
    real_post = accounting.post_invoice

    async def _post_and_remove_family_b(invoice: Invoice, week: Any) -> Any:
        if invoice.family_id == "f-a":
            await db_session.execute(
                delete(Invoice)
                .where(col(Invoice.id) == uuid.UUID(ids["f-b"]))
                .execution_options(synchronize_session=False)
            )
        return await real_post(invoice, week)

    monkeypatch.setattr(accounting, "post_invoice", _post_and_remove_family_b)

    data = (await async_client.post(INVOICE_EXPORT_URL, headers=ADMIN_HEADERS)).json()

    assert (data["exported"], data["errors"], data["skipped"]) == (2, 0, 1)
    reasons = {r["item_id"]: r["reason"] for r in data["results"] if r["skipped"]}
    assert reasons == {ids["f-b"]: "Not found"}
    assert data["locked"] is True
    assert [i["family_id"] for i in accounting.invoices] == ["f-a", "f-c"]
