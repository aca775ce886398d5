"""Accounting system client: posts payroll timesheets and family invoices to Xero.

Every call raises ExternalServiceError on failure; the export reconciler records
the message on the item and moves on to the next one.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, date, datetime, time, timedelta
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import httpx
from pydantic import BaseModel

from tutorpay.config import Settings, get_settings
from tutorpay.exceptions import ExternalServiceError

if TYPE_CHECKING:
    from tutorpay.models.invoice import Invoice
    from tutorpay.models.payroll import PayrollItem
    from tutorpay.services.week import WeekRange

logger = logging.getLogger(__name__)

ORDINARY_EARNINGS_TYPE = "ORDINARYTIMEEARNINGS"
INVOICE_REFERENCE_PREFIX = "WM-"
DAYS_PER_WEEK = 7


class TimesheetReceipt(BaseModel):
    """What Xero returned for a posted timesheet."""

    timesheet_id: str | None = None


class InvoiceReceipt(BaseModel):
    """What Xero returned for a posted invoice."""

    invoice_id: str | None = None
    invoice_number: str | None = None


@runtime_checkable
class AccountingService(Protocol):
    """Interface for the external accounting system."""

    async def post_timesheet(self, item: PayrollItem, tutor_email: str, week: WeekRange) -> TimesheetReceipt:
        """Post one tutor's hours for the week. Raises ExternalServiceError on failure."""
        ...

    async def post_invoice(self, invoice: Invoice, week: WeekRange) -> InvoiceReceipt:
        """Post one family invoice. Raises ExternalServiceError on failure."""
        ...


# ---------------------------------------------------------------------------
# Payload builders (pure)
# ---------------------------------------------------------------------------


def daily_units(item: PayrollItem, week: WeekRange) -> list[float]:
    """Spread a payroll item's hours over the seven days of the week.

    Lesson hours land on the day each lesson started; additional hours land on
    the last day. If nothing could be placed, the whole total goes on day one.
    """
    units = [0.0] * DAYS_PER_WEEK
    for lesson in item.lessons:
        try:
            lesson_day = datetime.fromisoformat(str(lesson["date"])).date()
        except (KeyError, ValueError):
            continue
        index = (lesson_day - week.start).days
        if 0 <= index < DAYS_PER_WEEK:
            units[index] += float(lesson.get("duration") or 0.0)

    if item.additional_hours > 0:
        units[-1] += item.additional_hours

    if sum(units) == 0 and item.total_hours > 0:
        units[0] = item.total_hours
    return [round(u, 2) for u in units]


def xero_date(value: date) -> str:
    """Xero payroll's ``/Date(ms)/`` form of a calendar date."""
    millis = int(datetime.combine(value, time.min, tzinfo=UTC).timestamp() * 1000)
    return f"/Date({millis})/"


def invoice_line_description(line: dict[str, Any]) -> str:
    when = datetime.fromisoformat(str(line["date"])).strftime("%d/%m/%Y")
    subject = line.get("subject") or "Lesson"
    return f"{line['student_name']} - {subject} ({when}) - {float(line['duration']):g}h with {line['tutor_name']}"


def build_timesheet(item: PayrollItem, employee_id: str, earnings_rate_id: str, week: WeekRange) -> dict[str, Any]:
    return {
        "EmployeeID": employee_id,
        "StartDate": xero_date(week.start),
        "EndDate": xero_date(week.end),
        "Status": "Draft",
        "TimesheetLines": [
            {
                "EarningsRateID": earnings_rate_id,
                "NumberOfUnits": daily_units(item, week),
            }
        ],
    }


def build_invoice(invoice: Invoice, contact_id: str, week: WeekRange, settings: Settings) -> dict[str, Any]:
    return {
        "Type": "ACCREC",
        "Contact": {"ContactID": contact_id},
        "Date": invoice.week_end.isoformat(),
        "DueDate": (invoice.week_end + timedelta(days=settings.invoice_due_days)).isoformat(),
        "LineAmountTypes": "Inclusive",
        "LineItems": [
            {
                "Description": invoice_line_description(line),
                "Quantity": 1,
                "UnitAmount": line["price"],
                "AccountCode": settings.xero_account_code,
                "TaxType": settings.xero_tax_type,
            }
            for line in invoice.line_items
        ],
        "Reference": f"{INVOICE_REFERENCE_PREFIX}{week.key}",
        "Status": "AUTHORISED",
    }


# ---------------------------------------------------------------------------
# Xero implementation
# ---------------------------------------------------------------------------


def _error_message(response: httpx.Response) -> str:
    detail: str | None = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        detail = body.get("Message") or body.get("Detail") or body.get("Title")
    return f"Xero returned {response.status_code}: {detail or response.text[:500]}"


class XeroAccountingService:
    """Posts to the Xero accounting and AU payroll APIs with a bounded timeout."""

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        if not self._settings.xero_access_token or not self._settings.xero_tenant_id:
            raise ExternalServiceError("Xero is not connected: access token or tenant id is missing")
        return httpx.AsyncClient(
            headers={
                "Authorization": f"Bearer {self._settings.xero_access_token}",
                "Xero-tenant-id": self._settings.xero_tenant_id,
                "Accept": "application/json",
            },
            timeout=self._settings.xero_timeout_seconds,
            transport=self._transport,
        )

    async def _request(self, client: httpx.AsyncClient, method: str, url: str, **kwargs: Any) -> Any:
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise ExternalServiceError(f"Xero request timed out: {method} {url}") from exc
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"Xero request failed: {exc}") from exc
        if response.is_error:
            raise ExternalServiceError(_error_message(response))
        try:
            return response.json()
        except ValueError as exc:
            raise ExternalServiceError("Xero returned a response that is not JSON") from exc

    async def _find_employee(self, client: httpx.AsyncClient, email: str) -> dict[str, Any]:
        data = await self._request(client, "GET", f"{self._settings.xero_payroll_url}/Employees")
        wanted = email.lower()
        for employee in data.get("Employees") or []:
            if (employee.get("Email") or "").lower() == wanted:
                return employee
        raise ExternalServiceError(f"Employee not found in Xero for email: {email}")

    async def _earnings_rate_id(self, client: httpx.AsyncClient, employee: dict[str, Any]) -> str:
        lines = (employee.get("PayTemplate") or {}).get("EarningsLines") or []
        if lines and lines[0].get("EarningsRateID"):
            return lines[0]["EarningsRateID"]

        data = await self._request(client, "GET", f"{self._settings.xero_payroll_url}/PayItems")
        for rate in (data.get("PayItems") or {}).get("EarningsRates") or []:
            if rate.get("EarningsType") == ORDINARY_EARNINGS_TYPE and rate.get("EarningsRateID"):
                return rate["EarningsRateID"]
        raise ExternalServiceError("No earnings rate found for employee")

    async def _find_contact(self, client: httpx.AsyncClient, email: str) -> dict[str, Any]:
        data = await self._request(client, "GET", f"{self._settings.xero_api_url}/Contacts")
        wanted = email.lower()
        for contact in data.get("Contacts") or []:
            if (contact.get("EmailAddress") or "").lower() == wanted:
                return contact
        raise ExternalServiceError(f"Contact not found in Xero for email: {email}")

    async def post_timesheet(self, item: PayrollItem, tutor_email: str, week: WeekRange) -> TimesheetReceipt:
        async with self._client() as client:
            employee = await self._find_employee(client, tutor_email)
            earnings_rate_id = await self._earnings_rate_id(client, employee)
            timesheet = build_timesheet(item, employee["EmployeeID"], earnings_rate_id, week)
            logger.info("Posting timesheet for %s: %.2f hours", item.tutor_name, item.total_hours)
            data = await self._request(
                client, "POST", f"{self._settings.xero_payroll_url}/Timesheets", json=[timesheet]
            )
        created = (data.get("Timesheets") or [{}])[0]
        return TimesheetReceipt(timesheet_id=created.get("TimesheetID"))

    async def post_invoice(self, invoice: Invoice, week: WeekRange) -> InvoiceReceipt:
        if not invoice.parent_email:
            raise ExternalServiceError(f"No parent email on invoice for {invoice.family_name}")
        async with self._client() as client:
            contact = await self._find_contact(client, invoice.parent_email)
            body = build_invoice(invoice, contact["ContactID"], week, self._settings)
            logger.info("Posting invoice for %s: %.2f", invoice.family_name, invoice.total)
            data = await self._request(
                client, "POST", f"{self._settings.xero_api_url}/Invoices", json={"Invoices": [body]}
            )
        created = (data.get("Invoices") or [{}])[0]
        return InvoiceReceipt(invoice_id=created.get("InvoiceID"), invoice_number=created.get("InvoiceNumber"))


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------


class InMemoryAccountingService:
    """In-memory stub implementation for development and tests.

    Items are keyed by tutor id (timesheets) or invoice id (invoices). Failures
    and delays can be scripted per key.
    """

    def __init__(self) -> None:
        self.timesheets: list[dict[str, Any]] = []
        self.invoices: list[dict[str, Any]] = []
        self._failures: dict[str, str] = {}
        self._delays: dict[str, float] = {}

    def fail(self, key: str, message: str = "Simulated Xero failure") -> None:
        self._failures[key] = message

    def succeed(self, key: str) -> None:
        self._failures.pop(key, None)
        self._delays.pop(key, None)

    def delay(self, key: str, seconds: float) -> None:
        self._delays[key] = seconds

    async def _attempt(self, key: str) -> None:
        if key in self._delays:
            await asyncio.sleep(self._delays[key])
        if key in self._failures:
            raise ExternalServiceError(self._failures[key])

    async def post_timesheet(self, item: PayrollItem, tutor_email: str, week: WeekRange) -> TimesheetReceipt:
        await self._attempt(item.tutor_id)
        timesheet_id = f"ts-{len(self.timesheets) + 1}"
        self.timesheets.append(
            {
                "timesheet_id": timesheet_id,
                "tutor_id": item.tutor_id,
                "email": tutor_email,
                "week_start": week.key,
                "units": daily_units(item, week),
            }
        )
        return TimesheetReceipt(timesheet_id=timesheet_id)

    async def post_invoice(self, invoice: Invoice, week: WeekRange) -> InvoiceReceipt:
        await self._attempt(str(invoice.id))
        number = f"INV-{len(self.invoices) + 1:04d}"
        self.invoices.append(
            {
                "invoice_id": str(invoice.id),
                "invoice_number": number,
                "family_id": invoice.family_id,
                "week_start": week.key,
                "total": invoice.total,
            }
        )
        return InvoiceReceipt(invoice_id=f"xero-{invoice.id}", invoice_number=number)


_accounting_service: AccountingService | None = None


def get_accounting_service() -> AccountingService:
    """Return the configured accounting service.

    Falls back to the in-memory implementation when Xero credentials are absent.
    """
    global _accounting_service
    if _accounting_service is None:
        settings = get_settings()
        if settings.xero_access_token and settings.xero_tenant_id:
            _accounting_service = XeroAccountingService(settings)
        else:
            logger.warning("Xero credentials not configured; using in-memory accounting service")
            _accounting_service = InMemoryAccountingService()
    return _accounting_service


def set_accounting_service(service: AccountingService) -> None:
    """Override the service (for testing or production wiring)."""
    global _accounting_service
    _accounting_service = service
