from sqlmodel import SQLModel

from tutorpay.models.additional_hours import AdditionalHoursRequest
from tutorpay.models.audit import AuditLog
from tutorpay.models.base import ExportStatusMixin, TimestampMixin, UUIDBase, WeekMetaMixin
from tutorpay.models.enums import (
    AuditAction,
    AuditEntityType,
    ExportScope,
    LessonType,
    ReportStatus,
    RequestStatus,
)
from tutorpay.models.invoice import Invoice, InvoiceWeek
from tutorpay.models.payroll import PayrollItem, PayrollWeek

__all__ = [
    "AdditionalHoursRequest",
    "AuditAction",
    "AuditEntityType",
    "AuditLog",
    "ExportScope",
    "ExportStatusMixin",
    "Invoice",
    "InvoiceWeek",
    "LessonType",
    "PayrollItem",
    "PayrollWeek",
    "ReportStatus",
    "RequestStatus",
    "SQLModel",
    "TimestampMixin",
    "UUIDBase",
    "WeekMetaMixin",
]
