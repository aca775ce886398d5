from __future__ import annotations

import enum


class LessonType(enum.StrEnum):
    """Scheduling type of a lesson."""

    NORMAL = "Normal"
    TRIAL = "Trial"
    POSTPONE = "Postpone"
    CANCELLED = "Cancelled"
    UNCONFIRMED = "Unconfirmed"


class ReportStatus(enum.StrEnum):
    """Per-student attendance report on a lesson."""

    PRESENT = "present"
    PARTIAL = "partial"
    NO_SHOW = "noShow"
    CANCELLED = "cancelled"


class RequestStatus(enum.StrEnum):
    """State machine for additional-hours requests."""

    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"


class ExportScope(enum.StrEnum):
    """Which week-partitioned artifact an export run targets."""

    PAYROLL = "payroll"
    INVOICES = "invoices"


class AuditEntityType(enum.StrEnum):
    """Entity type recorded in the audit log."""

    ADDITIONAL_HOURS_REQUEST = "ADDITIONAL_HOURS_REQUEST"
    PAYROLL_WEEK = "PAYROLL_WEEK"
    PAYROLL_ITEM = "PAYROLL_ITEM"
    INVOICE_WEEK = "INVOICE_WEEK"
    INVOICE = "INVOICE"


class AuditAction(enum.StrEnum):
    """Action recorded in the audit log."""

    SUBMIT = "SUBMIT"
    APPROVE = "APPROVE"
    DECLINE = "DECLINE"
    GENERATE = "GENERATE"
    REGENERATE = "REGENERATE"
    UPDATE = "UPDATE"
    EXPORT = "EXPORT"
    EXPORT_FAILED = "EXPORT_FAILED"
    LOCK = "LOCK"
