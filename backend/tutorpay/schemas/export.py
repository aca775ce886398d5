from __future__ import annotations

from pydantic import BaseModel, Field

from tutorpay.models.enums import ExportScope


class ExportPayrollPayload(BaseModel):
    """Request body for a payroll export. ``tutor_ids`` scopes a retry."""

    tutor_ids: list[str] | None = Field(default=None, min_length=1)


class ExportInvoicesPayload(BaseModel):
    """Request body for an invoice export. ``target_ids`` scopes a retry."""

    target_ids: list[str] | None = Field(default=None, min_length=1)


class ExportItemResult(BaseModel):
    """Outcome for one item of an export run."""

    item_id: str
    name: str | None = None
    exported: bool = False
    skipped: bool = False
    reason: str | None = None
    external_id: str | None = None
    external_number: str | None = None
    hours: float | None = None
    total: float | None = None


class ExportErrorDetail(BaseModel):
    """Failure message for one item of an export run."""

    item_id: str
    name: str | None = None
    error: str


class ExportResult(BaseModel):
    """Summary of one export invocation. Produced fresh each call, never stored."""

    scope: ExportScope
    week_start: str
    is_retry: bool
    exported: int = 0
    errors: int = 0
    skipped: int = 0
    all_exported: bool = False
    locked: bool = False
    results: list[ExportItemResult] = Field(default_factory=list)
    error_details: list[ExportErrorDetail] = Field(default_factory=list)
