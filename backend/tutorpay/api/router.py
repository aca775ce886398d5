from fastapi import APIRouter

from tutorpay.api.additional_hours import additional_hours_router
from tutorpay.api.invoices import invoices_router
from tutorpay.api.payroll import payroll_router
from tutorpay.api.reports import reports_router

api_router = APIRouter()
api_router.include_router(payroll_router)
api_router.include_router(invoices_router)
api_router.include_router(additional_hours_router)
api_router.include_router(reports_router)
