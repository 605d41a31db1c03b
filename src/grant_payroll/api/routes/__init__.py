"""API routes."""

from grant_payroll.api.routes.bulk_payroll import router as bulk_payroll_router
from grant_payroll.api.routes.health import router as health_router
from grant_payroll.api.routes.payrolls import router as payrolls_router

__all__ = ["bulk_payroll_router", "health_router", "payrolls_router"]
