"""ORM models for the grant payroll engine."""

from grant_payroll.models.base import Base, TimestampMixin
from grant_payroll.models.grant import Grant, GrantItem
from grant_payroll.models.employee import (
    Employee,
    EmployeeChild,
    EmployeeFundingAllocation,
    EmployeeStatus,
    Employment,
)
from grant_payroll.models.payroll import (
    BulkPayrollBatch,
    InterOrganizationAdvance,
    Payroll,
    PayrollGrantAllocation,
)
from grant_payroll.models.settings import BenefitSetting, TaxBracket, TaxSetting
from grant_payroll.models.audit import (
    AllocationChangeLog,
    EmployeeFundingAllocationHistory,
    EmploymentHistory,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "Grant",
    "GrantItem",
    "Employee",
    "EmployeeChild",
    "EmployeeFundingAllocation",
    "EmployeeStatus",
    "Employment",
    "BulkPayrollBatch",
    "InterOrganizationAdvance",
    "Payroll",
    "PayrollGrantAllocation",
    "BenefitSetting",
    "TaxBracket",
    "TaxSetting",
    "AllocationChangeLog",
    "EmployeeFundingAllocationHistory",
    "EmploymentHistory",
]
