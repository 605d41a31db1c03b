"""Exception types raised by the payroll engine.

Configuration and data errors are raised per calculation and caught by the
batch runner, which records them against the failing allocation. Only
infrastructure errors are allowed to escape a batch run.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID


class PayrollError(Exception):
    """Base class for payroll engine errors."""


# ===== Configuration errors =====


class ConfigurationError(PayrollError):
    """Raised when a required tax or benefit setting is missing for a year."""

    def __init__(self, key: str, year: int, reason: str | None = None):
        self.key = key
        self.year = year
        self.reason = reason
        if reason:
            super().__init__(f"Payroll setting '{key}' for {year}: {reason}")
        else:
            super().__init__(f"Payroll setting '{key}' is not configured for {year}")


class BracketConfigurationError(PayrollError):
    """Raised when tax brackets for a year are malformed."""

    def __init__(self, reason: str, year: int | None = None):
        self.reason = reason
        self.year = year
        msg = "Invalid tax bracket configuration"
        if year is not None:
            msg += f" for {year}"
        super().__init__(f"{msg}: {reason}")


# ===== Data errors =====


class InvalidAllocationError(PayrollError):
    """Raised when an allocation cannot be calculated (fte out of range)."""

    def __init__(self, allocation_id: UUID | None, fte: Decimal):
        self.allocation_id = allocation_id
        self.fte = fte
        super().__init__(
            f"Allocation {allocation_id} has fte {fte}; expected 0 < fte <= 1"
        )


class NoQualifyingAllocationsError(PayrollError):
    """Raised when an employee has no allocation covering the pay period."""

    def __init__(self, employee_id: UUID, pay_period_date: date):
        self.employee_id = employee_id
        self.pay_period_date = pay_period_date
        super().__init__("Employee has no active funding allocations")


class MissingGrantItemError(PayrollError):
    """Raised when an allocation points at a grant item that no longer exists."""

    def __init__(self, allocation_id: UUID | None, grant_item_id: UUID):
        self.allocation_id = allocation_id
        self.grant_item_id = grant_item_id
        super().__init__(
            f"Allocation {allocation_id} references missing grant item {grant_item_id}"
        )


class EmployeeNotFoundError(PayrollError):
    """Raised when an employee does not exist or has been soft-deleted."""

    def __init__(self, employee_id: UUID):
        self.employee_id = employee_id
        super().__init__(f"Employee {employee_id} not found")


class MissingEmployeeError(PayrollError):
    """Raised when an employment has no linked employee."""

    def __init__(self, employment_id: UUID):
        self.employment_id = employment_id
        super().__init__("Employment has no linked employee")


class MissingEmploymentError(PayrollError):
    """Raised when an employee has no current employment."""

    def __init__(self, employee_id: UUID):
        self.employee_id = employee_id
        super().__init__("Employee has no active employment record")


class OverlappingEmploymentError(PayrollError):
    """Raised when a second current employment would be created."""

    def __init__(self, employee_id: UUID, existing_employment_id: UUID):
        self.employee_id = employee_id
        self.existing_employment_id = existing_employment_id
        super().__init__(
            f"Employee {employee_id} already has current employment "
            f"{existing_employment_id}"
        )


class DuplicateGrantItemError(PayrollError):
    """Raised when a grant item duplicates (grant, position, budget line)."""

    def __init__(self, grant_id: UUID, grant_position: str, budgetline_code: str | None):
        self.grant_id = grant_id
        self.grant_position = grant_position
        self.budgetline_code = budgetline_code
        super().__init__(
            f"Grant item '{grant_position}' with budget line '{budgetline_code}' "
            f"already exists for grant {grant_id}"
        )


class HubGrantNotFoundError(PayrollError):
    """Raised when no hub grant is configured for an organization."""

    def __init__(self, organization: str):
        self.organization = organization
        super().__init__(f"Hub grant not found for organization '{organization}'")


# ===== Batch errors =====


class InvalidPayPeriodError(PayrollError):
    """Raised when a pay period is not a YYYY-MM string."""

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Invalid pay period '{value}'; expected YYYY-MM")


class BatchNotFoundError(PayrollError):
    """Raised when a bulk payroll batch does not exist."""

    def __init__(self, batch_id: UUID):
        self.batch_id = batch_id
        super().__init__(f"Bulk payroll batch {batch_id} not found")


class ProgressBroadcastError(PayrollError):
    """Raised when the final status of a batch could not be delivered."""

    def __init__(self, batch_id: UUID, errors: list[Exception]):
        self.batch_id = batch_id
        self.errors = errors
        first = errors[0] if errors else None
        super().__init__(
            f"Final progress broadcast for batch {batch_id} failed: {first!r}"
        )


class BatchAlreadyRunningError(PayrollError):
    """Raised when an in-flight batch already covers the same period and filters."""

    def __init__(self, pay_period: str, filter_hash: str, batch_id: UUID | None = None):
        self.pay_period = pay_period
        self.filter_hash = filter_hash
        self.batch_id = batch_id
        super().__init__(
            f"A bulk payroll batch for {pay_period} with the same filters "
            f"is already in progress"
        )
