"""Grant payroll services."""

from grant_payroll.services.state_machine import BatchStateMachine, BatchStatus, InvalidTransitionError
from grant_payroll.services.advance_resolver import AdvanceResolver
from grant_payroll.services.allocation_snapshotter import AllocationSnapshotter
from grant_payroll.services.audit_recorder import AuditRecorder
from grant_payroll.services.batch_runner import BulkPayrollBatchRunner
from grant_payroll.services.allocation_service import (
    EmploymentService,
    FundingAllocationService,
    GrantService,
)
from grant_payroll.services.payroll_service import PayrollService

__all__ = [
    "BatchStateMachine",
    "BatchStatus",
    "InvalidTransitionError",
    "AdvanceResolver",
    "AllocationSnapshotter",
    "AuditRecorder",
    "BulkPayrollBatchRunner",
    "EmploymentService",
    "FundingAllocationService",
    "GrantService",
    "PayrollService",
]
