"""Business reasons behind allocation and employment changes.

Each variant names one meaningful change. The audit recorder stores the
variant's change type and rendered text; nothing inspects field names to
guess what happened.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Union

from grant_payroll.models import EmployeeFundingAllocationHistory as History


@dataclass(frozen=True)
class AllocationCreated:
    pass


@dataclass(frozen=True)
class FteChanged:
    old: Decimal
    new: Decimal


@dataclass(frozen=True)
class AllocatedAmountChanged:
    old: Decimal | None
    new: Decimal | None


@dataclass(frozen=True)
class AllocationEnded:
    end_date: date


@dataclass(frozen=True)
class ProbationCompleted:
    pass


@dataclass(frozen=True)
class EmploymentTerminated:
    end_date: date | None = None


@dataclass(frozen=True)
class SalaryChanged:
    old: Decimal
    new: Decimal


@dataclass(frozen=True)
class EmploymentCreated:
    pass


ChangeReason = Union[
    AllocationCreated,
    FteChanged,
    AllocatedAmountChanged,
    AllocationEnded,
    ProbationCompleted,
    EmploymentTerminated,
    SalaryChanged,
    EmploymentCreated,
]


def _pct(fte: Decimal) -> str:
    return f"{(fte * 100).normalize():f}%"


def _money(amount: Decimal | None) -> str:
    if amount is None:
        return "none"
    return f"{amount:,.2f}"


def render_change_reason(reason: ChangeReason) -> str:
    """Human-readable text for a change reason."""
    if isinstance(reason, AllocationCreated):
        return "Initial funding allocation"
    if isinstance(reason, FteChanged):
        return f"FTE changed from {_pct(reason.old)} to {_pct(reason.new)}"
    if isinstance(reason, AllocatedAmountChanged):
        return (
            f"Allocated amount changed from {_money(reason.old)} "
            f"to {_money(reason.new)}"
        )
    if isinstance(reason, AllocationEnded):
        return f"Allocation ended on {reason.end_date.isoformat()}"
    if isinstance(reason, ProbationCompleted):
        return "Probation completed; post-probation salary applies"
    if isinstance(reason, EmploymentTerminated):
        if reason.end_date is not None:
            return f"Employment terminated on {reason.end_date.isoformat()}"
        return "Employment terminated"
    if isinstance(reason, SalaryChanged):
        return f"Salary changed from {_money(reason.old)} to {_money(reason.new)}"
    if isinstance(reason, EmploymentCreated):
        return "Employment created"
    raise TypeError(f"Unknown change reason: {reason!r}")


def change_type_for(reason: ChangeReason) -> str:
    """Stored change type for a reason."""
    if isinstance(reason, (AllocationCreated, EmploymentCreated)):
        return History.CHANGE_CREATED
    if isinstance(reason, (FteChanged, AllocatedAmountChanged, SalaryChanged)):
        return History.CHANGE_UPDATED
    if isinstance(reason, AllocationEnded):
        return History.CHANGE_ENDED
    if isinstance(reason, ProbationCompleted):
        return History.CHANGE_PROBATION_COMPLETED
    if isinstance(reason, EmploymentTerminated):
        return History.CHANGE_TERMINATED
    raise TypeError(f"Unknown change reason: {reason!r}")
