"""Bulk payroll batch state machine with transition validation."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from grant_payroll.models import BulkPayrollBatch


class BatchStatus(str, Enum):
    """Bulk payroll batch status values."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class BatchStateMachine:
    """State machine for bulk payroll batch status transitions.

    Allowed transitions:
    - pending → processing
    - pending → failed (could not start)
    - processing → completed (even when some allocations failed)
    - processing → failed (infrastructure error)

    A batch is never retried: completed and failed are terminal.
    """

    # {from_status: [allowed_to_statuses]}
    VALID_TRANSITIONS: dict[str, list[str]] = {
        BatchStatus.PENDING: [BatchStatus.PROCESSING, BatchStatus.FAILED],
        BatchStatus.PROCESSING: [BatchStatus.COMPLETED, BatchStatus.FAILED],
        BatchStatus.COMPLETED: [],
        BatchStatus.FAILED: [],
    }

    IN_FLIGHT = {
        BatchStatus.PENDING,
        BatchStatus.PROCESSING,
    }

    TERMINAL = {
        BatchStatus.COMPLETED,
        BatchStatus.FAILED,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def is_in_flight(cls, status: str) -> bool:
        return status in cls.IN_FLIGHT

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return status in cls.TERMINAL

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])

    @classmethod
    def validate_batch_for_transition(
        cls, batch: BulkPayrollBatch, to_status: str
    ) -> list[str]:
        """Validate a batch for a specific transition, returning any errors.

        Returns list of error messages (empty if valid).
        """
        errors: list[str] = []
        from_status = batch.status

        if not cls.can_transition(from_status, to_status):
            errors.append(f"Cannot transition from '{from_status}' to '{to_status}'")
            return errors

        if to_status == BatchStatus.COMPLETED:
            if batch.processed_payrolls != batch.successful_payrolls + batch.failed_payrolls:
                errors.append(
                    "Processed count does not equal successful plus failed"
                )

        return errors
