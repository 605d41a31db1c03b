"""Progress events for bulk payroll runs."""

from grant_payroll.events.progress import (
    PayrollBulkProgress,
    ProgressEmitter,
    channel_for,
)

__all__ = [
    "PayrollBulkProgress",
    "ProgressEmitter",
    "channel_for",
]
