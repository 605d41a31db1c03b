"""Bulk payroll progress notifications.

The emitter provides:
- Per-batch channels (``payroll-bulk.{batch_id}``)
- Sync and async subscribers
- Error isolation (subscriber failures are logged and returned, never raised)
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union
from uuid import UUID

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "payroll-bulk"


def channel_for(batch_id: UUID | str) -> str:
    return f"{CHANNEL_PREFIX}.{batch_id}"


@dataclass(frozen=True)
class PayrollBulkProgress:
    """Progress snapshot of one bulk payroll batch."""

    batch_id: UUID
    processed: int
    total: int
    status: str
    current_employee: str | None = None
    current_allocation: str | None = None
    successful: int = 0
    failed: int = 0
    advances_created: int = 0

    @property
    def channel(self) -> str:
        return channel_for(self.batch_id)

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "failed")

    def to_dict(self) -> dict[str, Any]:
        """Wire payload delivered to subscribers."""
        return {
            "batch_id": str(self.batch_id),
            "processed": self.processed,
            "total": self.total,
            "status": self.status,
            "current_employee": self.current_employee,
            "current_allocation": self.current_allocation,
            "summary": {
                "successful": self.successful,
                "failed": self.failed,
                "advances_created": self.advances_created,
            },
        }


ProgressHandler = Callable[[PayrollBulkProgress], Union[None, Awaitable[None]]]


@dataclass
class _Subscription:
    handler: ProgressHandler
    channel: str | None  # None = every batch
    is_async: bool


class ProgressEmitter:
    """Fire-and-forget publisher for batch progress.

    Usage:
        emitter = ProgressEmitter()
        emitter.subscribe(push_to_websocket, channel=channel_for(batch_id))
        await emitter.emit(progress)
    """

    def __init__(self) -> None:
        self._subscriptions: list[_Subscription] = []

    def subscribe(self, handler: ProgressHandler, channel: str | None = None) -> None:
        """Register a handler, optionally for a single batch channel."""
        self._subscriptions.append(
            _Subscription(
                handler=handler,
                channel=channel,
                is_async=inspect.iscoroutinefunction(handler),
            )
        )

    def unsubscribe(self, handler: ProgressHandler) -> None:
        self._subscriptions = [s for s in self._subscriptions if s.handler != handler]

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def emit(self, event: PayrollBulkProgress) -> list[Exception]:
        """Deliver an event to matching subscribers.

        Returns exceptions raised by subscribers; they are logged here and
        never raised. The caller decides whether a failed delivery matters.
        """
        errors: list[Exception] = []
        tasks: list[asyncio.Task[None]] = []

        for sub in self._subscriptions:
            if sub.channel is not None and sub.channel != event.channel:
                continue

            if sub.is_async:
                tasks.append(asyncio.create_task(self._call_async(sub.handler, event)))
                continue

            try:
                sub.handler(event)
            except Exception as e:
                logger.exception(
                    "Progress handler %s failed for %s",
                    sub.handler,
                    event.channel,
                )
                errors.append(e)

        if tasks:
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    errors.append(result)

        return errors

    async def _call_async(self, handler: ProgressHandler, event: PayrollBulkProgress) -> None:
        try:
            await handler(event)  # type: ignore[misc]
        except Exception:
            logger.exception(
                "Async progress handler %s failed for %s",
                handler,
                event.channel,
            )
            raise
