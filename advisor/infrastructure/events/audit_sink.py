"""
Asynchronous audit event sink.

emit() is a non-blocking queue put, so a slow handler never sits on the
conversion or generation path. A background worker drains the queue into
the handler. When the queue is full the event is dropped with a warning.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from advisor.utils.time import utc_now

logger = logging.getLogger(__name__)


class AuditEventType:
    CURRENCY_CONVERTED = "CURRENCY_CONVERTED"
    CALC_STARTED = "CALC_STARTED"
    RECS_INPUTS_CAPTURED = "RECS_INPUTS_CAPTURED"
    RECS_COMPUTED = "RECS_COMPUTED"
    CALC_COMPLETED = "CALC_COMPLETED"
    RATES_REFRESHED = "RATES_REFRESHED"


@dataclass(frozen=True)
class AuditEvent:
    event_type: str
    correlation_id: Optional[str]
    payload: Dict[str, Any]
    user_id: Optional[str] = None
    occurred_at: datetime = field(default_factory=utc_now)


AuditHandler = Callable[[AuditEvent], Awaitable[None]]


async def log_audit_event(event: AuditEvent) -> None:
    """Default handler: structured log line."""
    logger.info(
        "audit event=%s correlation_id=%s user_id=%s payload=%s",
        event.event_type, event.correlation_id, event.user_id, event.payload,
    )


class AuditEventSink:
    def __init__(self, handler: AuditHandler = log_audit_event, max_queue_size: int = 1000):
        self._handler = handler
        self._queue: asyncio.Queue[AuditEvent] = asyncio.Queue(maxsize=max_queue_size)
        self._worker: Optional[asyncio.Task] = None
        self.dropped = 0

    def emit(self, event: AuditEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "Audit queue full; dropped %s (correlation_id=%s)", event.event_type, event.correlation_id
            )

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="audit-sink")

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._handler(event)
            except Exception:
                # Handler failures must not kill the worker
                logger.exception("Audit handler failed for %s", event.event_type)
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        """Wait until every queued event has been handled (worker must be running)."""
        await self._queue.join()

    async def stop(self) -> None:
        if self._worker is None:
            return
        if not self._worker.done():
            await self.drain()
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None


class RecordingAuditHandler:
    """Keeps events in memory."""

    def __init__(self) -> None:
        self.events: List[AuditEvent] = []

    async def __call__(self, event: AuditEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> List[AuditEvent]:
        return [e for e in self.events if e.event_type == event_type]
