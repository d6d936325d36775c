"""Delivery dispatch chain: network backends in order, offline queue last."""

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Protocol, Sequence, Tuple

from studynudge.config import Config
from studynudge.db.models import (
    DeliveryAttempt,
    DeliveryReceipt,
    DispatchOutcome,
    NotificationPayload,
    OfflineQueueEntry,
    PendingReminder,
)
from studynudge.db.offline_queue import OfflineQueue
from studynudge.utils.constants import (
    NOTIFICATION_HEADING,
    OFFLINE_QUEUE_BACKEND,
    ORIGIN_PENDING_SCHEDULE,
    ORIGIN_SCHEDULED_NOTIFICATION,
)
from studynudge.utils.errors import BackendUnavailable, PersistenceFailure
from studynudge.utils.time_utils import utc_now

logger = logging.getLogger(__name__)


class DeliveryBackend(Protocol):
    """A network notification service."""

    name: str

    async def send(self, user_id: str, payload: NotificationPayload) -> DeliveryReceipt:
        """Deliver immediately."""

    async def schedule_at(
        self, user_id: str, payload: NotificationPayload, iso_timestamp: str
    ) -> DeliveryReceipt:
        """Ask the service to deliver at a future instant."""

    async def cancel(self, delivery_id: str) -> bool:
        """Cancel a scheduled delivery."""


BackendCall = Callable[[DeliveryBackend], Awaitable[DeliveryReceipt]]


async def first_success(
    backends: Sequence[DeliveryBackend],
    call: BackendCall,
    timeout: float,
    label: str = "",
) -> Tuple[DeliveryBackend, DeliveryReceipt] | None:
    """Try `call` on each backend in order and return the first success.

    A backend that raises, exceeds `timeout` seconds or answers with an
    unsuccessful receipt is skipped. Returns None when every backend failed.
    """
    for backend in backends:
        try:
            receipt = await asyncio.wait_for(call(backend), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{backend.name} timed out after {timeout}s ({label})")
            continue
        except Exception as e:
            logger.warning(f"{backend.name} failed ({label}): {e}")
            continue

        if receipt.success:
            return backend, receipt

        logger.warning(f"{backend.name} refused delivery ({label}): {receipt.error}")

    return None


def build_payload(attempt: DeliveryAttempt) -> NotificationPayload:
    """Build the notification body for a delivery attempt."""
    return NotificationPayload(
        title=NOTIFICATION_HEADING,
        body=attempt.message,
        data={
            "type": f"{attempt.reminder_type}_reminder",
            "taskId": attempt.task_id,
            "taskTitle": attempt.task_title,
            "tier": attempt.tier,
            "isFinal": attempt.is_final,
            "url": "/dashboard",
        },
        priority=attempt.priority_score,
    )


async def deliver_via(
    backend: DeliveryBackend,
    user_id: str,
    payload: NotificationPayload,
    fire_at: datetime,
    now: datetime,
) -> DeliveryReceipt:
    """Send now if the fire time has passed, otherwise schedule it."""
    if fire_at <= now:
        return await backend.send(user_id, payload)
    return await backend.schedule_at(user_id, payload, fire_at.isoformat())


async def cancel_delivery(backend: DeliveryBackend, delivery_id: str, timeout: float) -> bool:
    """Withdraw a scheduled delivery. Failures are logged and reported as False."""
    try:
        cancelled = await asyncio.wait_for(backend.cancel(delivery_id), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Cancel of {delivery_id} on {backend.name} timed out")
        return False
    except BackendUnavailable as e:
        logger.warning(f"Cancel of {delivery_id} failed: {e}")
        return False

    if cancelled:
        logger.info(f"Cancelled {delivery_id} on {backend.name}")
    return cancelled


class Dispatcher:
    """Pushes delivery attempts through the backend chain.

    The offline queue is the terminal step: an attempt that no network
    backend accepted is stored locally and counts as handled.
    """

    def __init__(
        self,
        backends: Sequence[DeliveryBackend],
        queue: OfflineQueue,
        timeout: float | None = None,
    ):
        self.backends = list(backends)
        self.queue = queue
        self.timeout = timeout if timeout is not None else Config.BACKEND_TIMEOUT

    def get_backend(self, name: str) -> DeliveryBackend | None:
        """Look up a backend by name."""
        for backend in self.backends:
            if backend.name == name:
                return backend
        return None

    async def dispatch(self, attempt: DeliveryAttempt, now: datetime | None = None) -> DispatchOutcome:
        """Deliver one attempt, falling back to the offline queue."""
        if now is None:
            now = utc_now()

        payload = build_payload(attempt)
        label = f"task {attempt.task_id} at {attempt.fire_at.isoformat()}"

        result = await first_success(
            self.backends,
            lambda backend: deliver_via(backend, attempt.user_id, payload, attempt.fire_at, now),
            self.timeout,
            label,
        )

        if result is not None:
            backend, receipt = result
            logger.info(f"Delivered reminder for {label} via {backend.name} ({receipt.delivery_id})")
            return DispatchOutcome(
                attempt=attempt,
                success=True,
                backend=backend.name,
                delivery_id=receipt.delivery_id,
            )

        entry = OfflineQueueEntry(
            task_id=attempt.task_id,
            user_id=attempt.user_id,
            fire_at=attempt.fire_at,
            payload=payload,
            origin=ORIGIN_PENDING_SCHEDULE if attempt.fire_at > now else ORIGIN_SCHEDULED_NOTIFICATION,
        )

        try:
            entry_id = await self.queue.enqueue(entry)
        except PersistenceFailure as e:
            logger.error(f"Dropped reminder for {label}: {e}")
            return DispatchOutcome(attempt=attempt, success=False, error=str(e))

        logger.info(f"All network backends failed for {label}; queued offline as {entry_id}")
        return DispatchOutcome(
            attempt=attempt,
            success=True,
            backend=OFFLINE_QUEUE_BACKEND,
            queued_entry_id=entry_id,
        )

    async def dispatch_all(
        self, attempts: List[DeliveryAttempt], now: datetime | None = None
    ) -> List[DispatchOutcome]:
        """Dispatch attempts concurrently; one failure never blocks the rest."""
        results = await asyncio.gather(
            *(self.dispatch(attempt, now) for attempt in attempts),
            return_exceptions=True,
        )

        outcomes = []
        for attempt, result in zip(attempts, results):
            if isinstance(result, BaseException):
                logger.error(f"Unexpected dispatch error for task {attempt.task_id}: {result}")
                outcomes.append(DispatchOutcome(attempt=attempt, success=False, error=str(result)))
            else:
                outcomes.append(result)
        return outcomes

    async def cancel(self, pending: PendingReminder) -> bool:
        """Cancel a delivery that has not fired yet."""
        if pending.queued_entry_id:
            return await self.queue.remove(pending.queued_entry_id)

        backend = self.get_backend(pending.backend)
        if backend is None or not pending.delivery_id:
            return False

        return await cancel_delivery(backend, pending.delivery_id, self.timeout)
