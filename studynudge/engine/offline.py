"""Offline queue consumers - the local fire check and the reconnect replay."""

import logging
from datetime import datetime
from typing import Protocol, Sequence

from studynudge.db.models import NotificationPayload, OfflineQueueEntry
from studynudge.db.offline_queue import OfflineQueue
from studynudge.engine.dispatcher import (
    DeliveryBackend,
    cancel_delivery,
    deliver_via,
    first_success,
)
from studynudge.utils.time_utils import utc_now

logger = logging.getLogger(__name__)


class LocalNotifier(Protocol):
    """Displays a notification on this host without a network backend.

    Headless hosts simply have no notifier.
    """

    async def show(self, user_id: str, payload: NotificationPayload) -> None:
        """Display the notification or raise."""


async def fire_due_entries(
    queue: OfflineQueue,
    notifier: LocalNotifier | None,
    now: datetime | None = None,
) -> int:
    """Display every queued notification whose fire time has passed.

    Each entry is claimed (removed) before it is shown, so the replay job can
    never deliver it a second time. An entry whose display fails goes back on
    the queue.

    Returns:
        Number of notifications shown
    """
    if notifier is None:
        return 0

    if now is None:
        now = utc_now()

    due_entries = await queue.due(now)
    if not due_entries:
        return 0

    logger.info(f"Local fire check: {len(due_entries)} queued reminders are due")

    shown = 0
    for entry in due_entries:
        if not await queue.claim(entry.id):  # type: ignore[arg-type]
            continue  # Taken by the replay job

        try:
            await notifier.show(entry.user_id, entry.payload)
        except Exception as e:
            logger.error(f"Local delivery failed for queued reminder {entry.id}: {e}")
            await _requeue(queue, entry)
            continue

        shown += 1
        logger.info(f"Fired queued reminder {entry.id} for task {entry.task_id} locally")

    return shown


async def replay_pending(
    queue: OfflineQueue,
    backends: Sequence[DeliveryBackend],
    timeout: float,
    now: datetime | None = None,
) -> int:
    """Retry queued notifications through the network backends.

    Runs when connectivity returns (and periodically). Entries that still
    cannot be delivered are left for the next cycle. A future delivery gets a
    cancellation handle in the queue's store; if its task was completed while
    the entry was out of the queue, the delivery is withdrawn again.

    Returns:
        Number of entries handed to a backend
    """
    if now is None:
        now = utc_now()

    entries = await queue.all()
    if not entries or not backends:
        return 0

    logger.info(f"Replaying {len(entries)} queued reminders")

    replayed = 0
    for entry in entries:
        if not await queue.claim(entry.id):  # type: ignore[arg-type]
            continue  # Fired locally in the meantime

        result = await first_success(
            backends,
            lambda backend, e=entry: deliver_via(backend, e.user_id, e.payload, e.fire_at, now),
            timeout,
            f"queued reminder {entry.id}",
        )

        if result is None:
            await _requeue(queue, entry)
            continue

        backend, receipt = result
        if entry.fire_at > now and receipt.delivery_id:
            if not await queue.record_replay(entry, backend.name, receipt.delivery_id):
                logger.info(
                    f"Task {entry.task_id} was completed during replay; "
                    f"withdrawing {receipt.delivery_id}"
                )
                await cancel_delivery(backend, receipt.delivery_id, timeout)
                continue

        replayed += 1
        logger.info(
            f"Replayed queued reminder {entry.id} for task {entry.task_id} "
            f"via {backend.name} ({receipt.delivery_id})"
        )

    return replayed


async def _requeue(queue: OfflineQueue, entry: OfflineQueueEntry) -> None:
    restored = await queue.restore(entry)
    if restored is None:
        logger.info(f"Dropped queued reminder {entry.id}: task {entry.task_id} is completed")
        return
    logger.debug(f"Queued reminder {entry.id} kept for next cycle (attempt {restored.attempts})")
