"""Durable offline queue for notifications the network backends could not take.

Entries are keyed by a locally unique id. Every insert and delete is a single
keyed statement executed under one lock, so the periodic local-delivery check,
the reconnect replay and new scheduling calls can all touch the queue at the
same time without rewriting it.

The same store keeps the cancellation handles of deliveries handed to network
backends, and a marker for every completed task. A consumer that claimed an
entry checks the marker before putting anything back.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import asdict, replace
from datetime import datetime
from pathlib import Path
from typing import List

import aiosqlite

from studynudge.db.models import NotificationPayload, OfflineQueueEntry, PendingReminder
from studynudge.utils.errors import PersistenceFailure
from studynudge.utils.time_utils import to_db_timestamp, utc_now

logger = logging.getLogger(__name__)


class OfflineQueue:
    """SQLite-backed store of OfflineQueueEntry records."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        """Open database connection."""
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        logger.info(f"Offline queue opened at {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("Offline queue closed")

    @property
    def db(self) -> aiosqlite.Connection:
        """Get the database connection."""
        if self._db is None:
            raise RuntimeError("Offline queue not connected")
        return self._db

    # Writes

    async def enqueue(self, entry: OfflineQueueEntry) -> str:
        """Persist an entry and return its id.

        Raises:
            PersistenceFailure: if local storage is unavailable
        """
        entry_id = entry.id or uuid.uuid4().hex
        created_at = entry.created_at or utc_now()

        try:
            async with self._lock:
                await self.db.execute(
                    """
                    INSERT INTO offline_queue (
                        id, task_id, user_id, fire_at, payload, origin, attempts, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entry_id,
                        entry.task_id,
                        entry.user_id,
                        to_db_timestamp(entry.fire_at),
                        json.dumps(asdict(entry.payload)),
                        entry.origin,
                        entry.attempts,
                        to_db_timestamp(created_at),
                    ),
                )
                await self.db.commit()
        except (aiosqlite.Error, RuntimeError) as e:
            logger.error(f"Offline queue write failed for task {entry.task_id}: {e}")
            raise PersistenceFailure(f"Could not queue reminder for task {entry.task_id}") from e

        entry.id = entry_id
        entry.created_at = created_at
        logger.info(
            f"Queued offline reminder {entry_id} for task {entry.task_id} "
            f"(fire at {entry.fire_at.isoformat()}, origin {entry.origin})"
        )
        return entry_id

    async def claim(self, entry_id: str) -> bool:
        """Atomically remove an entry.

        Returns True only for the caller whose delete removed the row, so two
        consumers racing for the same entry never both deliver it.
        """
        async with self._lock:
            cursor = await self.db.execute(
                "DELETE FROM offline_queue WHERE id = ?", (entry_id,)
            )
            await self.db.commit()
            return cursor.rowcount == 1

    async def remove(self, entry_id: str) -> bool:
        """Delete an entry by id."""
        return await self.claim(entry_id)

    async def remove_for_task(self, task_id: str) -> int:
        """Delete every entry for a task. Returns how many were removed."""
        async with self._lock:
            cursor = await self.db.execute(
                "DELETE FROM offline_queue WHERE task_id = ?", (task_id,)
            )
            await self.db.commit()
            removed = cursor.rowcount

        if removed:
            logger.info(f"Removed {removed} offline reminders for task {task_id}")
        return removed

    async def restore(self, entry: OfflineQueueEntry) -> OfflineQueueEntry | None:
        """Put a claimed entry back with its attempt counter bumped.

        Returns None, dropping the entry, if its task was closed while the
        entry was out of the queue.
        """
        restored = replace(entry, attempts=entry.attempts + 1)
        async with self._lock:
            if await self._is_closed(restored.task_id):
                return None
            await self.db.execute(
                """
                INSERT OR IGNORE INTO offline_queue (
                    id, task_id, user_id, fire_at, payload, origin, attempts, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    restored.id,
                    restored.task_id,
                    restored.user_id,
                    to_db_timestamp(restored.fire_at),
                    json.dumps(asdict(restored.payload)),
                    restored.origin,
                    restored.attempts,
                    to_db_timestamp(restored.created_at or utc_now()),
                ),
            )
            await self.db.commit()
        return restored

    # Completed tasks

    async def close_task(self, task_id: str) -> int:
        """Mark a task completed and drop its queued entries.

        Returns how many entries were removed.
        """
        async with self._lock:
            await self.db.execute(
                "INSERT OR REPLACE INTO closed_tasks (task_id, closed_at) VALUES (?, ?)",
                (task_id, to_db_timestamp(utc_now())),
            )
            cursor = await self.db.execute(
                "DELETE FROM offline_queue WHERE task_id = ?", (task_id,)
            )
            await self.db.commit()
            removed = cursor.rowcount

        if removed:
            logger.info(f"Removed {removed} offline reminders for completed task {task_id}")
        return removed

    async def reopen_task(self, task_id: str) -> None:
        """Allow a task to be queued again."""
        async with self._lock:
            await self.db.execute("DELETE FROM closed_tasks WHERE task_id = ?", (task_id,))
            await self.db.commit()

    async def is_closed(self, task_id: str) -> bool:
        """Whether the task has been completed."""
        return await self._is_closed(task_id)

    # Delivery handles

    async def save_handles(self, handles: List[PendingReminder]) -> bool:
        """Store cancellation handles for one task's deliveries.

        Returns False, storing nothing, when the task is closed. The caller
        then has to withdraw those deliveries itself.
        """
        if not handles:
            return True

        async with self._lock:
            if await self._is_closed(handles[0].task_id):
                return False
            await self.db.executemany(_INSERT_HANDLE, [_handle_params(h) for h in handles])
            await self.db.commit()
        return True

    async def record_replay(
        self, entry: OfflineQueueEntry, backend: str, delivery_id: str
    ) -> bool:
        """Swap a replayed entry's handle for the backend's delivery id.

        Returns False when the task was closed during the replay.
        """
        handle = PendingReminder(
            task_id=entry.task_id,
            fire_at=entry.fire_at,
            backend=backend,
            delivery_id=delivery_id,
            user_id=entry.user_id,
            payload=entry.payload,
        )
        async with self._lock:
            if await self._is_closed(entry.task_id):
                return False
            await self.db.execute(
                "DELETE FROM pending_reminders WHERE queued_entry_id = ?", (entry.id,)
            )
            await self.db.execute(_INSERT_HANDLE, _handle_params(handle))
            await self.db.commit()
        return True

    async def take_handles(self, task_id: str) -> List[PendingReminder]:
        """Remove and return every handle kept for a task."""
        async with self._lock:
            handles = await self.handles_for_task(task_id)
            await self.db.execute(
                "DELETE FROM pending_reminders WHERE task_id = ?", (task_id,)
            )
            await self.db.commit()
        return handles

    async def remove_handle(self, backend: str, delivery_id: str) -> bool:
        """Forget the handle of a delivery that has fired."""
        async with self._lock:
            cursor = await self.db.execute(
                "DELETE FROM pending_reminders WHERE backend = ? AND delivery_id = ?",
                (backend, delivery_id),
            )
            await self.db.commit()
            return cursor.rowcount > 0

    async def prune_handles(self, before: datetime) -> int:
        """Drop handles whose fire time is at or before `before`."""
        async with self._lock:
            cursor = await self.db.execute(
                "DELETE FROM pending_reminders WHERE fire_at <= ?",
                (to_db_timestamp(before),),
            )
            await self.db.commit()
            return cursor.rowcount

    async def handles_for_task(self, task_id: str) -> List[PendingReminder]:
        """Get the handles kept for a task, earliest fire time first."""
        async with self.db.execute(
            "SELECT * FROM pending_reminders WHERE task_id = ? ORDER BY fire_at",
            (task_id,),
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_handle(row) for row in rows]

    async def handles_for_backend(self, backend: str) -> List[PendingReminder]:
        """Get the handles of one backend's deliveries."""
        async with self.db.execute(
            "SELECT * FROM pending_reminders WHERE backend = ? ORDER BY fire_at",
            (backend,),
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_handle(row) for row in rows]

    # Reads

    async def get(self, entry_id: str) -> OfflineQueueEntry | None:
        """Get an entry by id."""
        async with self.db.execute(
            "SELECT * FROM offline_queue WHERE id = ?", (entry_id,)
        ) as cursor:
            row = await cursor.fetchone()
            if row:
                return self._row_to_entry(row)
            return None

    async def all(self) -> List[OfflineQueueEntry]:
        """Get every queued entry, earliest fire time first."""
        async with self.db.execute(
            "SELECT * FROM offline_queue ORDER BY fire_at"
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_entry(row) for row in rows]

    async def due(self, now: datetime | None = None) -> List[OfflineQueueEntry]:
        """Get entries whose fire time has passed."""
        if now is None:
            now = utc_now()
        async with self.db.execute(
            "SELECT * FROM offline_queue WHERE fire_at <= ? ORDER BY fire_at",
            (to_db_timestamp(now),),
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_entry(row) for row in rows]

    async def for_task(self, task_id: str) -> List[OfflineQueueEntry]:
        """Get the entries queued for one task."""
        async with self.db.execute(
            "SELECT * FROM offline_queue WHERE task_id = ? ORDER BY fire_at",
            (task_id,),
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_entry(row) for row in rows]

    async def count(self) -> int:
        """Number of queued entries."""
        async with self.db.execute("SELECT COUNT(*) FROM offline_queue") as cursor:
            row = await cursor.fetchone()
            return int(row[0]) if row else 0

    # Helper methods

    async def _is_closed(self, task_id: str) -> bool:
        async with self.db.execute(
            "SELECT 1 FROM closed_tasks WHERE task_id = ?", (task_id,)
        ) as cursor:
            return await cursor.fetchone() is not None

    def _row_to_entry(self, row: aiosqlite.Row) -> OfflineQueueEntry:
        """Convert a database row to an OfflineQueueEntry object."""
        return OfflineQueueEntry(
            id=row["id"],
            task_id=row["task_id"],
            user_id=row["user_id"],
            fire_at=datetime.fromisoformat(row["fire_at"]),
            payload=NotificationPayload(**json.loads(row["payload"])),
            origin=row["origin"],
            attempts=row["attempts"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def _row_to_handle(self, row: aiosqlite.Row) -> PendingReminder:
        """Convert a database row to a PendingReminder object."""
        return PendingReminder(
            id=row["id"],
            task_id=row["task_id"],
            user_id=row["user_id"],
            fire_at=datetime.fromisoformat(row["fire_at"]),
            backend=row["backend"],
            delivery_id=row["delivery_id"],
            queued_entry_id=row["queued_entry_id"],
            payload=NotificationPayload(**json.loads(row["payload"])) if row["payload"] else None,
        )


_INSERT_HANDLE = """
    INSERT INTO pending_reminders (
        task_id, user_id, fire_at, backend, delivery_id, queued_entry_id, payload
    ) VALUES (?, ?, ?, ?, ?, ?, ?)
"""


def _handle_params(handle: PendingReminder) -> tuple:
    return (
        handle.task_id,
        handle.user_id,
        to_db_timestamp(handle.fire_at),
        handle.backend,
        handle.delivery_id,
        handle.queued_entry_id,
        json.dumps(asdict(handle.payload)) if handle.payload else None,
    )
