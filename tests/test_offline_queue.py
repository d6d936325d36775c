"""Tests for the SQLite offline queue."""

from datetime import timedelta

import aiosqlite
import pytest

from studynudge.db.migrations import run_migrations
from studynudge.db.models import NotificationPayload, OfflineQueueEntry, PendingReminder
from studynudge.db.offline_queue import OfflineQueue
from studynudge.utils.errors import PersistenceFailure


def make_entry(now, task_id="task-1", minutes=30, origin="pendingSchedule") -> OfflineQueueEntry:
    return OfflineQueueEntry(
        task_id=task_id,
        user_id="user-1",
        fire_at=now + timedelta(minutes=minutes),
        payload=NotificationPayload(
            title="📋 Task Reminder",
            body="Essay draft is due soon",
            data={"taskId": task_id, "isFinal": False},
            priority=5,
        ),
        origin=origin,  # type: ignore[arg-type]
    )


async def test_enqueue_and_read_back(queue, now):
    """Test that a queued entry comes back intact."""
    entry = make_entry(now)
    entry_id = await queue.enqueue(entry)

    assert entry.id == entry_id
    stored = await queue.get(entry_id)
    assert stored is not None
    assert stored.task_id == "task-1"
    assert stored.fire_at == entry.fire_at
    assert stored.payload == entry.payload
    assert stored.origin == "pendingSchedule"
    assert stored.attempts == 0
    assert await queue.count() == 1


async def test_due_entries(queue, now):
    """Test that only entries whose time has passed are due."""
    past = make_entry(now, minutes=-5, origin="scheduledNotification")
    future = make_entry(now, minutes=30)
    await queue.enqueue(past)
    await queue.enqueue(future)

    due = await queue.due(now)
    assert [e.id for e in due] == [past.id]

    later = await queue.due(now + timedelta(hours=1))
    assert [e.id for e in later] == [past.id, future.id]


async def test_claim_is_exclusive(queue, now):
    """Test that an entry can be claimed once."""
    entry_id = await queue.enqueue(make_entry(now))

    assert await queue.claim(entry_id) is True
    assert await queue.claim(entry_id) is False
    assert await queue.get(entry_id) is None


async def test_entries_are_independently_removable(queue, now):
    """Test that removing one entry leaves the other."""
    first = await queue.enqueue(make_entry(now, minutes=10))
    second = await queue.enqueue(make_entry(now, minutes=20))

    assert await queue.remove(first)
    remaining = await queue.all()
    assert [e.id for e in remaining] == [second]


async def test_remove_for_task(queue, now):
    """Test removing everything queued for a task."""
    await queue.enqueue(make_entry(now, task_id="task-1", minutes=10))
    await queue.enqueue(make_entry(now, task_id="task-1", minutes=20))
    await queue.enqueue(make_entry(now, task_id="task-2", minutes=30))

    assert await queue.remove_for_task("task-1") == 2
    assert await queue.for_task("task-1") == []
    assert len(await queue.for_task("task-2")) == 1


async def test_restore_bumps_attempts(queue, now):
    """Test putting a claimed entry back."""
    entry = make_entry(now)
    entry_id = await queue.enqueue(entry)
    await queue.claim(entry_id)

    restored = await queue.restore(entry)

    assert restored.attempts == 1
    stored = await queue.get(entry_id)
    assert stored.attempts == 1


async def test_entries_survive_reconnect(db_path, now):
    """Test that queued entries are durable."""
    first = OfflineQueue(db_path)
    await first.connect()
    entry_id = await first.enqueue(make_entry(now))
    await first.close()

    second = OfflineQueue(db_path)
    await second.connect()
    try:
        assert (await second.get(entry_id)) is not None
    finally:
        await second.close()


async def test_enqueue_without_connection_is_persistence_failure(db_path, now):
    """Test that an unusable store raises PersistenceFailure."""
    closed = OfflineQueue(db_path)

    with pytest.raises(PersistenceFailure):
        await closed.enqueue(make_entry(now))


def make_handle(now, delivery_id, minutes=30, backend="telegram") -> PendingReminder:
    return PendingReminder(
        task_id="task-1",
        user_id="user-1",
        fire_at=now + timedelta(minutes=minutes),
        backend=backend,
        delivery_id=delivery_id,
        payload=NotificationPayload(title="📋 Task Reminder", body="Essay draft is due soon"),
    )


async def test_closed_task_entries_are_not_restored(queue, now):
    """Test that a claimed entry stays out once its task is closed."""
    entry = make_entry(now)
    entry_id = await queue.enqueue(entry)
    await queue.enqueue(make_entry(now, minutes=40))
    await queue.claim(entry_id)

    assert await queue.close_task("task-1") == 1
    assert await queue.restore(entry) is None
    assert await queue.count() == 0

    await queue.reopen_task("task-1")
    assert not await queue.is_closed("task-1")
    assert (await queue.restore(entry)).attempts == 1


async def test_handles_round_trip(queue, now):
    """Test storing, reading and taking delivery handles."""
    assert await queue.save_handles([make_handle(now, "a", 10), make_handle(now, "b", 20)])

    handles = await queue.handles_for_backend("telegram")
    assert [h.delivery_id for h in handles] == ["a", "b"]
    assert handles[0].payload.body == "Essay draft is due soon"
    assert handles[0].fire_at == now + timedelta(minutes=10)

    assert await queue.remove_handle("telegram", "a")
    assert not await queue.remove_handle("telegram", "a")

    taken = await queue.take_handles("task-1")
    assert [h.delivery_id for h in taken] == ["b"]
    assert await queue.handles_for_task("task-1") == []


async def test_handles_refused_for_closed_task(queue, now):
    """Test that no handle is kept for a completed task."""
    await queue.close_task("task-1")

    assert not await queue.save_handles([make_handle(now, "a")])
    assert not await queue.record_replay(make_entry(now), "primary", "primary-1")
    assert await queue.handles_for_task("task-1") == []


async def test_record_replay_swaps_handle(queue, now):
    """Test that a replayed entry's handle points at the backend delivery."""
    entry = make_entry(now)
    entry_id = await queue.enqueue(entry)
    queued = PendingReminder(
        task_id="task-1", fire_at=entry.fire_at, backend="offline_queue", queued_entry_id=entry_id
    )
    await queue.save_handles([queued])

    assert await queue.record_replay(entry, "primary", "primary-7")

    handles = await queue.handles_for_task("task-1")
    assert [(h.backend, h.delivery_id, h.queued_entry_id) for h in handles] == [
        ("primary", "primary-7", None)
    ]


async def test_prune_handles(queue, now):
    """Test dropping handles whose fire time has passed."""
    await queue.save_handles([make_handle(now, "past", -5), make_handle(now, "future", 30)])

    assert await queue.prune_handles(now) == 1
    assert [h.delivery_id for h in await queue.handles_for_task("task-1")] == ["future"]


async def test_migration_adds_handle_tables(db_path, now):
    """Test upgrading a database created before handles were stored."""
    async with aiosqlite.connect(db_path) as db:
        await db.execute("DROP TABLE pending_reminders")
        await db.execute("DROP TABLE closed_tasks")
        await db.execute("PRAGMA user_version = 1")
        await db.commit()

    await run_migrations(db_path)

    upgraded = OfflineQueue(db_path)
    await upgraded.connect()
    try:
        assert await upgraded.save_handles([make_handle(now, "a")])
        assert not await upgraded.is_closed("task-1")
    finally:
        await upgraded.close()
