"""Tests for the delivery dispatch chain."""

from datetime import timedelta

from conftest import NOW, FakeBackend

from studynudge.db.models import DeliveryAttempt, PendingReminder
from studynudge.db.offline_queue import OfflineQueue
from studynudge.engine.dispatcher import Dispatcher, build_payload, first_success
from studynudge.utils.constants import NOTIFICATION_HEADING


def make_attempt(now, minutes=30, **kwargs) -> DeliveryAttempt:
    fields = dict(
        task_id="task-1",
        user_id="user-1",
        task_title="Essay draft",
        fire_at=now + timedelta(minutes=minutes),
        tier="gentle",
        message='📅 Heads up! "Essay draft" is due in 2 hours.',
        priority_score=5,
    )
    fields.update(kwargs)
    return DeliveryAttempt(**fields)


async def test_first_success_returns_first_accepting_backend():
    """Test that the chain stops at the first success."""
    down = FakeBackend("down", "raise")
    refusing = FakeBackend("refusing", "refuse")
    ok = FakeBackend("ok")
    never = FakeBackend("never")

    result = await first_success(
        [down, refusing, ok, never], lambda b: b.send("user-1", None), timeout=1
    )

    assert result is not None
    backend, receipt = result
    assert backend is ok
    assert receipt.delivery_id == "ok-1"
    assert never.sent == []


async def test_first_success_skips_slow_backend():
    """Test that a backend exceeding the timeout is skipped."""
    slow = FakeBackend("slow", "slow")
    ok = FakeBackend("ok")

    result = await first_success([slow, ok], lambda b: b.send("user-1", None), timeout=0.05)

    assert result is not None
    assert result[0] is ok


async def test_first_success_none_when_all_fail():
    """Test that total failure is reported as None."""
    result = await first_success(
        [FakeBackend("a", "raise"), FakeBackend("b", "refuse")],
        lambda b: b.send("user-1", None),
        timeout=1,
    )
    assert result is None


def test_build_payload():
    """Test the notification body built for an attempt."""
    payload = build_payload(make_attempt(NOW, is_final=True, priority_score=8))

    assert payload.title == NOTIFICATION_HEADING
    assert payload.body.startswith("📅 Heads up!")
    assert payload.data["taskId"] == "task-1"
    assert payload.data["isFinal"] is True
    assert payload.data["type"] == "smart_reminder"
    assert payload.priority == 8


async def test_future_attempt_is_scheduled(queue, now):
    """Test that a future fire time uses schedule_at."""
    primary = FakeBackend("primary")
    dispatcher = Dispatcher([primary], queue, timeout=1)
    attempt = make_attempt(now, minutes=30)

    outcome = await dispatcher.dispatch(attempt, now)

    assert outcome.success
    assert outcome.backend == "primary"
    assert outcome.delivery_id == "primary-1"
    assert primary.sent == []
    assert primary.scheduled[0][2] == attempt.fire_at.isoformat()


async def test_due_attempt_is_sent_immediately(queue, now):
    """Test that a fire time at or before now uses send."""
    primary = FakeBackend("primary")
    dispatcher = Dispatcher([primary], queue, timeout=1)

    outcome = await dispatcher.dispatch(make_attempt(now, minutes=0), now)

    assert outcome.success
    assert len(primary.sent) == 1
    assert primary.scheduled == []


async def test_falls_through_to_second_backend(queue, now):
    """Test the alternate service after a primary outage."""
    primary = FakeBackend("primary", "raise")
    secondary = FakeBackend("secondary")
    dispatcher = Dispatcher([primary, secondary], queue, timeout=1)

    outcome = await dispatcher.dispatch(make_attempt(now), now)

    assert outcome.backend == "secondary"
    assert await queue.count() == 0


async def test_all_backends_down_queues_offline(queue, now):
    """Test the offline queue as the terminal step."""
    dispatcher = Dispatcher(
        [FakeBackend("primary", "raise"), FakeBackend("secondary", "refuse")], queue, timeout=1
    )
    future = make_attempt(now, minutes=30)
    due = make_attempt(now, minutes=0)

    outcomes = await dispatcher.dispatch_all([future, due], now)

    assert all(o.success and o.queued for o in outcomes)
    assert all(o.backend == "offline_queue" for o in outcomes)

    entries = {e.id: e for e in await queue.all()}
    assert entries[outcomes[0].queued_entry_id].origin == "pendingSchedule"
    assert entries[outcomes[1].queued_entry_id].origin == "scheduledNotification"


async def test_queue_failure_is_a_failed_outcome(db_path, now):
    """Test that a broken local store fails only that attempt."""
    unconnected = OfflineQueue(db_path)
    dispatcher = Dispatcher([FakeBackend("primary", "raise")], unconnected, timeout=1)

    outcome = await dispatcher.dispatch(make_attempt(now), now)

    assert not outcome.success
    assert outcome.error


async def test_cancel_backend_delivery(queue, now):
    """Test cancelling a delivery held by a backend."""
    primary = FakeBackend("primary")
    dispatcher = Dispatcher([primary], queue, timeout=1)
    pending = PendingReminder(
        task_id="task-1", fire_at=now + timedelta(minutes=30), backend="primary", delivery_id="primary-7"
    )

    assert await dispatcher.cancel(pending)
    assert primary.cancelled == ["primary-7"]


async def test_cancel_queued_delivery(queue, now):
    """Test cancelling a delivery waiting in the offline queue."""
    dispatcher = Dispatcher([FakeBackend("primary", "raise")], queue, timeout=1)
    outcome = await dispatcher.dispatch(make_attempt(now), now)

    pending = PendingReminder(
        task_id="task-1",
        fire_at=outcome.attempt.fire_at,
        backend=outcome.backend,
        queued_entry_id=outcome.queued_entry_id,
    )

    assert await dispatcher.cancel(pending)
    assert await queue.count() == 0


async def test_cancel_on_unavailable_backend_returns_false(queue, now):
    """Test that a cancel outage is reported, not raised."""
    dispatcher = Dispatcher([FakeBackend("primary", "raise")], queue, timeout=1)
    pending = PendingReminder(
        task_id="task-1", fire_at=now, backend="primary", delivery_id="primary-1"
    )

    assert await dispatcher.cancel(pending) is False
