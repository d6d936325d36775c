"""Tests for the Telegram delivery backend and chat notifier."""

from datetime import timedelta
from types import SimpleNamespace

import pytest
from telegram.error import NetworkError

from studynudge.backends.telegram import ChatNotifier, TelegramBackend
from studynudge.db.models import NotificationPayload, PendingReminder
from studynudge.utils.errors import BackendUnavailable

PAYLOAD = NotificationPayload(
    title="📋 Task Reminder",
    body='⏰ "Essay <draft>" is due in 30 minutes. Time to focus!',
    data={"taskId": "task-1"},
)


class FakeBot:
    def __init__(self, fail=False):
        self.fail = fail
        self.messages = []

    async def send_message(self, chat_id, text, parse_mode=None, reply_markup=None):
        if self.fail:
            raise NetworkError("telegram unreachable")
        self.messages.append((chat_id, text, reply_markup))
        return SimpleNamespace(message_id=len(self.messages))


class FakeJob:
    def __init__(self, callback, when, data, name):
        self.callback = callback
        self.when = when
        self.data = data
        self.name = name
        self.removed = False

    def schedule_removal(self):
        self.removed = True


class FakeJobQueue:
    def __init__(self):
        self.jobs = []

    def run_once(self, callback, when, data=None, name=None):
        job = FakeJob(callback, when, data, name)
        self.jobs.append(job)
        return job

    def get_jobs_by_name(self, name):
        return [j for j in self.jobs if j.name == name and not j.removed]


@pytest.fixture
async def linked_repo(repo):
    await repo.link_chat("user-1", 1001)
    return repo


async def test_send_to_linked_chat(linked_repo):
    """Test an immediate message with Done/Snooze buttons."""
    bot = FakeBot()
    backend = TelegramBackend(bot, linked_repo, FakeJobQueue())

    receipt = await backend.send("user-1", PAYLOAD)

    assert receipt.success
    assert receipt.delivery_id == "1001:1"
    chat_id, text, markup = bot.messages[0]
    assert chat_id == 1001
    assert "&lt;draft&gt;" in text
    buttons = [b.callback_data for row in markup.inline_keyboard for b in row]
    assert buttons == ["done:task-1", "snooze:task-1:15", "snooze:task-1:60"]


async def test_send_without_linked_chat(repo):
    """Test that an unlinked user is a refusal, not an error."""
    receipt = await TelegramBackend(FakeBot(), repo).send("user-1", PAYLOAD)

    assert not receipt.success
    assert "no chat linked" in receipt.error


async def test_send_failure_is_backend_unavailable(linked_repo):
    """Test that Telegram errors surface as BackendUnavailable."""
    backend = TelegramBackend(FakeBot(fail=True), linked_repo)

    with pytest.raises(BackendUnavailable):
        await backend.send("user-1", PAYLOAD)


async def test_schedule_and_cancel(linked_repo):
    """Test a future reminder held as a one-shot job."""
    bot = FakeBot()
    job_queue = FakeJobQueue()
    backend = TelegramBackend(bot, linked_repo, job_queue)

    receipt = await backend.schedule_at("user-1", PAYLOAD, "2026-03-02T14:30:00+00:00")

    assert receipt.success
    job = job_queue.jobs[0]
    assert job.name == receipt.delivery_id
    assert job.data["chat_id"] == 1001
    assert job.when.hour == 14

    # The job callback delivers the message
    await job.callback(SimpleNamespace(job=job))
    assert len(bot.messages) == 1

    assert await backend.cancel(receipt.delivery_id)
    assert job.removed
    assert not await backend.cancel(receipt.delivery_id)


async def test_schedule_without_job_queue(linked_repo):
    """Test a host without a job queue."""
    receipt = await TelegramBackend(FakeBot(), linked_repo).schedule_at(
        "user-1", PAYLOAD, "2026-03-02T14:30:00+00:00"
    )
    assert not receipt.success


async def test_chat_notifier(linked_repo, repo):
    """Test local display through the linked chat."""
    bot = FakeBot()
    await ChatNotifier(bot, linked_repo).show("user-1", PAYLOAD)
    assert bot.messages[0][0] == 1001

    with pytest.raises(BackendUnavailable):
        await ChatNotifier(bot, repo).show("nobody", PAYLOAD)


async def test_fired_job_forgets_its_handle(linked_repo, queue):
    """Test that a delivered reminder is not restored after a restart."""
    job_queue = FakeJobQueue()
    backend = TelegramBackend(FakeBot(), linked_repo, job_queue, handles=queue)
    receipt = await backend.schedule_at("user-1", PAYLOAD, "2026-03-02T14:30:00+00:00")
    job = job_queue.jobs[0]
    await queue.save_handles(
        [
            PendingReminder(
                task_id="task-1",
                fire_at=job.when,
                backend="telegram",
                delivery_id=receipt.delivery_id,
                user_id="user-1",
                payload=PAYLOAD,
            )
        ]
    )

    await job.callback(SimpleNamespace(job=job))

    assert await queue.handles_for_backend("telegram") == []


async def test_restore_jobs(linked_repo, now):
    """Test rebuilding scheduled reminders after a restart."""
    job_queue = FakeJobQueue()
    backend = TelegramBackend(FakeBot(), linked_repo, job_queue)

    def handle(delivery_id, minutes, user_id="user-1"):
        return PendingReminder(
            task_id="task-1",
            fire_at=now + timedelta(minutes=minutes),
            backend="telegram",
            delivery_id=delivery_id,
            user_id=user_id,
            payload=PAYLOAD,
        )

    restored = await backend.restore_jobs(
        [handle("reminder-future", 30), handle("reminder-missed", -5), handle("reminder-x", 30, "nobody")],
        now=now,
    )

    assert restored == 2
    assert [(j.name, j.when) for j in job_queue.jobs] == [
        ("reminder-future", now + timedelta(minutes=30)),
        ("reminder-missed", 0),
    ]
    assert job_queue.jobs[0].data == {"chat_id": 1001, "payload": PAYLOAD}

    # Restored jobs cancel by the same delivery id, and are never doubled
    assert await backend.restore_jobs([handle("reminder-future", 30)], now=now) == 0
    assert await backend.cancel("reminder-future")
