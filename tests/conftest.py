"""Shared fixtures: fake delivery backends, a fake notifier and temp databases."""

import asyncio
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from studynudge.db.migrations import run_migrations
from studynudge.db.models import DeliveryReceipt, NotificationPayload
from studynudge.db.offline_queue import OfflineQueue
from studynudge.db.repository import Repository
from studynudge.utils.errors import BackendUnavailable

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=ZoneInfo("UTC"))


class FakeBackend:
    """In-memory delivery backend.

    mode: "ok" accepts everything, "refuse" answers with an unsuccessful
    receipt, "raise" raises BackendUnavailable, "slow" never answers in time.
    """

    def __init__(self, name: str = "fake", mode: str = "ok"):
        self.name = name
        self.mode = mode
        self.sent: list[tuple[str, NotificationPayload]] = []
        self.scheduled: list[tuple[str, NotificationPayload, str]] = []
        self.cancelled: list[str] = []
        self._counter = 0

    async def _answer(self) -> DeliveryReceipt:
        if self.mode == "raise":
            raise BackendUnavailable(self.name, "simulated outage")
        if self.mode == "slow":
            await asyncio.sleep(10)
        if self.mode == "refuse":
            return DeliveryReceipt(success=False, error="refused")
        self._counter += 1
        return DeliveryReceipt(success=True, delivery_id=f"{self.name}-{self._counter}")

    async def send(self, user_id, payload):
        receipt = await self._answer()
        self.sent.append((user_id, payload))
        return receipt

    async def schedule_at(self, user_id, payload, iso_timestamp):
        receipt = await self._answer()
        self.scheduled.append((user_id, payload, iso_timestamp))
        return receipt

    async def cancel(self, delivery_id):
        if self.mode == "raise":
            raise BackendUnavailable(self.name, "simulated outage")
        self.cancelled.append(delivery_id)
        return True


class FakeNotifier:
    """Local notifier that records what it showed, or fails on demand."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.shown: list[tuple[str, NotificationPayload]] = []

    async def show(self, user_id, payload):
        if self.fail:
            raise RuntimeError("display unavailable")
        self.shown.append((user_id, payload))


@pytest.fixture
def now():
    return NOW


@pytest.fixture
async def db_path(tmp_path):
    path = tmp_path / "studynudge.db"
    await run_migrations(path)
    return path


@pytest.fixture
async def queue(db_path):
    q = OfflineQueue(db_path)
    await q.connect()
    yield q
    await q.close()


@pytest.fixture
async def repo(db_path):
    r = Repository(db_path)
    await r.connect()
    yield r
    await r.close()
