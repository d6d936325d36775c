"""Alternate delivery backend and local notifier over a Telegram bot."""

import logging
import uuid
from datetime import datetime
from typing import List

from telegram import Bot
from telegram.error import TelegramError
from telegram.ext import ContextTypes, JobQueue

from studynudge.bot.formatters import format_notification
from studynudge.bot.keyboards import done_snooze_keyboard
from studynudge.db.models import DeliveryReceipt, NotificationPayload, PendingReminder
from studynudge.db.offline_queue import OfflineQueue
from studynudge.db.repository import Repository
from studynudge.utils.errors import BackendUnavailable
from studynudge.utils.time_utils import parse_datetime, utc_now

logger = logging.getLogger(__name__)


async def send_to_chat(bot: Bot, chat_id: int, payload: NotificationPayload) -> int:
    """Send a reminder message with Done/Snooze buttons. Returns the message id."""
    task_id = payload.data.get("taskId")
    message = await bot.send_message(
        chat_id=chat_id,
        text=format_notification(payload),
        parse_mode="HTML",
        reply_markup=done_snooze_keyboard(task_id) if task_id else None,
    )
    return message.message_id


class TelegramBackend:
    """Delivers reminders as bot messages.

    Future deliveries are held as one-shot JobQueue jobs; the job name is the
    delivery id, so cancel() can remove the job before it runs. Jobs live in
    memory only, so after a restart restore_jobs() rebuilds them from the
    handles kept in the offline queue's store.
    """

    name = "telegram"

    def __init__(
        self,
        bot: Bot,
        repo: Repository,
        job_queue: JobQueue | None = None,
        handles: OfflineQueue | None = None,
    ):
        self.bot = bot
        self.repo = repo
        self.job_queue = job_queue
        self.handles = handles

    async def send(self, user_id: str, payload: NotificationPayload) -> DeliveryReceipt:
        chat_id = await self.repo.get_chat_id(user_id)
        if chat_id is None:
            return DeliveryReceipt(success=False, error=f"no chat linked for user {user_id}")

        try:
            message_id = await send_to_chat(self.bot, chat_id, payload)
        except TelegramError as e:
            raise BackendUnavailable(self.name, str(e)) from e

        return DeliveryReceipt(success=True, delivery_id=f"{chat_id}:{message_id}")

    async def schedule_at(
        self, user_id: str, payload: NotificationPayload, iso_timestamp: str
    ) -> DeliveryReceipt:
        if self.job_queue is None:
            return DeliveryReceipt(success=False, error="no job queue")

        chat_id = await self.repo.get_chat_id(user_id)
        if chat_id is None:
            return DeliveryReceipt(success=False, error=f"no chat linked for user {user_id}")

        job_name = f"reminder-{uuid.uuid4().hex}"
        self._add_job(job_name, parse_datetime(iso_timestamp), chat_id, payload)
        logger.debug(f"Telegram reminder {job_name} queued for {iso_timestamp}")
        return DeliveryReceipt(success=True, delivery_id=job_name)

    async def cancel(self, delivery_id: str) -> bool:
        if self.job_queue is None:
            return False

        jobs = self.job_queue.get_jobs_by_name(delivery_id)
        for job in jobs:
            job.schedule_removal()
        return bool(jobs)

    async def restore_jobs(
        self, handles: List[PendingReminder], now: datetime | None = None
    ) -> int:
        """Recreate jobs for deliveries scheduled before a restart.

        Reminders whose time passed while the bot was down are sent right
        away. Returns the number of jobs recreated.
        """
        if self.job_queue is None:
            return 0

        if now is None:
            now = utc_now()

        restored = 0
        for handle in handles:
            if not handle.delivery_id or handle.payload is None or not handle.user_id:
                continue
            if self.job_queue.get_jobs_by_name(handle.delivery_id):
                continue

            chat_id = await self.repo.get_chat_id(handle.user_id)
            if chat_id is None:
                logger.warning(f"Skipping reminder {handle.delivery_id}: no chat for {handle.user_id}")
                continue

            when = handle.fire_at if handle.fire_at > now else 0
            self._add_job(handle.delivery_id, when, chat_id, handle.payload)
            restored += 1

        if restored:
            logger.info(f"Restored {restored} scheduled Telegram reminders")
        return restored

    def _add_job(
        self, job_name: str, when: datetime | float, chat_id: int, payload: NotificationPayload
    ) -> None:
        self.job_queue.run_once(  # type: ignore[union-attr]
            self._fire_job,
            when=when,
            data={"chat_id": chat_id, "payload": payload},
            name=job_name,
        )

    async def _fire_job(self, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Job callback for a scheduled reminder."""
        job = context.job
        data = job.data  # type: ignore[union-attr]
        try:
            await send_to_chat(self.bot, data["chat_id"], data["payload"])
        except TelegramError as e:
            logger.error(f"Failed to send scheduled Telegram reminder {job.name}: {e}")  # type: ignore[union-attr]

        if self.handles is not None:
            await self.handles.remove_handle(self.name, job.name)  # type: ignore[union-attr]


class ChatNotifier:
    """Local notifier for the bot host: shows queued reminders in the linked chat."""

    def __init__(self, bot: Bot, repo: Repository):
        self.bot = bot
        self.repo = repo

    async def show(self, user_id: str, payload: NotificationPayload) -> None:
        chat_id = await self.repo.get_chat_id(user_id)
        if chat_id is None:
            raise BackendUnavailable("chat", f"no chat linked for user {user_id}")
        await send_to_chat(self.bot, chat_id, payload)
