"""Main entry point for the StudyNudge reminder bot."""

import logging
import sys

from telegram.ext import Application, CallbackQueryHandler, CommandHandler, ContextTypes

from studynudge.backends.push_api import PushApiBackend
from studynudge.backends.telegram import ChatNotifier, TelegramBackend
from studynudge.bot.callbacks import callback_router
from studynudge.bot.handlers import (
    done_command,
    help_command,
    schedule_command,
    snooze_command,
    start_command,
    stats_command,
    tasks_command,
)
from studynudge.config import Config
from studynudge.db.migrations import run_migrations
from studynudge.db.offline_queue import OfflineQueue
from studynudge.db.repository import Repository
from studynudge.engine.dispatcher import Dispatcher
from studynudge.engine.offline import fire_due_entries, replay_pending
from studynudge.engine.scheduler import ReminderScheduler
from studynudge.utils.error_handler import error_handler
from studynudge.utils.time_utils import utc_now

# Configure logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, Config.LOG_LEVEL),
    stream=sys.stdout,
)

logger = logging.getLogger(__name__)


async def heartbeat_job(context: "ContextTypes.DEFAULT_TYPE") -> None:
    """Job callback: show queued reminders whose time has come."""
    queue: OfflineQueue = context.bot_data["queue"]
    now = utc_now()
    await fire_due_entries(queue, context.bot_data.get("notifier"), now)
    await queue.prune_handles(now)


async def replay_job(context: "ContextTypes.DEFAULT_TYPE") -> None:
    """Job callback: retry queued reminders through the network backends."""
    queue: OfflineQueue = context.bot_data["queue"]
    dispatcher: Dispatcher = context.bot_data["dispatcher"]
    await replay_pending(queue, dispatcher.backends, dispatcher.timeout)


async def post_init(application: Application) -> None:
    """Initialize bot resources after application is created."""
    # Initialize database
    await run_migrations(Config.DATABASE_PATH)

    repo = Repository(Config.DATABASE_PATH)
    await repo.connect()
    application.bot_data["repo"] = repo

    queue = OfflineQueue(Config.DATABASE_PATH)
    await queue.connect()
    application.bot_data["queue"] = queue

    # Delivery chain: push API first (when configured), then the chat itself
    backends = []
    if Config.push_enabled():
        push = PushApiBackend()
        application.bot_data["push"] = push
        backends.append(push)
    telegram = TelegramBackend(application.bot, repo, application.job_queue, handles=queue)
    backends.append(telegram)

    dispatcher = Dispatcher(backends, queue)
    application.bot_data["dispatcher"] = dispatcher
    application.bot_data["scheduler"] = ReminderScheduler(
        dispatcher, profiles=repo, tasks=repo, analytics=repo
    )
    application.bot_data["notifier"] = ChatNotifier(application.bot, repo)

    logger.info(f"Delivery backends: {', '.join(b.name for b in backends)}")

    # Scheduled chat reminders only lived in the previous process's job queue
    await telegram.restore_jobs(await queue.handles_for_backend(telegram.name))

    # Deliver whatever was queued while we were offline
    replayed = await replay_pending(queue, dispatcher.backends, dispatcher.timeout)
    if replayed:
        logger.info(f"Startup replay delivered {replayed} queued reminders")

    job_queue = application.job_queue
    if job_queue:
        job_queue.run_repeating(
            heartbeat_job,
            interval=Config.HEARTBEAT_INTERVAL,
            first=10,
            name="heartbeat",
        )
        job_queue.run_repeating(
            replay_job,
            interval=Config.REPLAY_INTERVAL,
            first=Config.REPLAY_INTERVAL,
            name="replay",
        )
        logger.info(
            f"Heartbeat job scheduled (interval: {Config.HEARTBEAT_INTERVAL}s), "
            f"replay job scheduled (interval: {Config.REPLAY_INTERVAL}s)"
        )

    logger.info("StudyNudge initialized successfully")


async def post_shutdown(application: Application) -> None:
    """Cleanup resources on shutdown."""
    scheduler: ReminderScheduler | None = application.bot_data.get("scheduler")
    if scheduler:
        await scheduler.drain_analytics()

    push: PushApiBackend | None = application.bot_data.get("push")
    if push:
        await push.close()

    queue: OfflineQueue | None = application.bot_data.get("queue")
    if queue:
        await queue.close()

    repo: Repository | None = application.bot_data.get("repo")
    if repo:
        await repo.close()

    logger.info("StudyNudge shut down")


def main() -> None:
    """Start the bot."""
    try:
        Config.validate()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    application = (
        Application.builder()
        .token(Config.TELEGRAM_BOT_TOKEN)
        .post_init(post_init)
        .post_shutdown(post_shutdown)
        .build()
    )

    # Commands
    application.add_handler(CommandHandler("start", start_command))
    application.add_handler(CommandHandler("help", help_command))
    application.add_handler(CommandHandler("schedule", schedule_command))
    application.add_handler(CommandHandler("done", done_command))
    application.add_handler(CommandHandler("snooze", snooze_command))
    application.add_handler(CommandHandler("stats", stats_command))
    application.add_handler(CommandHandler("tasks", tasks_command))

    # Callback queries (buttons)
    application.add_handler(CallbackQueryHandler(callback_router))

    # Error handler
    application.add_error_handler(error_handler)

    logger.info("Starting StudyNudge bot...")
    application.run_polling(allowed_updates=["message", "callback_query"])


if __name__ == "__main__":
    main()
