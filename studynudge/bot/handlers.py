"""Command handlers."""

import logging
from html import escape

from telegram import Update
from telegram.ext import ContextTypes

from studynudge.bot.formatters import (
    format_help_message,
    format_scheduling_result,
    format_stats_message,
    format_task_list,
    format_welcome_message,
)
from studynudge.config import Config
from studynudge.db.repository import Repository
from studynudge.engine.scheduler import ReminderScheduler
from studynudge.utils.errors import InputError
from studynudge.utils.time_utils import format_duration

logger = logging.getLogger(__name__)


async def _linked_user(update: Update, context: ContextTypes.DEFAULT_TYPE) -> str | None:
    """Application user linked to this chat, replying with a hint if there is none."""
    repo: Repository = context.bot_data["repo"]
    user_id = await repo.get_user_for_chat(update.effective_chat.id)  # type: ignore[union-attr]
    if user_id is None:
        await update.message.reply_text("Please /start <user_id> first.")  # type: ignore[union-attr]
    return user_id


async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start <user_id> - link this chat to an application user."""
    if not update.effective_chat or not update.message:
        return

    if not context.args or len(context.args) != 1:
        await update.message.reply_html(format_welcome_message())
        await update.message.reply_text("Usage: /start <user_id> to link this chat to your account.")
        return

    repo: Repository = context.bot_data["repo"]
    link = await repo.link_chat(context.args[0], update.effective_chat.id)
    logger.info(f"Linked chat {link.telegram_chat_id} to user {link.user_id}")

    await update.message.reply_html(format_welcome_message())


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help command."""
    if not update.message:
        return

    await update.message.reply_html(format_help_message())


async def tasks_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /tasks command - show open tasks."""
    if not update.effective_chat or not update.message:
        return

    user_id = await _linked_user(update, context)
    if user_id is None:
        return

    repo: Repository = context.bot_data["repo"]
    tasks = await repo.get_open_tasks(user_id)

    await update.message.reply_html(format_task_list(tasks))


async def schedule_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /schedule <task_id> command."""
    if not update.effective_chat or not update.message:
        return

    if not context.args or len(context.args) != 1:
        await update.message.reply_text("Usage: /schedule <task_id>")
        return

    user_id = await _linked_user(update, context)
    if user_id is None:
        return

    repo: Repository = context.bot_data["repo"]
    scheduler: ReminderScheduler = context.bot_data["scheduler"]

    task = await repo.get_task(context.args[0], user_id)
    if task is None:
        await update.message.reply_text("Task not found.")
        return

    try:
        result = await scheduler.schedule_reminders(task)
    except InputError as e:
        await update.message.reply_text(f"❌ {e}")
        return

    await update.message.reply_html(format_scheduling_result(task, result))


async def done_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /done <task_id> command."""
    if not update.effective_chat or not update.message:
        return

    if not context.args or len(context.args) != 1:
        await update.message.reply_text("Usage: /done <task_id>")
        return

    user_id = await _linked_user(update, context)
    if user_id is None:
        return

    scheduler: ReminderScheduler = context.bot_data["scheduler"]
    task_id = context.args[0]

    if not await scheduler.mark_completed(task_id, user_id):
        await update.message.reply_text("Task not found.")
        return

    await update.message.reply_html(f"✓ Marked done: <code>{escape(task_id)}</code>\n\nRemaining reminders cancelled.")


async def snooze_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /snooze <task_id> [minutes] command."""
    if not update.effective_chat or not update.message:
        return

    if not context.args or len(context.args) not in (1, 2):
        await update.message.reply_text("Usage: /snooze <task_id> [minutes]")
        return

    minutes = None
    if len(context.args) == 2:
        try:
            minutes = float(context.args[1])
        except ValueError:
            await update.message.reply_text("Invalid snooze length. Must be a number of minutes.")
            return

    user_id = await _linked_user(update, context)
    if user_id is None:
        return

    scheduler: ReminderScheduler = context.bot_data["scheduler"]

    try:
        result = await scheduler.snooze(context.args[0], user_id, minutes)
    except InputError as e:
        await update.message.reply_text(f"❌ {e}")
        return

    if not result.success:
        await update.message.reply_text("❌ Could not snooze right now. Please try again.")
        return

    snoozed_for = minutes if minutes is not None else Config.DEFAULT_SNOOZE_MINUTES
    await update.message.reply_text(f"⏸ Snoozed for {format_duration(snoozed_for)}")


async def stats_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /stats command."""
    if not update.effective_chat or not update.message:
        return

    user_id = await _linked_user(update, context)
    if user_id is None:
        return

    scheduler: ReminderScheduler = context.bot_data["scheduler"]
    stats = await scheduler.get_reminder_stats(user_id)

    await update.message.reply_html(format_stats_message(stats))
