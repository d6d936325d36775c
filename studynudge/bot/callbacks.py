"""Callback query handlers for the reminder message buttons."""

import logging

from telegram import Update
from telegram.ext import ContextTypes

from studynudge.db.repository import Repository
from studynudge.engine.scheduler import ReminderScheduler
from studynudge.utils.errors import InputError
from studynudge.utils.time_utils import format_duration

logger = logging.getLogger(__name__)


async def _callback_user(update: Update, context: ContextTypes.DEFAULT_TYPE) -> str | None:
    repo: Repository = context.bot_data["repo"]
    user_id = await repo.get_user_for_chat(update.effective_chat.id)  # type: ignore[union-attr]
    if user_id is None:
        await update.callback_query.answer("Please /start the bot first.")  # type: ignore[union-attr]
    return user_id


async def handle_done_callback(
    update: Update, context: ContextTypes.DEFAULT_TYPE, task_id: str
) -> None:
    """Handle 'Mark Complete' button press."""
    if not update.effective_chat or not update.callback_query:
        return

    user_id = await _callback_user(update, context)
    if user_id is None:
        return

    scheduler: ReminderScheduler = context.bot_data["scheduler"]

    if not await scheduler.mark_completed(task_id, user_id):
        await update.callback_query.answer("Task not found.")
        return

    if update.callback_query.message:
        await update.callback_query.message.edit_text(
            f"✓ <b>Completed</b>\n\n<s>{update.callback_query.message.text_html}</s>",
            parse_mode="HTML",
        )

    await update.callback_query.answer("✓ Marked as done! Remaining reminders cancelled.")


async def handle_snooze_callback(
    update: Update, context: ContextTypes.DEFAULT_TYPE, task_id: str, minutes: int
) -> None:
    """Handle 'Snooze' button press."""
    if not update.effective_chat or not update.callback_query:
        return

    user_id = await _callback_user(update, context)
    if user_id is None:
        return

    scheduler: ReminderScheduler = context.bot_data["scheduler"]

    try:
        result = await scheduler.snooze(task_id, user_id, minutes)
    except InputError as e:
        await update.callback_query.answer(str(e))
        return

    if not result.success:
        await update.callback_query.answer("Could not snooze right now.")
        return

    if update.callback_query.message:
        await update.callback_query.message.edit_reply_markup(reply_markup=None)

    await update.callback_query.answer(f"⏸ Snoozed for {format_duration(minutes)}")


async def callback_router(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Route callback queries to appropriate handlers.

    Data formats: ``done:<task_id>`` and ``snooze:<task_id>:<minutes>``.
    """
    if not update.callback_query:
        return

    query = update.callback_query
    data = query.data

    if not data:
        return

    action, _, rest = data.partition(":")

    if action == "done" and rest:
        await handle_done_callback(update, context, rest)

    elif action == "snooze" and rest:
        task_id, _, minutes = rest.rpartition(":")
        if not task_id or not minutes.isdigit():
            logger.warning(f"Malformed snooze callback data: {data}")
            await query.answer("Unknown action")
            return
        await handle_snooze_callback(update, context, task_id, int(minutes))

    else:
        await query.answer("Unknown action")
