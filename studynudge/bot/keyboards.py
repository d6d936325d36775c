"""Inline keyboard builders."""

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from studynudge.utils.constants import SNOOZE_CHOICES
from studynudge.utils.time_utils import format_duration


def done_snooze_keyboard(task_id: str) -> InlineKeyboardMarkup:
    """Keyboard for reminder messages: Mark Complete, Snooze options."""
    return InlineKeyboardMarkup(
        [
            [InlineKeyboardButton("✓ Mark Complete", callback_data=f"done:{task_id}")],
            [
                InlineKeyboardButton(
                    f"Snooze {format_duration(minutes)}",
                    callback_data=f"snooze:{task_id}:{minutes}",
                )
                for minutes in SNOOZE_CHOICES
            ],
        ]
    )
