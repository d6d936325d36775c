"""Adaptive reminder sequence generation."""

import logging
from datetime import datetime, timedelta
from typing import List

from studynudge.db.models import BehaviorProfile, DeliveryAttempt, ReminderInstruction, Task
from studynudge.utils.constants import (
    DEFAULT_PRIORITY,
    HIGH_STRESS_LEVEL,
    LEAD_TIME_BUCKETS,
    MIN_LEAD_MINUTES,
    PRIORITY_ADJUSTMENTS,
    PRIORITY_SCORE_DEFAULT,
    PRIORITY_SCORE_FINAL,
    PRIORITY_SCORE_OVERDUE,
    LeadTimeBucket,
)
from studynudge.utils.errors import InputError
from studynudge.utils.time_utils import (
    format_duration,
    format_relative_time,
    is_in_quiet_hours,
    minutes_until,
    next_quiet_end,
    parse_datetime,
)

logger = logging.getLogger(__name__)


def resolve_due_at(task: Task) -> datetime:
    """Get a task's due date as aware UTC.

    Raises:
        InputError: if the due date is missing or unparsable
    """
    if task.due_at is None or task.due_at == "":
        raise InputError(f"Task {task.id} has no due date")
    try:
        return parse_datetime(task.due_at)
    except (ValueError, TypeError) as e:
        raise InputError(f"Task {task.id} has an invalid due date: {task.due_at!r}") from e


def get_lead_time_bucket(minutes_until_due: float) -> LeadTimeBucket | None:
    """Pick the lead-time template for the time left before the due date.

    Bounds are strict, so a task due in exactly two days lands in the
    "long" bucket and never in "very_long".
    """
    for bucket in LEAD_TIME_BUCKETS:
        if minutes_until_due > bucket.min_minutes_until_due:
            return bucket
    return None


def get_priority_adjustment(priority: str | None) -> float:
    """Minutes added to every lead time for a task priority."""
    return PRIORITY_ADJUSTMENTS.get(priority or DEFAULT_PRIORITY, 0)


def generate_reminder_sequence(
    task: Task, profile: BehaviorProfile | None, now: datetime
) -> List[ReminderInstruction]:
    """Compute the reminders to send for a task.

    Returns 1-3 instructions ordered furthest-from-due first. Every lead time
    is strictly less than the time left, so nothing fires at or after the due
    instant. Tasks that are already due (or due within a minute) get a single
    urgent instruction that fires immediately.

    Pure: identical inputs give identical output.
    """
    due_at = resolve_due_at(task)
    time_until_due = minutes_until(due_at, now)
    calm = profile is not None and profile.stress_level > HIGH_STRESS_LEVEL

    if time_until_due <= 0:
        overdue_by = format_relative_time(due_at, now)
        message = (
            f'⚠️ "{task.title}" is due now!'
            if time_until_due > -1
            else f'⚠️ "{task.title}" is {overdue_by}!'
        )
        return [ReminderInstruction(0, "urgent", message, is_final=True)]

    if time_until_due <= 1:
        return [
            ReminderInstruction(
                time_until_due, "urgent", f'🚨 "{task.title}" is due right now!', is_final=True
            )
        ]

    bucket = get_lead_time_bucket(time_until_due)
    adjustment = get_priority_adjustment(task.priority)
    ceiling = time_until_due - 1

    leads: List[float] = []
    for base in bucket.lead_minutes if bucket else []:
        adjusted = min(max(base + adjustment, MIN_LEAD_MINUTES), ceiling)

        # Would fire in the past or at/after the due instant
        if not MIN_LEAD_MINUTES <= adjusted < time_until_due:
            logger.debug(f"Skipping {adjusted:.2f}-minute reminder for task {task.id}")
            continue

        # Keep lead times strictly decreasing
        if leads and adjusted >= leads[-1]:
            continue

        leads.append(adjusted)

    if not leads:
        fallback = max(MIN_LEAD_MINUTES, time_until_due / 2)
        logger.debug(f"Using fallback {fallback:.2f}-minute reminder for task {task.id}")
        return [
            ReminderInstruction(
                fallback,
                "urgent",
                f'⏰ Don\'t forget: "{task.title}" is due soon!',
                is_final=True,
            )
        ]

    return _assign_tiers(task, leads, calm)


def _assign_tiers(task: Task, leads: List[float], calm: bool) -> List[ReminderInstruction]:
    """First reminder is gentle, the middle one encouraging, the last urgent."""
    instructions = []
    last = len(leads) - 1

    for index, lead in enumerate(leads):
        due_in = format_duration(lead)

        if index == last:
            if calm:
                message = f'🌱 "{task.title}" is due in {due_in}. One step at a time.'
            else:
                message = f'🚨 Last call! "{task.title}" is due in {due_in}!'
            instructions.append(ReminderInstruction(lead, "urgent", message, is_final=True))
        elif index == 0:
            message = f'📅 Heads up! "{task.title}" is due in {due_in}. You\'ve got this!'
            instructions.append(ReminderInstruction(lead, "gentle", message))
        else:
            message = f'⏰ "{task.title}" is due in {due_in}. Time to focus!'
            instructions.append(ReminderInstruction(lead, "encouraging", message))

    return instructions


def build_delivery_attempts(
    task: Task,
    instructions: List[ReminderInstruction],
    profile: BehaviorProfile | None,
    now: datetime,
) -> List[DeliveryAttempt]:
    """Turn instructions into timed delivery attempts.

    A non-final reminder that would fire inside the user's quiet hours moves
    to the end of quiet hours, but only when that still lands after now,
    before the next reminder and before the due instant.
    """
    due_at = resolve_due_at(task)
    overdue = minutes_until(due_at, now) <= 0

    fire_times = [max(due_at - timedelta(minutes=i.lead_minutes), now) for i in instructions]

    if profile is not None and not overdue:
        for index, instruction in enumerate(instructions):
            if instruction.is_final:
                continue
            fire_at = fire_times[index]
            if not is_in_quiet_hours(fire_at, profile.quiet_start, profile.quiet_end, profile.timezone):
                continue

            shifted = next_quiet_end(fire_at, profile.quiet_end, profile.timezone)
            upper = fire_times[index + 1] if index + 1 < len(fire_times) else due_at
            if now < shifted < upper:
                logger.debug(
                    f"Moved reminder for task {task.id} out of quiet hours: "
                    f"{fire_at.isoformat()} -> {shifted.isoformat()}"
                )
                fire_times[index] = shifted

    attempts = []
    for instruction, fire_at in zip(instructions, fire_times):
        if overdue:
            score = PRIORITY_SCORE_OVERDUE
        elif instruction.is_final:
            score = PRIORITY_SCORE_FINAL
        else:
            score = PRIORITY_SCORE_DEFAULT

        attempts.append(
            DeliveryAttempt(
                task_id=task.id,
                user_id=task.user_id,
                task_title=task.title,
                fire_at=fire_at,
                tier=instruction.tier,
                message=instruction.message,
                priority_score=score,
                reminder_type="overdue" if overdue else "smart",
                is_final=instruction.is_final,
            )
        )

    return attempts
