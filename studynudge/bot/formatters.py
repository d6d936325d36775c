"""Message text formatters."""

from html import escape

from studynudge.db.models import (
    NotificationPayload,
    ReminderStats,
    SchedulingResult,
    Task,
)
from studynudge.utils.time_utils import format_duration, format_relative_time, parse_datetime


def format_notification(payload: NotificationPayload) -> str:
    """Format a reminder notification as an HTML chat message."""
    return f"<b>{escape(payload.title)}</b>\n\n{escape(payload.body)}"


def format_task(task: Task) -> str:
    """One-line summary of a task."""
    due = parse_datetime(task.due_at)  # type: ignore[arg-type]
    line = f"<b>{escape(task.title)}</b> (ID: <code>{escape(task.id)}</code>)"
    line += f"\n📅 Due {format_relative_time(due)}"
    if task.priority:
        line += f" · {task.priority} priority"
    return line


def format_task_list(tasks: list[Task]) -> str:
    """Format the open tasks of a user."""
    if not tasks:
        return "You have no open tasks."

    lines = [f"<b>Your Open Tasks ({len(tasks)})</b>\n"]
    lines.extend(format_task(task) for task in tasks)
    lines.append("\nUse /schedule &lt;task_id&gt; to plan reminders.")
    return "\n".join(lines)


def format_scheduling_result(task: Task, result: SchedulingResult) -> str:
    """Summary of what happened to each reminder of a scheduling request."""
    if result.reason == "completed":
        return f"✓ <b>{escape(task.title)}</b> is already completed. Nothing to schedule."

    if not result.success:
        return (
            f"❌ Could not schedule reminders for <b>{escape(task.title)}</b>.\n\n"
            "Please try again in a moment."
        )

    lines = [f"⏰ <b>{len(result.outcomes)} reminders</b> for {format_task(task)}\n"]
    for outcome in result.outcomes:
        if not outcome.success:
            status = "❌ failed"
        elif outcome.queued:
            status = "📥 queued offline"
        else:
            status = f"✓ via {outcome.backend}"
        when = outcome.attempt.fire_at.strftime("%b %d, %H:%M UTC")
        lines.append(f"• {when} ({outcome.attempt.tier}) {status}")

    return "\n".join(lines)


def format_stats_message(stats: ReminderStats) -> str:
    """Format reminder effectiveness for /stats."""
    if stats.total_reminders == 0:
        return "📊 No reminders in the last 30 days yet."

    return f"""
<b>📊 Your Reminder Stats (30 days)</b>

<b>Reminders:</b> {stats.total_reminders}
<b>Completion rate:</b> {stats.completion_rate * 100:.0f}%
<b>Snooze rate:</b> {stats.snooze_rate * 100:.0f}%
<b>Average response time:</b> {format_duration(stats.average_response_time)}
<b>Effectiveness:</b> {stats.effectiveness_score:.1f}/10
""".strip()


def format_welcome_message() -> str:
    """Format the welcome message for /start."""
    return """
<b>Welcome to StudyNudge!</b> 📚

I'll remind you about your tasks before they're due, earlier for the important ones and gentler when you're stressed.

<b>Quick Start:</b>
• /schedule &lt;task_id&gt; - Plan reminders for a task
• /done &lt;task_id&gt; - Mark a task complete
• /help - Full command list
""".strip()


def format_help_message() -> str:
    """Format the help message."""
    return """
<b>StudyNudge Commands 📚</b>

<b>Setup:</b>
/start &lt;user_id&gt; - Link this chat to your account
/tasks - List your open tasks

<b>Reminders:</b>
/schedule &lt;task_id&gt; - Plan the reminder sequence for a task
/done &lt;task_id&gt; - Mark complete and cancel remaining reminders
/snooze &lt;task_id&gt; [minutes] - Remind me again later (default 15)

<b>Insights:</b>
/stats - Reminder effectiveness for the last 30 days

Reminder messages also have <b>Mark Complete</b> and <b>Snooze</b> buttons.
""".strip()
