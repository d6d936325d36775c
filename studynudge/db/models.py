"""Data models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from studynudge.utils.constants import (
    DEFAULT_COMPLETION_RATE,
    DEFAULT_PROCRASTINATION,
    DEFAULT_QUIET_END,
    DEFAULT_QUIET_START,
    DEFAULT_REMINDER_FREQUENCY,
    DEFAULT_STRESS_LEVEL,
    DEFAULT_STUDY_TIMES,
    DEFAULT_TASK_DURATION,
    DEFAULT_TIMEZONE,
)

Priority = Literal["low", "medium", "high", "urgent"]
UrgencyTier = Literal["gentle", "encouraging", "urgent"]
ReminderFrequency = Literal["minimal", "normal", "frequent"]
ReminderType = Literal["scheduled", "snooze", "overdue", "smart"]
UserResponse = Literal["ignored", "snoozed", "completed", "rescheduled"]
QueueOrigin = Literal["pendingSchedule", "scheduledNotification"]


@dataclass
class Task:
    """A student task, owned by the task collaborator."""

    id: str
    title: str
    due_at: datetime | str | None  # UTC, or ISO-8601 before validation
    user_id: str
    priority: Priority | None = None
    difficulty: float | None = None
    reminder_offset_minutes: float | None = None
    is_completed: bool = False
    subject: str | None = None


@dataclass
class BehaviorProfile:
    """Per-user timing preferences used to bias reminders."""

    user_id: str
    preferred_study_times: list[str] = field(default_factory=lambda: list(DEFAULT_STUDY_TIMES))
    average_task_duration: int = DEFAULT_TASK_DURATION  # minutes
    completion_rate: float = DEFAULT_COMPLETION_RATE  # 0-1
    procrastination_tendency: float = DEFAULT_PROCRASTINATION  # 0-1
    stress_level: int = DEFAULT_STRESS_LEVEL  # 0-10
    preferred_reminder_frequency: ReminderFrequency = DEFAULT_REMINDER_FREQUENCY  # type: ignore
    quiet_start: str = DEFAULT_QUIET_START  # HH:MM format
    quiet_end: str = DEFAULT_QUIET_END  # HH:MM format
    timezone: str = DEFAULT_TIMEZONE


@dataclass(frozen=True)
class ReminderInstruction:
    """One step of a generated reminder sequence."""

    lead_minutes: float  # Minutes before due
    tier: UrgencyTier
    message: str
    is_final: bool = False


@dataclass
class DeliveryAttempt:
    """A concrete notification to deliver for a task."""

    task_id: str
    user_id: str
    task_title: str
    fire_at: datetime  # UTC
    tier: UrgencyTier
    message: str
    priority_score: int
    reminder_type: ReminderType = "smart"
    is_final: bool = False


@dataclass
class NotificationPayload:
    """Request body handed to a delivery backend."""

    title: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)
    priority: int = 5


@dataclass
class DeliveryReceipt:
    """A backend's answer to a send or schedule request."""

    success: bool
    delivery_id: str | None = None
    error: str | None = None


@dataclass
class OfflineQueueEntry:
    """A notification waiting for local delivery or network replay."""

    task_id: str
    user_id: str
    fire_at: datetime  # UTC
    payload: NotificationPayload
    origin: QueueOrigin
    created_at: datetime | None = None
    attempts: int = 0
    id: str | None = None


@dataclass
class ReminderAnalyticsRecord:
    """What was sent and how the user reacted."""

    user_id: str
    task_id: str
    reminder_type: ReminderType
    sent_at: datetime  # UTC
    scheduled_for: datetime  # UTC
    user_response: UserResponse = "ignored"
    response_time_minutes: int = 0
    effectiveness_score: int = 0  # 0-10
    id: int | None = None


@dataclass
class PendingReminder:
    """Handle kept per dispatched attempt so it can be cancelled later.

    The payload is kept for backends that must rebuild their deliveries
    after a restart.
    """

    task_id: str
    fire_at: datetime  # UTC
    backend: str
    delivery_id: str | None = None
    queued_entry_id: str | None = None
    user_id: str | None = None
    payload: NotificationPayload | None = None
    id: int | None = None


@dataclass
class DispatchOutcome:
    """Result of pushing one attempt through the dispatch chain."""

    attempt: DeliveryAttempt
    success: bool
    backend: str | None = None
    delivery_id: str | None = None
    queued_entry_id: str | None = None
    error: str | None = None

    @property
    def queued(self) -> bool:
        return self.queued_entry_id is not None


@dataclass
class SchedulingResult:
    """Overall result of a scheduling call."""

    task_id: str
    success: bool
    outcomes: list[DispatchOutcome] = field(default_factory=list)
    reason: str | None = None

    @property
    def delivered_count(self) -> int:
        return sum(1 for o in self.outcomes if o.success)


@dataclass
class ReminderStats:
    """Reminder effectiveness over the stats window."""

    total_reminders: int = 0
    completion_rate: float = 0.0
    average_response_time: float = 0.0
    effectiveness_score: float = 0.0
    snooze_rate: float = 0.0


@dataclass
class ChatLink:
    """Telegram chat linked to an application user."""

    user_id: str
    telegram_chat_id: int
    created_at: datetime | None = None
