"""Constants and default values."""

from dataclasses import dataclass
from typing import List


@dataclass
class LeadTimeBucket:
    """Lead times offered once more than `min_minutes_until_due` remain."""

    name: str
    min_minutes_until_due: float  # Strict lower bound
    lead_minutes: List[float]


# Ordered from most to least advance notice. A task lands in the first
# bucket whose bound it strictly exceeds.
LEAD_TIME_BUCKETS = [
    LeadTimeBucket("very_long", 2 * 24 * 60, [1440, 240, 30]),  # > 2 days
    LeadTimeBucket("long", 24 * 60, [480, 120, 15]),  # > 1 day
    LeadTimeBucket("same_day_long", 2 * 60, [120, 30, 10]),  # > 2 hours
    LeadTimeBucket("same_day_medium", 60, [60, 15, 5]),  # > 1 hour
    LeadTimeBucket("same_day_short", 30, [15, 5]),  # > 30 minutes
    LeadTimeBucket("same_day_urgent", 10, [5, 2]),  # > 10 minutes
    LeadTimeBucket("immediate", 3, [2]),  # > 3 minutes
    LeadTimeBucket("very_urgent", 1, [1]),  # > 1 minute
]

# Minutes added to every lead time (higher priority = earlier warning)
PRIORITY_ADJUSTMENTS = {
    "low": -2,
    "medium": 0,
    "high": 2,
    "urgent": 5,
}

PRIORITIES = ("low", "medium", "high", "urgent")
DEFAULT_PRIORITY = "medium"

# Smallest lead time a reminder may have (minutes)
MIN_LEAD_MINUTES = 0.5

# Notification priority scores
PRIORITY_SCORE_OVERDUE = 10
PRIORITY_SCORE_FINAL = 8
PRIORITY_SCORE_DEFAULT = 5

# Analytics effectiveness scores (0-10)
EFFECTIVENESS_COMPLETED = 10
EFFECTIVENESS_SNOOZED = 5

# Analytics look-back window for stats
STATS_WINDOW_DAYS = 30

# Stress level above which reminder wording is toned down
HIGH_STRESS_LEVEL = 7

# Default behavior profile values
DEFAULT_STUDY_TIMES = ["09:00", "14:00", "20:00"]
DEFAULT_TASK_DURATION = 60
DEFAULT_COMPLETION_RATE = 0.8
DEFAULT_PROCRASTINATION = 0.3
DEFAULT_STRESS_LEVEL = 5
DEFAULT_REMINDER_FREQUENCY = "normal"

# Default quiet hours (24-hour format)
DEFAULT_QUIET_START = "22:00"
DEFAULT_QUIET_END = "08:00"

# Default timezone
DEFAULT_TIMEZONE = "UTC"

# Notification heading and push time-to-live
NOTIFICATION_HEADING = "📋 Task Reminder"
PUSH_TTL_SECONDS = 259200  # 3 days

# Offline queue origins
ORIGIN_PENDING_SCHEDULE = "pendingSchedule"
ORIGIN_SCHEDULED_NOTIFICATION = "scheduledNotification"

# Backend name used when the offline queue accepts an attempt
OFFLINE_QUEUE_BACKEND = "offline_queue"

# Snooze choices offered on reminder buttons (minutes)
SNOOZE_CHOICES = [15, 60]
