"""Database repository - tasks, behavior profiles, chat links and analytics."""

import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import List

import aiosqlite

from studynudge.db.models import (
    BehaviorProfile,
    ChatLink,
    ReminderAnalyticsRecord,
    ReminderStats,
    Task,
)
from studynudge.utils.constants import DEFAULT_PRIORITY, STATS_WINDOW_DAYS
from studynudge.utils.errors import AnalyticsFailure
from studynudge.utils.time_utils import parse_datetime, to_db_timestamp, utc_now

logger = logging.getLogger(__name__)


class Repository:
    """Database access layer."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Open database connection."""
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        logger.info(f"Connected to database at {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("Database connection closed")

    @property
    def db(self) -> aiosqlite.Connection:
        """Get the database connection."""
        if self._db is None:
            raise RuntimeError("Database not connected")
        return self._db

    # Task operations

    async def save_task(self, task: Task) -> Task:
        """Insert or replace a task record."""
        due_at = parse_datetime(task.due_at)  # type: ignore[arg-type]
        await self.db.execute(
            """
            INSERT INTO tasks (
                id, user_id, title, due_at, priority, difficulty,
                reminder_offset_minutes, subject, is_completed
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                user_id = excluded.user_id,
                title = excluded.title,
                due_at = excluded.due_at,
                priority = excluded.priority,
                difficulty = excluded.difficulty,
                reminder_offset_minutes = excluded.reminder_offset_minutes,
                subject = excluded.subject,
                is_completed = excluded.is_completed
            """,
            (
                task.id,
                task.user_id,
                task.title,
                to_db_timestamp(due_at),
                task.priority or DEFAULT_PRIORITY,
                task.difficulty,
                task.reminder_offset_minutes,
                task.subject,
                1 if task.is_completed else 0,
            ),
        )
        await self.db.commit()
        task.due_at = due_at
        return task

    async def get_task(self, task_id: str, user_id: str | None = None) -> Task | None:
        """Get a task by ID, optionally scoped to its owner."""
        if user_id is None:
            query = "SELECT * FROM tasks WHERE id = ?"
            params: tuple = (task_id,)
        else:
            query = "SELECT * FROM tasks WHERE id = ? AND user_id = ?"
            params = (task_id, user_id)

        async with self.db.execute(query, params) as cursor:
            row = await cursor.fetchone()
            if row:
                return self._row_to_task(row)
            return None

    async def get_open_tasks(self, user_id: str) -> List[Task]:
        """Get incomplete tasks for a user, soonest due first."""
        async with self.db.execute(
            "SELECT * FROM tasks WHERE user_id = ? AND is_completed = 0 ORDER BY due_at",
            (user_id,),
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_task(row) for row in rows]

    async def mark_task_completed(self, task_id: str, user_id: str) -> bool:
        """Mark a task completed. Returns False if no such task for this user."""
        cursor = await self.db.execute(
            """
            UPDATE tasks SET is_completed = 1, completed_at = ?
            WHERE id = ? AND user_id = ?
            """,
            (utc_now().isoformat(), task_id, user_id),
        )
        await self.db.commit()
        return cursor.rowcount > 0

    # Behavior profile operations

    async def get_profile(self, user_id: str) -> BehaviorProfile:
        """Get a user's behavior profile, creating the defaults on first use."""
        async with self.db.execute(
            "SELECT * FROM user_reminder_patterns WHERE user_id = ?", (user_id,)
        ) as cursor:
            row = await cursor.fetchone()

        if row:
            return self._row_to_profile(row)

        profile = BehaviorProfile(user_id=user_id)
        await self.save_profile(profile)
        logger.info(f"Created default behavior profile for user {user_id}")
        return profile

    async def save_profile(self, profile: BehaviorProfile) -> None:
        """Insert or update a behavior profile."""
        await self.db.execute(
            """
            INSERT INTO user_reminder_patterns (
                user_id, preferred_study_times, average_task_duration,
                completion_rate, procrastination_tendency, stress_level,
                preferred_reminder_frequency, quiet_start, quiet_end, timezone
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                preferred_study_times = excluded.preferred_study_times,
                average_task_duration = excluded.average_task_duration,
                completion_rate = excluded.completion_rate,
                procrastination_tendency = excluded.procrastination_tendency,
                stress_level = excluded.stress_level,
                preferred_reminder_frequency = excluded.preferred_reminder_frequency,
                quiet_start = excluded.quiet_start,
                quiet_end = excluded.quiet_end,
                timezone = excluded.timezone,
                last_updated_at = datetime('now')
            """,
            (
                profile.user_id,
                json.dumps(profile.preferred_study_times),
                profile.average_task_duration,
                profile.completion_rate,
                profile.procrastination_tendency,
                profile.stress_level,
                profile.preferred_reminder_frequency,
                profile.quiet_start,
                profile.quiet_end,
                profile.timezone,
            ),
        )
        await self.db.commit()

    # Chat link operations

    async def link_chat(self, user_id: str, telegram_chat_id: int) -> ChatLink:
        """Link a Telegram chat to an application user."""
        await self.db.execute(
            """
            INSERT INTO chat_links (user_id, telegram_chat_id) VALUES (?, ?)
            ON CONFLICT(user_id) DO UPDATE SET telegram_chat_id = excluded.telegram_chat_id
            """,
            (user_id, telegram_chat_id),
        )
        await self.db.commit()

        async with self.db.execute(
            "SELECT * FROM chat_links WHERE user_id = ?", (user_id,)
        ) as cursor:
            row = await cursor.fetchone()

        logger.info(f"Linked user {user_id} to chat {telegram_chat_id}")
        return ChatLink(
            user_id=row["user_id"],
            telegram_chat_id=row["telegram_chat_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    async def get_chat_id(self, user_id: str) -> int | None:
        """Get the Telegram chat linked to a user."""
        async with self.db.execute(
            "SELECT telegram_chat_id FROM chat_links WHERE user_id = ?", (user_id,)
        ) as cursor:
            row = await cursor.fetchone()
            return row["telegram_chat_id"] if row else None

    async def get_user_for_chat(self, telegram_chat_id: int) -> str | None:
        """Get the user linked to a Telegram chat."""
        async with self.db.execute(
            "SELECT user_id FROM chat_links WHERE telegram_chat_id = ?",
            (telegram_chat_id,),
        ) as cursor:
            row = await cursor.fetchone()
            return row["user_id"] if row else None

    # Analytics operations

    async def record_analytics(self, record: ReminderAnalyticsRecord) -> None:
        """Write one analytics record.

        Raises:
            AnalyticsFailure: if the write fails
        """
        try:
            await self.db.execute(
                """
                INSERT INTO reminder_analytics (
                    user_id, task_id, reminder_type, sent_at, scheduled_for,
                    user_response, response_time_minutes, effectiveness_score
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.user_id,
                    record.task_id,
                    record.reminder_type,
                    to_db_timestamp(record.sent_at),
                    to_db_timestamp(record.scheduled_for),
                    record.user_response,
                    record.response_time_minutes,
                    record.effectiveness_score,
                ),
            )
            await self.db.commit()
        except (aiosqlite.Error, RuntimeError) as e:
            raise AnalyticsFailure(f"Could not record analytics for task {record.task_id}") from e

    async def get_analytics(self, user_id: str, since: datetime) -> List[ReminderAnalyticsRecord]:
        """Get analytics records for a user sent at or after `since`."""
        async with self.db.execute(
            """
            SELECT * FROM reminder_analytics
            WHERE user_id = ? AND sent_at >= ?
            ORDER BY sent_at
            """,
            (user_id, to_db_timestamp(since)),
        ) as cursor:
            rows = await cursor.fetchall()
            return [
                ReminderAnalyticsRecord(
                    id=row["id"],
                    user_id=row["user_id"],
                    task_id=row["task_id"],
                    reminder_type=row["reminder_type"],
                    sent_at=datetime.fromisoformat(row["sent_at"]),
                    scheduled_for=datetime.fromisoformat(row["scheduled_for"]),
                    user_response=row["user_response"],
                    response_time_minutes=row["response_time_minutes"],
                    effectiveness_score=row["effectiveness_score"],
                )
                for row in rows
            ]

    async def get_reminder_stats(
        self, user_id: str, now: datetime | None = None
    ) -> ReminderStats:
        """Summarize reminder effectiveness over the last STATS_WINDOW_DAYS."""
        if now is None:
            now = utc_now()

        records = await self.get_analytics(user_id, now - timedelta(days=STATS_WINDOW_DAYS))
        if not records:
            return ReminderStats()

        total = len(records)
        completions = sum(1 for r in records if r.user_response == "completed")
        snoozes = sum(1 for r in records if r.user_response == "snoozed")

        return ReminderStats(
            total_reminders=total,
            completion_rate=completions / total,
            average_response_time=sum(r.response_time_minutes for r in records) / total,
            effectiveness_score=sum(r.effectiveness_score for r in records) / total,
            snooze_rate=snoozes / total,
        )

    # Helper methods

    def _row_to_task(self, row: aiosqlite.Row) -> Task:
        """Convert a database row to a Task object."""
        return Task(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            due_at=datetime.fromisoformat(row["due_at"]),
            priority=row["priority"],
            difficulty=row["difficulty"],
            reminder_offset_minutes=row["reminder_offset_minutes"],
            subject=row["subject"],
            is_completed=bool(row["is_completed"]),
        )

    def _row_to_profile(self, row: aiosqlite.Row) -> BehaviorProfile:
        """Convert a database row to a BehaviorProfile object."""
        return BehaviorProfile(
            user_id=row["user_id"],
            preferred_study_times=json.loads(row["preferred_study_times"]),
            average_task_duration=row["average_task_duration"],
            completion_rate=row["completion_rate"],
            procrastination_tendency=row["procrastination_tendency"],
            stress_level=row["stress_level"],
            preferred_reminder_frequency=row["preferred_reminder_frequency"],
            quiet_start=row["quiet_start"],
            quiet_end=row["quiet_end"],
            timezone=row["timezone"],
        )
