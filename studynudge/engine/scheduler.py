"""Reminder scheduling orchestrator.

Ties the sequence generator, the dispatch chain and the offline queue
together. All collaborators are passed in, so tests can swap any of them.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import List, Protocol, Set

from studynudge.config import Config
from studynudge.db.models import (
    BehaviorProfile,
    DeliveryAttempt,
    DispatchOutcome,
    PendingReminder,
    ReminderAnalyticsRecord,
    ReminderStats,
    SchedulingResult,
    Task,
)
from studynudge.engine.dispatcher import Dispatcher, build_payload
from studynudge.engine.sequence import (
    build_delivery_attempts,
    generate_reminder_sequence,
    resolve_due_at,
)
from studynudge.utils.constants import (
    EFFECTIVENESS_COMPLETED,
    EFFECTIVENESS_SNOOZED,
    PRIORITY_SCORE_DEFAULT,
)
from studynudge.utils.errors import InputError
from studynudge.utils.time_utils import format_duration, utc_now

logger = logging.getLogger(__name__)


class ProfileStore(Protocol):
    async def get_profile(self, user_id: str) -> BehaviorProfile | None: ...


class TaskStore(Protocol):
    async def get_task(self, task_id: str, user_id: str | None = None) -> Task | None: ...

    async def mark_task_completed(self, task_id: str, user_id: str) -> bool: ...


class AnalyticsSink(Protocol):
    async def record_analytics(self, record: ReminderAnalyticsRecord) -> None: ...

    async def get_reminder_stats(self, user_id: str) -> ReminderStats: ...


class ReminderScheduler:
    """Schedules, snoozes and cancels task reminders."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        profiles: ProfileStore | None = None,
        tasks: TaskStore | None = None,
        analytics: AnalyticsSink | None = None,
    ):
        self.dispatcher = dispatcher
        self.profiles = profiles
        self.tasks = tasks
        self.analytics = analytics
        self._analytics_jobs: Set[asyncio.Task] = set()

    async def resolve_profile(self, user_id: str) -> BehaviorProfile:
        """Get the user's behavior profile, or the defaults when unavailable."""
        if self.profiles is None:
            return BehaviorProfile(user_id=user_id)

        try:
            profile = await self.profiles.get_profile(user_id)
        except Exception as e:
            logger.warning(f"Could not load behavior profile for {user_id}, using defaults: {e}")
            return BehaviorProfile(user_id=user_id)

        return profile or BehaviorProfile(user_id=user_id)

    async def schedule_reminders(
        self,
        task: Task,
        profile: BehaviorProfile | None = None,
        now: datetime | None = None,
    ) -> SchedulingResult:
        """Generate and dispatch the adaptive reminder sequence for a task.

        Succeeds when at least one reminder was delivered or queued; partial
        success is still success, with the details in `outcomes`.

        Raises:
            InputError: if the task has no usable due date
        """
        if now is None:
            now = utc_now()

        resolve_due_at(task)

        if task.is_completed:
            logger.info(f"Task {task.id} is already completed; nothing to schedule")
            return SchedulingResult(task_id=task.id, success=False, reason="completed")

        if profile is None:
            profile = await self.resolve_profile(task.user_id)

        await self._replace_pending(task.id, now)

        instructions = generate_reminder_sequence(task, profile, now)
        attempts = build_delivery_attempts(task, instructions, profile, now)

        logger.info(
            f"Scheduling {len(attempts)} reminders for task {task.id}: "
            + ", ".join(format_duration(i.lead_minutes) for i in instructions)
        )

        outcomes = await self.dispatcher.dispatch_all(attempts, now)
        await self._remember(task.id, outcomes, now)

        for outcome in outcomes:
            if outcome.success:
                self._track(
                    ReminderAnalyticsRecord(
                        user_id=task.user_id,
                        task_id=task.id,
                        reminder_type=outcome.attempt.reminder_type,
                        sent_at=now,
                        scheduled_for=outcome.attempt.fire_at,
                    )
                )

        succeeded = sum(1 for o in outcomes if o.success)
        logger.info(f"Scheduled {succeeded}/{len(outcomes)} reminders for task {task.id}")

        return SchedulingResult(
            task_id=task.id,
            success=succeeded > 0,
            outcomes=outcomes,
            reason=None if succeeded else "all_failed",
        )

    async def snooze(
        self,
        task_id: str,
        user_id: str,
        minutes: float | None = None,
        now: datetime | None = None,
    ) -> SchedulingResult:
        """Send one more reminder `minutes` from now.

        Raises:
            InputError: if the task is unknown or completed, or the snooze
                length is not positive
        """
        if now is None:
            now = utc_now()
        if minutes is None:
            minutes = Config.DEFAULT_SNOOZE_MINUTES
        if not 0 < minutes < float("inf"):
            raise InputError("Snooze length must be positive")

        task = await self.tasks.get_task(task_id, user_id) if self.tasks else None
        if task is None:
            raise InputError(f"Task {task_id} not found for user {user_id}")
        if task.is_completed:
            raise InputError(f"Task {task_id} is already completed")

        fire_at = now + timedelta(minutes=minutes)
        attempt = DeliveryAttempt(
            task_id=task.id,
            user_id=user_id,
            task_title=task.title,
            fire_at=fire_at,
            tier="encouraging",
            message=f'🔔 Snooze time\'s up! Ready to tackle "{task.title}"?',
            priority_score=PRIORITY_SCORE_DEFAULT,
            reminder_type="snooze",
        )

        logger.info(f"Snoozing task {task_id} for {format_duration(minutes)}")

        outcomes = await self.dispatcher.dispatch_all([attempt], now)
        await self._remember(task.id, outcomes, now)

        self._track(
            ReminderAnalyticsRecord(
                user_id=user_id,
                task_id=task_id,
                reminder_type="snooze",
                sent_at=now,
                scheduled_for=fire_at,
                user_response="snoozed",
                effectiveness_score=EFFECTIVENESS_SNOOZED,
            )
        )

        success = any(o.success for o in outcomes)
        return SchedulingResult(
            task_id=task.id,
            success=success,
            outcomes=outcomes,
            reason=None if success else "all_failed",
        )

    async def mark_completed(
        self, task_id: str, user_id: str, now: datetime | None = None
    ) -> bool:
        """Cancel every reminder for a task that has not fired yet and mark it done.

        Returns False, changing nothing, when the task store has no such task
        for this user.
        """
        if now is None:
            now = utc_now()

        if self.tasks is not None and await self.tasks.get_task(task_id, user_id) is None:
            logger.warning(f"Task {task_id} not found for user {user_id} when completing")
            return False

        queue = self.dispatcher.queue
        # Close first so in-flight replays and restores see the task as done
        removed = await queue.close_task(task_id)
        pending = await queue.take_handles(task_id)
        upcoming = [p for p in pending if p.queued_entry_id is None and p.fire_at > now]
        cancelled = await self._withdraw(task_id, upcoming)

        logger.info(
            f"Task {task_id} completed: cancelled {cancelled}/{len(upcoming)} pending reminders, "
            f"removed {removed} queued"
        )

        if self.tasks is not None:
            await self.tasks.mark_task_completed(task_id, user_id)

        self._track(
            ReminderAnalyticsRecord(
                user_id=user_id,
                task_id=task_id,
                reminder_type="scheduled",
                sent_at=now,
                scheduled_for=now,
                user_response="completed",
                effectiveness_score=EFFECTIVENESS_COMPLETED,
            )
        )

        return True

    async def pending_for(self, task_id: str) -> List[PendingReminder]:
        """Handles kept for a task's dispatched reminders."""
        return await self.dispatcher.queue.handles_for_task(task_id)

    async def get_reminder_stats(self, user_id: str) -> ReminderStats:
        """Reminder effectiveness for a user (empty stats when unavailable)."""
        if self.analytics is None:
            return ReminderStats()
        try:
            return await self.analytics.get_reminder_stats(user_id)
        except Exception as e:
            logger.error(f"Error getting reminder stats for {user_id}: {e}")
            return ReminderStats()

    async def drain_analytics(self) -> None:
        """Wait for analytics writes still in flight."""
        if self._analytics_jobs:
            await asyncio.gather(*list(self._analytics_jobs), return_exceptions=True)

    # Helper methods

    async def _replace_pending(self, task_id: str, now: datetime) -> None:
        """Withdraw the reminders of an earlier scheduling call for this task."""
        queue = self.dispatcher.queue
        await queue.reopen_task(task_id)

        earlier = [p for p in await queue.take_handles(task_id) if p.fire_at > now]
        cancelled = await self._withdraw(task_id, earlier)
        removed = await queue.remove_for_task(task_id)

        if earlier or removed:
            logger.info(
                f"Rescheduling task {task_id}: withdrew {cancelled} earlier reminders, "
                f"removed {removed} queued"
            )

    async def _remember(self, task_id: str, outcomes: List[DispatchOutcome], now: datetime) -> None:
        """Keep a cancellation handle for every reminder that has not fired."""
        handles = [
            PendingReminder(
                task_id=task_id,
                fire_at=outcome.attempt.fire_at,
                backend=outcome.backend,  # type: ignore[arg-type]
                delivery_id=outcome.delivery_id,
                queued_entry_id=outcome.queued_entry_id,
                user_id=outcome.attempt.user_id,
                payload=None if outcome.queued else build_payload(outcome.attempt),
            )
            for outcome in outcomes
            if outcome.success and outcome.attempt.fire_at > now
        ]

        if await self.dispatcher.queue.save_handles(handles):
            return

        logger.info(f"Task {task_id} was completed while scheduling; withdrawing {len(handles)} reminders")
        await self._withdraw(task_id, handles)

    async def _withdraw(self, task_id: str, handles: List[PendingReminder]) -> int:
        """Cancel deliveries concurrently. Returns how many were cancelled."""
        results = await asyncio.gather(
            *(self.dispatcher.cancel(p) for p in handles), return_exceptions=True
        )
        for p, r in zip(handles, results):
            if isinstance(r, BaseException):
                logger.error(f"Cancelling reminder on {p.backend} for task {task_id} failed: {r}")
        return sum(1 for r in results if r is True)

    def _track(self, record: ReminderAnalyticsRecord) -> None:
        """Write an analytics record in the background."""
        if self.analytics is None:
            return
        job = asyncio.create_task(self._record(record))
        self._analytics_jobs.add(job)
        job.add_done_callback(self._analytics_jobs.discard)

    async def _record(self, record: ReminderAnalyticsRecord) -> None:
        try:
            await self.analytics.record_analytics(record)  # type: ignore[union-attr]
        except Exception as e:
            logger.warning(f"Analytics tracking failed for task {record.task_id}: {e}")
