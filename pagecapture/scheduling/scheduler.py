"""Recurring capture scheduler with bounded concurrency, retry and notifications."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from pagecapture.capture.errors import ErrorKind, InvalidSchedule
from pagecapture.capture.executor import CaptureExecutor
from pagecapture.capture.models import Completed, Failed, TaskError

from .cron import Croniter, CronEvaluator
from .models import (
    NotificationEvent,
    ScheduledTask,
    ScheduledTaskCreate,
    SchedulerConfig,
    TaskStatus,
)
from .notifications import NotificationDispatcher

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Entry:
    task: ScheduledTask
    timer: asyncio.Task | None = None
    fires: set[asyncio.Task] = field(default_factory=set)
    # Fires with an attempt queued or executing; a retry waiting out its delay is not listed.
    attempting: set[asyncio.Task] = field(default_factory=set)
    deleted: bool = False

    @property
    def busy(self) -> bool:
        return bool(self.attempting)


class TaskScheduler:
    """Owns scheduled task records and the timers that fire them.

    Records are only mutated here. Each task has one timer coroutine that
    sleeps until the next cron slot; a slot that arrives while an attempt of
    the same task is still running or queued is skipped. Retries run beside
    the cadence: a fire waiting out its retry delay does not hold back the
    next regular slot. Attempts across all tasks share ``max_concurrent``
    execution slots, handed out in arrival order.
    """

    def __init__(
        self,
        executor: CaptureExecutor,
        dispatcher: NotificationDispatcher,
        config: SchedulerConfig = SchedulerConfig(),
        cron: CronEvaluator | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._executor = executor
        self._dispatcher = dispatcher
        self._config = config
        self._cron = cron or Croniter()
        self._now = clock
        self._entries: dict[str, _Entry] = {}
        self._slots = asyncio.Semaphore(max(1, config.max_concurrent))
        self._fires: set[asyncio.Task] = set()
        self._running = False

    # --- lifecycle ---

    async def start(self) -> None:
        self._running = True
        if not self._config.enabled:
            logger.info("scheduler disabled, timers will not run")
            return
        for entry in self._entries.values():
            if entry.task.status is not TaskStatus.PAUSED:
                self._arm(entry)
        logger.info("scheduler started", extra={"tasks": len(self._entries)})

    async def stop(self) -> None:
        self._running = False
        pending: list[asyncio.Task] = []
        for entry in self._entries.values():
            if entry.timer is not None:
                entry.timer.cancel()
                pending.append(entry.timer)
                entry.timer = None
        for fire in list(self._fires):
            fire.cancel()
            pending.append(fire)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("scheduler stopped")

    # --- task registry ---

    def schedule_task(self, definition: ScheduledTaskCreate) -> ScheduledTask:
        if not self._cron.is_valid(definition.schedule):
            raise InvalidSchedule(definition.schedule)

        task = ScheduledTask(
            id=uuid.uuid4().hex,
            request=definition.request,
            schedule=definition.schedule,
            notifications=definition.notifications,
            next_run_at=self._cron.next_fire_time(definition.schedule, self._now()),
        )
        entry = _Entry(task=task)
        self._entries[task.id] = entry
        self._arm(entry)
        logger.info(
            "task scheduled",
            extra={"task_id": task.id, "schedule": task.schedule, "url": task.url, "next_run_at": str(task.next_run_at)},
        )
        return task.model_copy(deep=True)

    def pause_task(self, task_id: str) -> bool:
        entry = self._entries.get(task_id)
        if entry is None:
            return False
        self._disarm(entry)
        entry.task.status = TaskStatus.PAUSED
        entry.task.next_run_at = None
        entry.task.touch()
        logger.info("task paused", extra={"task_id": task_id})
        return True

    def resume_task(self, task_id: str) -> bool:
        entry = self._entries.get(task_id)
        if entry is None:
            return False
        entry.task.status = TaskStatus.ACTIVE
        entry.task.next_run_at = self._cron.next_fire_time(entry.task.schedule, self._now())
        entry.task.touch()
        self._arm(entry)
        logger.info("task resumed", extra={"task_id": task_id, "next_run_at": str(entry.task.next_run_at)})
        return True

    def delete_task(self, task_id: str) -> bool:
        entry = self._entries.pop(task_id, None)
        if entry is None:
            return False
        entry.deleted = True
        self._disarm(entry)
        logger.info("task deleted", extra={"task_id": task_id})
        return True

    def get_task(self, task_id: str) -> ScheduledTask | None:
        entry = self._entries.get(task_id)
        return entry.task.model_copy(deep=True) if entry else None

    def list_tasks(self) -> list[ScheduledTask]:
        return [entry.task.model_copy(deep=True) for entry in self._entries.values()]

    def run_now(self, task_id: str) -> bool:
        """Fire a task immediately, outside its cadence.

        Returns ``False`` when the task is unknown or a fire is already in flight.
        """
        entry = self._entries.get(task_id)
        if entry is None:
            return False
        return self._start_fire(entry, reason="manual")

    async def wait_for_fire(self, task_id: str) -> None:
        """Wait for every in-flight fire of *task_id*, retries included."""
        entry = self._entries.get(task_id)
        if entry is not None and entry.fires:
            await asyncio.wait(set(entry.fires))

    # --- timers ---

    def _arm(self, entry: _Entry) -> None:
        if not (self._running and self._config.enabled):
            return
        if entry.timer is not None and not entry.timer.done():
            return
        entry.timer = asyncio.create_task(self._timer_loop(entry), name=f"schedule:{entry.task.id}")

    def _disarm(self, entry: _Entry) -> None:
        if entry.timer is not None:
            entry.timer.cancel()
            entry.timer = None

    async def _timer_loop(self, entry: _Entry) -> None:
        task = entry.task
        last_slot: datetime | None = None
        while True:
            now = self._now()
            start = max(now, last_slot) if last_slot is not None else now
            slot = self._cron.next_fire_time(task.schedule, start)
            task.next_run_at = slot
            await asyncio.sleep(max(0.0, (slot - now).total_seconds()))
            last_slot = slot
            self._start_fire(entry, reason="schedule")

    def _start_fire(self, entry: _Entry, reason: str) -> bool:
        if entry.busy:
            logger.info(
                "previous attempt still running, skipping",
                extra={"task_id": entry.task.id, "reason": reason},
            )
            return False
        fire = asyncio.create_task(self._fire(entry), name=f"fire:{entry.task.id}")
        entry.fires.add(fire)
        entry.attempting.add(fire)
        self._fires.add(fire)

        def _forget(done: asyncio.Task) -> None:
            entry.fires.discard(done)
            entry.attempting.discard(done)
            self._fires.discard(done)

        fire.add_done_callback(_forget)
        return True

    # --- firing ---

    async def _fire(self, entry: _Entry) -> None:
        task = entry.task
        max_attempts = max(1, self._config.retry_attempts)
        logger.info("task fire started", extra={"task_id": task.id, "url": task.url})

        current = asyncio.current_task()

        for attempt in range(1, max_attempts + 1):
            entry.attempting.add(current)
            try:
                await self._notify(
                    task,
                    NotificationEvent(
                        type="progress",
                        task_id=task.id,
                        url=task.url,
                        data={"status": "starting", "attempt": attempt},
                    ),
                )
                outcome = await self._attempt(task)
            finally:
                entry.attempting.discard(current)
            task.last_run_at = self._now()
            task.run_count += 1

            if isinstance(outcome, Completed):
                if task.status is TaskStatus.ERROR:
                    task.status = TaskStatus.ACTIVE
                task.failure_count = 0
                task.last_error = None
                self._refresh_next_run(task)
                task.touch()
                logger.info("task fire succeeded", extra={"task_id": task.id, "attempt": attempt})
                await self._notify(
                    task,
                    NotificationEvent(
                        type="success",
                        task_id=task.id,
                        url=task.url,
                        data={
                            "attempt": attempt,
                            "sections": len(outcome.results),
                            "captured_at": [r.captured_at.isoformat() for r in outcome.results],
                        },
                    ),
                )
                return

            task.failure_count += 1
            task.last_error = outcome.error.message
            task.touch()
            will_retry = attempt < max_attempts
            await self._notify(
                task,
                NotificationEvent(
                    type="error",
                    task_id=task.id,
                    url=task.url,
                    error=outcome.error.message,
                    data={
                        "kind": outcome.error.kind.value,
                        "phase": outcome.error.phase,
                        "attempt": attempt,
                        "max_attempts": max_attempts,
                        "will_retry": will_retry,
                    },
                ),
            )
            if not will_retry:
                break

            delay = self._config.retry_delay(attempt)
            logger.warning(
                "task fire failed, retrying",
                extra={"task_id": task.id, "attempt": attempt, "max_attempts": max_attempts, "delay_s": delay},
            )
            await asyncio.sleep(delay)
            if entry.deleted or task.status is TaskStatus.PAUSED:
                logger.info("retries abandoned", extra={"task_id": task.id, "deleted": entry.deleted})
                return

        if task.status is not TaskStatus.PAUSED:
            task.status = TaskStatus.ERROR
        self._refresh_next_run(task)
        task.touch()
        logger.error(
            "task fire failed, retries exhausted",
            extra={"task_id": task.id, "attempts": max_attempts, "error": task.last_error},
        )

    async def _attempt(self, task: ScheduledTask) -> Completed | Failed:
        async with self._slots:
            try:
                return await self._executor.run(task.request)
            except Exception as exc:
                logger.exception("executor raised during scheduled fire", extra={"task_id": task.id})
                return Failed(error=TaskError(kind=ErrorKind.DELEGATE_ERROR, message=str(exc) or type(exc).__name__))

    def _refresh_next_run(self, task: ScheduledTask) -> None:
        if task.status is TaskStatus.PAUSED:
            return
        task.next_run_at = self._cron.next_fire_time(task.schedule, self._now())

    async def _notify(self, task: ScheduledTask, event: NotificationEvent) -> None:
        try:
            await self._dispatcher.dispatch(task.notifications, event)
        except Exception:
            logger.warning("notification dispatch raised", extra={"task_id": task.id}, exc_info=True)
