"""Recurring task schedulers used to drive monitoring checks."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from sellerboard.logging_config import get_logger

LOGGER = get_logger(__name__)

TimerCallback = Callable[[], Awaitable[Any]]


class RecurringScheduler(Protocol):
    """Periodic callbacks keyed by id; scheduling an existing id replaces it."""

    def start(self) -> None: ...

    def shutdown(self) -> None: ...

    def schedule(self, task_id: str, period_ms: int, callback: TimerCallback) -> None: ...

    def cancel(self, task_id: str) -> None: ...

    def scheduled(self) -> dict[str, int]: ...


class APSchedulerTimers:
    """Wall-clock timers backed by APScheduler interval jobs."""

    def __init__(self, scheduler: AsyncIOScheduler | None = None) -> None:
        self._scheduler = scheduler or AsyncIOScheduler()
        self._periods: dict[str, int] = {}

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            LOGGER.info("Timer scheduler started | jobs=%d", len(self._periods))

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._periods.clear()

    def schedule(self, task_id: str, period_ms: int, callback: TimerCallback) -> None:
        if period_ms <= 0:
            raise ValueError("period_ms must be positive")
        # The first run fires one full period after registration.
        self._scheduler.add_job(
            callback,
            "interval",
            seconds=period_ms / 1000,
            id=task_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=None,
        )
        self._periods[task_id] = period_ms
        LOGGER.debug("Timer scheduled | id=%s | period_ms=%d", task_id, period_ms)

    def cancel(self, task_id: str) -> None:
        self._periods.pop(task_id, None)
        try:
            self._scheduler.remove_job(task_id)
        except JobLookupError:
            return
        LOGGER.debug("Timer cancelled | id=%s", task_id)

    def scheduled(self) -> dict[str, int]:
        return dict(self._periods)


@dataclass
class _VirtualJob:
    period_ms: int
    next_due_ms: int
    callback: TimerCallback


class VirtualTimers:
    """Deterministic timers driven by an explicit virtual clock."""

    def __init__(self) -> None:
        self.now_ms = 0
        self.running = False
        self._jobs: dict[str, _VirtualJob] = {}
        self._pending: set[asyncio.Future[Any]] = set()

    def start(self) -> None:
        self.running = True

    def shutdown(self) -> None:
        self.running = False
        self._jobs.clear()

    def schedule(self, task_id: str, period_ms: int, callback: TimerCallback) -> None:
        if period_ms <= 0:
            raise ValueError("period_ms must be positive")
        self._jobs[task_id] = _VirtualJob(period_ms, self.now_ms + period_ms, callback)

    def cancel(self, task_id: str) -> None:
        self._jobs.pop(task_id, None)

    def scheduled(self) -> dict[str, int]:
        return {task_id: job.period_ms for task_id, job in self._jobs.items()}

    async def advance(self, ms: int, *, wait: bool = True) -> list[str]:
        """Move the clock forward, firing due callbacks; returns fired ids in order.

        Callbacks due at the same instant run concurrently. With ``wait=False``
        they are left running and can be awaited later with :meth:`drain`.
        """

        target = self.now_ms + ms
        fired: list[str] = []
        while True:
            due = [job.next_due_ms for job in self._jobs.values() if job.next_due_ms <= target]
            if not due:
                break
            self.now_ms = min(due)
            batch: list[asyncio.Future[Any]] = []
            for task_id, job in list(self._jobs.items()):
                if job.next_due_ms != self.now_ms:
                    continue
                job.next_due_ms += job.period_ms
                fired.append(task_id)
                batch.append(asyncio.ensure_future(job.callback()))
            if wait:
                await asyncio.gather(*batch)
            else:
                self._pending.update(batch)
                await asyncio.sleep(0)
        self.now_ms = target
        return fired

    async def drain(self) -> None:
        pending, self._pending = self._pending, set()
        if pending:
            await asyncio.gather(*pending)


__all__ = ["APSchedulerTimers", "RecurringScheduler", "TimerCallback", "VirtualTimers"]
