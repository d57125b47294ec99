"""Periodic task scheduler for ThreatLens.

Drives the attack simulator's generation and progression ticks and the
correlation polling fallback.  The core ``tick()`` method is deterministic
and synchronous -- it accepts an explicit *now* (monotonic seconds) and
returns results, so everything built on it is testable without threads.

A task that falls behind is re-armed relative to the current time: missed
ticks are dropped and counted, never replayed as a backlog.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from threatlens.core.errors import SchedulerError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------


@dataclass
class TaskResult:
    """Result of a single scheduled task execution."""

    task_id: str
    task_name: str
    success: bool
    duration_seconds: float
    message: str = ""
    timestamp: float = field(default_factory=time.monotonic)


@dataclass
class ScheduledTask:
    """Definition of a periodic scheduled task."""

    task_id: str
    name: str
    callback: Callable[[], Any]
    interval_seconds: float
    next_run_at: float = 0.0
    last_run_at: float = 0.0
    last_result: str = "pending"  # "pending", "success", "error"
    enabled: bool = True
    run_count: int = 0
    error_count: int = 0
    missed_count: int = 0


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


class TaskScheduler:
    """Monotonic task scheduler with deterministic tick().

    Parameters
    ----------
    tick_interval:
        Upper bound on how long the background thread sleeps between
        ticks (seconds).  Only used when running via start()/stop().
    name:
        Thread name for the background loop.
    """

    def __init__(self, tick_interval: float = 1.0, name: str = "threatlens-scheduler") -> None:
        self._tasks: dict[str, ScheduledTask] = {}
        self._tick_interval = tick_interval
        self._name = name
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._lock = threading.Lock()

    # --- Task management ------------------------------------------------

    def add_task(
        self,
        name: str,
        callback: Callable[[], Any],
        interval_seconds: float,
        enabled: bool = True,
    ) -> ScheduledTask:
        """Register a new periodic task. Returns the created task."""
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        task_id = f"task-{uuid.uuid4().hex[:8]}"
        task = ScheduledTask(
            task_id=task_id,
            name=name,
            callback=callback,
            interval_seconds=interval_seconds,
            enabled=enabled,
        )
        with self._lock:
            self._tasks[task_id] = task
        logger.info(
            "Scheduled task '%s' every %.2fs", name, interval_seconds,
        )
        return task

    def remove_task(self, task_id: str) -> bool:
        """Remove a task by ID. Returns True if found and removed."""
        with self._lock:
            return self._tasks.pop(task_id, None) is not None

    def enable_task(self, task_id: str) -> bool:
        """Enable a task. Returns True if found."""
        with self._lock:
            task = self._tasks.get(task_id)
            if task:
                task.enabled = True
                return True
            return False

    def disable_task(self, task_id: str) -> bool:
        """Disable a task. Returns True if found."""
        with self._lock:
            task = self._tasks.get(task_id)
            if task:
                task.enabled = False
                return True
            return False

    def get_task(self, task_id: str) -> ScheduledTask | None:
        """Get a task by ID."""
        with self._lock:
            return self._tasks.get(task_id)

    def list_tasks(self) -> list[ScheduledTask]:
        """Return all registered tasks."""
        with self._lock:
            return list(self._tasks.values())

    @property
    def task_count(self) -> int:
        """Number of registered tasks."""
        return len(self._tasks)

    # --- Core tick ------------------------------------------------------

    def tick(self, now: float | None = None) -> list[TaskResult]:
        """Execute all tasks that are due.

        Parameters
        ----------
        now:
            Current monotonic timestamp. Defaults to time.monotonic().

        Returns
        -------
        List of TaskResult for tasks that were executed this tick.
        """
        if now is None:
            now = time.monotonic()

        results: list[TaskResult] = []
        with self._lock:
            tasks_snapshot = list(self._tasks.values())

        for task in tasks_snapshot:
            if not task.enabled:
                continue
            if now < task.next_run_at:
                continue

            start = time.monotonic()
            try:
                task.callback()
                duration = time.monotonic() - start
                task.last_result = "success"
                task.run_count += 1
                result = TaskResult(
                    task_id=task.task_id,
                    task_name=task.name,
                    success=True,
                    duration_seconds=duration,
                    message="OK",
                    timestamp=now,
                )
            except Exception as exc:
                duration = time.monotonic() - start
                task.last_result = "error"
                task.run_count += 1
                task.error_count += 1
                result = TaskResult(
                    task_id=task.task_id,
                    task_name=task.name,
                    success=False,
                    duration_seconds=duration,
                    message=str(exc)[:200],
                    timestamp=now,
                )
                logger.warning(
                    "Scheduled task '%s' failed: %s",
                    task.name,
                    exc,
                )

            self._rearm(task, now)
            results.append(result)

        return results

    @staticmethod
    def _rearm(task: ScheduledTask, now: float) -> None:
        """Advance next_run_at by one interval, dropping missed ticks."""
        task.last_run_at = now
        next_run = task.next_run_at + task.interval_seconds
        if next_run <= now:
            if task.next_run_at > 0:
                missed = int((now - task.next_run_at) // task.interval_seconds)
                if missed:
                    task.missed_count += missed
                    logger.debug(
                        "Task '%s' dropped %d missed tick(s)", task.name, missed,
                    )
            next_run = now + task.interval_seconds
        task.next_run_at = next_run

    def seconds_until_due(self, now: float | None = None) -> float:
        """Seconds until the next enabled task is due (0 if overdue)."""
        if now is None:
            now = time.monotonic()
        with self._lock:
            pending = [t.next_run_at for t in self._tasks.values() if t.enabled]
        if not pending:
            return self._tick_interval
        return max(0.0, min(pending) - now)

    # --- Background thread ----------------------------------------------

    def start(self) -> None:
        """Start the background scheduler thread.

        Raises :class:`SchedulerError` if the thread cannot be started.
        """
        if self.is_running:
            return
        self._stop_event.clear()
        thread = threading.Thread(
            target=self._run_loop,
            daemon=True,
            name=self._name,
        )
        try:
            thread.start()
        except RuntimeError as exc:
            raise SchedulerError(f"could not start {self._name}: {exc}") from exc
        self._thread = thread
        logger.info(
            "Task scheduler '%s' started (max sleep=%.2fs)", self._name, self._tick_interval,
        )

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the background thread; no tick runs after this returns.

        Raises :class:`SchedulerError` if the thread does not exit within
        *timeout* seconds.
        """
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                raise SchedulerError(
                    f"{self._name} did not stop within {timeout:.1f}s"
                )
        self._thread = None
        logger.info("Task scheduler '%s' stopped", self._name)

    @property
    def is_running(self) -> bool:
        """Whether the background thread is active."""
        return self._thread is not None and self._thread.is_alive()

    def _run_loop(self) -> None:
        """Background loop: tick, then sleep until the next task is due."""
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("Scheduler tick failed")
            delay = min(self.seconds_until_due(), self._tick_interval)
            self._stop_event.wait(delay)

    # --- Stats ----------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        """Return scheduler statistics."""
        with self._lock:
            tasks = list(self._tasks.values())
        total_runs = sum(t.run_count for t in tasks)
        total_errors = sum(t.error_count for t in tasks)
        return {
            "task_count": len(tasks),
            "enabled_count": sum(1 for t in tasks if t.enabled),
            "total_runs": total_runs,
            "total_errors": total_errors,
            "total_missed": sum(t.missed_count for t in tasks),
            "tasks": [
                {
                    "task_id": t.task_id,
                    "name": t.name,
                    "interval_seconds": t.interval_seconds,
                    "enabled": t.enabled,
                    "run_count": t.run_count,
                    "error_count": t.error_count,
                    "missed_count": t.missed_count,
                    "last_result": t.last_result,
                }
                for t in tasks
            ],
        }
