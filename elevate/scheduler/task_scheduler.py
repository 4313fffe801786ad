"""
Task scheduler running the discovery and payout jobs on their intervals.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

from elevate.utils.time import utc_now

from .base import StatefulJob


logger = structlog.get_logger(__name__)


class ScheduledTask:
    """Represents a scheduled task."""

    def __init__(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        interval_seconds: int,
        enabled: bool = True,
        run_immediately: bool = False
    ):
        self.name = name
        self.func = func
        self.interval_seconds = interval_seconds
        self.enabled = enabled
        self.last_run: Optional[datetime] = None
        self.next_run = utc_now()
        self.run_count = 0
        self.error_count = 0
        self.last_error: Optional[str] = None

        if not run_immediately:
            self.next_run = utc_now() + timedelta(seconds=interval_seconds)

    def should_run(self) -> bool:
        """Check if task should run now."""
        return self.enabled and utc_now() >= self.next_run

    def schedule_next_run(self):
        self.next_run = utc_now() + timedelta(seconds=self.interval_seconds)

    async def run(self):
        """Execute the task."""
        try:
            logger.debug("Running scheduled task", task=self.name)

            start_time = utc_now()
            await self.func()
            duration = (utc_now() - start_time).total_seconds()

            self.last_run = start_time
            self.run_count += 1
            self.schedule_next_run()

            logger.debug(
                "Task completed",
                task=self.name,
                duration=duration,
                run_count=self.run_count
            )

        except Exception as e:
            self.error_count += 1
            self.last_error = str(e)
            self.schedule_next_run()  # Still schedule next run

            logger.error(
                "Task failed",
                task=self.name,
                error=str(e),
                error_count=self.error_count
            )
            raise


class TaskScheduler:
    """Manages the scheduled jobs of one process."""

    def __init__(self, loop_interval: int = 5):
        self.tasks: Dict[str, ScheduledTask] = {}
        self.running = False
        self.loop_interval = loop_interval

    def register_task(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        interval_seconds: int,
        enabled: bool = True,
        run_immediately: bool = False
    ):
        """Register a new scheduled task."""
        task = ScheduledTask(
            name=name,
            func=func,
            interval_seconds=interval_seconds,
            enabled=enabled,
            run_immediately=run_immediately
        )

        self.tasks[name] = task
        logger.info("Registered task", task=name, interval=interval_seconds)

    def register_job(self, job: StatefulJob, interval_seconds: int, **kwargs):
        """Register a stateful job under its own name."""
        self.register_task(job.name, job.run, interval_seconds, **kwargs)

    def enable_task(self, name: str):
        if name in self.tasks:
            self.tasks[name].enabled = True
            logger.info("Enabled task", task=name)

    def disable_task(self, name: str):
        if name in self.tasks:
            self.tasks[name].enabled = False
            logger.info("Disabled task", task=name)

    async def start(self):
        """Start the task scheduler."""
        logger.info("Starting task scheduler", tasks=len(self.tasks))
        self.running = True

        while self.running:
            try:
                await self.run_pending()
                await asyncio.sleep(self.loop_interval)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Task scheduler loop error", error=str(e))
                await asyncio.sleep(self.loop_interval)

        logger.info("Task scheduler stopped")

    async def stop(self):
        logger.info("Stopping task scheduler")
        self.running = False

    async def run_pending(self):
        """Run all pending tasks concurrently."""
        pending_tasks = [
            task for task in self.tasks.values()
            if task.should_run()
        ]

        if pending_tasks:
            logger.debug("Running pending tasks", count=len(pending_tasks))

            results = await asyncio.gather(
                *(task.run() for task in pending_tasks), return_exceptions=True
            )

            for task, result in zip(pending_tasks, results):
                if isinstance(result, Exception):
                    logger.warning("Task tick aborted", task=task.name, error=str(result))

    async def health_check(self) -> Dict[str, Any]:
        """Get health status of task scheduler."""
        total_tasks = len(self.tasks)
        enabled_tasks = sum(1 for task in self.tasks.values() if task.enabled)
        tasks_with_errors = sum(1 for task in self.tasks.values() if task.error_count > 0)

        task_statuses = {}
        for name, task in self.tasks.items():
            task_statuses[name] = {
                "enabled": task.enabled,
                "last_run": task.last_run.isoformat() if task.last_run else None,
                "next_run": task.next_run.isoformat(),
                "run_count": task.run_count,
                "error_count": task.error_count,
                "last_error": task.last_error
            }

        return {
            "healthy": self.running and tasks_with_errors < total_tasks * 0.5,
            "running": self.running,
            "total_tasks": total_tasks,
            "enabled_tasks": enabled_tasks,
            "tasks_with_errors": tasks_with_errors,
            "tasks": task_statuses
        }
