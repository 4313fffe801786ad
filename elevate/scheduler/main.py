"""
Main entry point for the scheduler service.
Runs the discovery and payout jobs and the activity enrichment consumer.
"""

import asyncio
import signal
from typing import List, Optional

import structlog

from elevate.container import Container, build_container
from elevate.core.config import Settings
from elevate.core.logging import setup_logging

from .task_scheduler import TaskScheduler


logger = structlog.get_logger(__name__)


class SchedulerMain:
    """Main scheduler service coordinator."""

    def __init__(self, container: Container):
        self.container = container
        self.task_scheduler = TaskScheduler(loop_interval=container.settings.scheduler_loop_interval)
        self.stop_event = asyncio.Event()
        self.running = False
        self.tasks: List[asyncio.Task] = []

    async def initialize(self):
        """Initialize scheduler components."""
        try:
            logger.info("Initializing scheduler service")

            await self.container.database.connect()
            await self.container.database.create_tables()

            for job, interval in self.container.schedule():
                self.task_scheduler.register_job(
                    job,
                    interval_seconds=interval,
                    enabled=self.container.settings.scheduler_enabled,
                )

            logger.info("Scheduler service initialized", tasks=len(self.task_scheduler.tasks))

        except Exception as e:
            logger.error("Failed to initialize scheduler", error=str(e))
            raise

    async def start(self):
        """Start the scheduler service."""
        logger.info("Starting scheduler service")
        self.running = True

        self.tasks.append(asyncio.create_task(self.task_scheduler.start()))
        self.tasks.append(
            asyncio.create_task(
                self.container.activity_channel.consume(
                    self.container.enricher.on_activity_created, self.stop_event
                )
            )
        )
        self.tasks.append(asyncio.create_task(self._periodic_health_check()))

        logger.info("Scheduler service started")
        await asyncio.gather(*self.tasks, return_exceptions=True)

    async def stop(self):
        """Stop the scheduler service."""
        if not self.running:
            return
        logger.info("Stopping scheduler service")

        self.running = False
        self.stop_event.set()
        await self.task_scheduler.stop()

        for task in self.tasks:
            if not task.done():
                task.cancel()

        if self.tasks:
            await asyncio.gather(*self.tasks, return_exceptions=True)

        await self.container.close()
        logger.info("Scheduler service stopped")

    async def _periodic_health_check(self):
        """Periodic health check for scheduler components."""
        while self.running:
            try:
                await asyncio.sleep(300)  # 5 minutes

                if not self.running:
                    break

                database_ok = await self.container.database.health_check()
                task_scheduler_health = await self.task_scheduler.health_check()
                pending_messages = await self.container.activity_channel.pending()

                logger.info(
                    "Scheduler health check",
                    database=database_ok,
                    task_scheduler=task_scheduler_health,
                    pending_messages=pending_messages,
                )

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Health check error", error=str(e))


async def main(settings: Optional[Settings] = None):
    """Main function to run the scheduler service."""
    settings = settings or Settings()
    setup_logging(settings)

    scheduler = SchedulerMain(build_container(settings))

    loop = asyncio.get_running_loop()

    def signal_handler(signum):
        logger.info("Received signal, shutting down", signal=signum)
        asyncio.ensure_future(scheduler.stop())

    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, signal_handler, signum)

    try:
        await scheduler.initialize()
        await scheduler.start()
    except Exception as e:
        logger.error("Scheduler service failed", error=str(e))
        raise
    finally:
        await scheduler.stop()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
