"""
Base class of scheduled jobs that own a persisted cursor.

A tick takes the job's lease, loads its cursor, runs `execute()` and commits
the cursor before releasing the lease. A tick that cannot take the lease is a
no-op, so at most one execution per job name is in flight at any time.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

import structlog

from elevate.services.job_lock import JobLock
from elevate.services.state_store import StateStore
from elevate.utils.time import utc_now


logger = structlog.get_logger(__name__)


@dataclass
class JobStats:
    """Run statistics of one job."""
    runs: int = 0
    skipped_runs: int = 0
    failed_runs: int = 0
    last_run: Optional[datetime] = None
    last_error: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)


class StatefulJob:
    """A job with a lease and a cursor. Subclasses implement `execute()`."""

    name: str = "job"

    def __init__(self, state_store: StateStore, job_lock: JobLock, name: Optional[str] = None):
        if name is not None:
            self.name = name
        self.state_store = state_store
        self.job_lock = job_lock
        self.state: Dict[str, Any] = self.default_state()
        self.stats = JobStats()
        self.logger = logger.bind(service="job", job=self.name)

    def default_state(self) -> Dict[str, Any]:
        """Cursor used when the job never committed one."""
        return {}

    async def run(self) -> bool:
        """
        Run one tick.

        Returns False when the lease is held elsewhere. Errors raised by
        `execute()` are logged and propagated; the cursor is then not committed.
        """
        async with self.job_lock.hold(self.name) as token:
            if token is None:
                self.stats.skipped_runs += 1
                self.logger.debug("Tick skipped, job already running")
                return False

            await self.load_state()
            self.stats.last_run = utc_now()

            try:
                await self.execute()
            except Exception as e:
                self.stats.failed_runs += 1
                self.stats.last_error = str(e)
                self.logger.error("Job tick failed", error=str(e), exc_info=True)
                raise

            await self.commit_state()
            self.stats.runs += 1
            return True

    async def load_state(self) -> None:
        stored = await self.state_store.get(self.name)
        state = self.default_state()
        if stored:
            state.update(stored)
        self.state = state

    async def commit_state(self) -> None:
        await self.state_store.set(self.name, copy.deepcopy(self.state))

    async def execute(self) -> None:
        raise NotImplementedError
