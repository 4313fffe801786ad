"""
Persistent job cursors.

Every scheduled job owns one `JobState` row keyed by its name. The store only
reads and writes whole blobs; the meaning of the data belongs to the job.
"""

import copy
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import select

from elevate.core.database import Database
from elevate.models.state import JobState


logger = structlog.get_logger(__name__)


class StateStore:
    """Key -> JSON blob storage for job cursors."""

    def __init__(self, database: Database):
        self.database = database
        self.logger = logger.bind(service="state_store")

    async def get(self, name: str) -> Optional[Dict[str, Any]]:
        """Return a copy of the cursor data of `name`, or None when never written."""
        async with self.database.session() as session:
            result = await session.execute(
                select(JobState.data).where(JobState.name == name)
            )
            data = result.scalar_one_or_none()
        return copy.deepcopy(data) if data is not None else None

    async def set(self, name: str, data: Dict[str, Any]) -> None:
        """Replace the cursor data of `name`. Unchanged data is not rewritten."""
        async with self.database.session() as session:
            result = await session.execute(
                select(JobState).where(JobState.name == name)
            )
            state = result.scalar_one_or_none()

            if state is None:
                session.add(JobState(name=name, data=copy.deepcopy(data)))
                self.logger.debug("Job state created", job=name, data=data)
            elif state.data != data:
                # JSON columns track reassignment only
                state.data = copy.deepcopy(data)
                self.logger.debug("Job state updated", job=name, data=data)
