"""
Job state model - persisted cursors of scheduled jobs.
"""

from typing import Any, Dict

from sqlalchemy import Integer, String, JSON
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin


class JobState(BaseModel, TimestampMixin):
    """One row per job name holding that job's opaque cursor data."""

    __tablename__ = "job_states"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    name: Mapped[str] = mapped_column(
        String(120),
        unique=True,
        index=True,
        comment="Job name, e.g. discovery:blocks"
    )

    data: Mapped[Dict[str, Any]] = mapped_column(
        JSON,
        default=dict,
        comment="Cursor data owned by the job"
    )

    def __repr__(self) -> str:
        return f"<JobState(name={self.name}, data={self.data})>"
