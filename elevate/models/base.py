"""
Declarative base and shared column mixins.
"""

from datetime import datetime

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from elevate.utils.time import utc_now


class BaseModel(DeclarativeBase):
    """Base class of all tables."""


class TimestampMixin:
    """Adds `created_at` / `updated_at` bookkeeping columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utc_now,
        index=True,
        comment="Row creation time (UTC)"
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utc_now,
        onupdate=utc_now,
        comment="Last update time (UTC)"
    )
