"""
Activity models - provider activities ingested from webhooks.

An activity header is created `PENDING` by the webhook ingestor and completed
exactly once by the enricher. The `slug` is the idempotency key of the whole
lifecycle and never changes.
"""

from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import Integer, String, Text, JSON, Index, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin
from .payout import PayoutState


class ProcessingState(Enum):
    """Enrichment state of an activity."""
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


class Activity(BaseModel, TimestampMixin):
    """One provider activity of one user."""

    __tablename__ = "activities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    slug: Mapped[str] = mapped_column(
        String(160),
        unique=True,
        index=True,
        comment="dateSlug-dailyIndex-remoteId-ownerId"
    )

    address: Mapped[str] = mapped_column(
        String(64),
        index=True,
        comment="Ledger address of the owner"
    )

    date_slug: Mapped[str] = mapped_column(
        String(8),
        comment="UTC day of the event, YYYYMMDD"
    )

    daily_index: Mapped[int] = mapped_column(
        Integer,
        comment="1-based index of the activity within the owner's day"
    )

    remote_identifier: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        index=True,
        comment="Activity identifier at the provider"
    )

    provider: Mapped[str] = mapped_column(
        String(32),
        comment="Provider name, lowercase"
    )

    processing_state: Mapped[ProcessingState] = mapped_column(
        SQLEnum(ProcessingState),
        default=ProcessingState.PENDING,
        index=True,
        comment="Enrichment state"
    )

    payout_state: Mapped[PayoutState] = mapped_column(
        SQLEnum(PayoutState),
        default=PayoutState.NOT_STARTED,
        index=True,
        comment="Payout state mirrored from the payout record"
    )

    activity_data: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        JSON,
        comment="Activity detail mapped from the provider"
    )

    error_message: Mapped[Optional[str]] = mapped_column(
        Text,
        comment="Enrichment error"
    )

    __table_args__ = (
        Index("idx_activity_address_date", "address", "date_slug"),
        Index("idx_activity_payout_candidates", "processing_state", "payout_state", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Activity(slug={self.slug}, state={self.processing_state})>"


class ActivityCounter(BaseModel, TimestampMixin):
    """Per-owner, per-day allocator of activity daily indexes."""

    __tablename__ = "activity_counters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    address: Mapped[str] = mapped_column(
        String(64),
        comment="Ledger address of the owner"
    )

    date_slug: Mapped[str] = mapped_column(
        String(8),
        comment="UTC day, YYYYMMDD"
    )

    count: Mapped[int] = mapped_column(
        Integer,
        default=0,
        comment="Last allocated daily index"
    )

    __table_args__ = (
        UniqueConstraint("address", "date_slug", name="uq_activity_counter"),
    )

    def __repr__(self) -> str:
        return f"<ActivityCounter(address={self.address}, day={self.date_slug}, count={self.count})>"
