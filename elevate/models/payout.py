"""
Payout model - signed reward transactions and their lifecycle.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    BigInteger, DateTime, Integer, String, Text, Index, UniqueConstraint, Enum as SQLEnum
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin


class PayoutState(Enum):
    """Payout lifecycle. Also mirrored on payout subjects."""
    NOT_STARTED = "not_started"
    NOT_ELIGIBLE = "not_eligible"
    PREPARED = "prepared"
    BROADCAST = "broadcast"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class Payout(BaseModel, TimestampMixin):
    """A payout of one asset to one address on behalf of one subject."""

    __tablename__ = "payouts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Subject reference
    subject_collection: Mapped[str] = mapped_column(
        String(32),
        comment="Collection of the subject, e.g. accounts or activities"
    )

    subject_slug: Mapped[str] = mapped_column(
        String(160),
        comment="Identifier of the subject inside its collection"
    )

    user_address: Mapped[str] = mapped_column(
        String(64),
        index=True,
        comment="Recipient address"
    )

    asset_id: Mapped[str] = mapped_column(
        String(16),
        comment="Mosaic identifier"
    )

    amount: Mapped[int] = mapped_column(
        BigInteger,
        comment="Absolute amount (atomic units)"
    )

    # Signed transaction
    signed_payload: Mapped[str] = mapped_column(
        Text,
        comment="Serialized signed transaction"
    )

    transaction_hash: Mapped[str] = mapped_column(
        String(64),
        index=True,
        comment="Hash of the signed transaction"
    )

    # Lifecycle
    payout_state: Mapped[PayoutState] = mapped_column(
        SQLEnum(PayoutState),
        default=PayoutState.PREPARED,
        index=True,
        comment="Lifecycle state"
    )

    attempts: Mapped[int] = mapped_column(
        Integer,
        default=0,
        comment="Number of failed broadcast attempts"
    )

    next_attempt_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        comment="Earliest time of the next broadcast attempt"
    )

    error_message: Mapped[Optional[str]] = mapped_column(
        Text,
        comment="Last error"
    )

    __table_args__ = (
        UniqueConstraint(
            "subject_collection", "subject_slug", "user_address", "asset_id",
            name="uq_payout_attribution"
        ),
        Index("idx_payout_state_next_attempt", "payout_state", "next_attempt_at"),
        Index("idx_payout_address_asset", "user_address", "asset_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Payout(subject={self.subject_collection}/{self.subject_slug}, "
            f"asset={self.asset_id}, amount={self.amount}, state={self.payout_state})>"
        )
