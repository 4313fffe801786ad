"""
Account models - dApp users and their OAuth integrations.

Accounts are created by account discovery from the transfers the dApp sent
and completed by the authentication layer (referral data). Integrations are
written by the authentication layer; the pipeline only refreshes their tokens.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Integer, String, Text, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin


class Account(BaseModel, TimestampMixin):
    """A dApp user identified by its ledger address."""

    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    address: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        index=True,
        comment="Ledger address of the user"
    )

    referral_code: Mapped[Optional[str]] = mapped_column(
        String(32),
        unique=True,
        comment="Code this user shares to refer others"
    )

    referred_by: Mapped[Optional[str]] = mapped_column(
        String(64),
        index=True,
        comment="Address of the referrer"
    )

    transactions_count: Mapped[int] = mapped_column(
        Integer,
        default=0,
        comment="Number of transfers the dApp sent to this account"
    )

    first_transaction_at_block: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        comment="Height of the first transfer the dApp sent to this account"
    )

    def __repr__(self) -> str:
        return f"<Account(address={self.address}, referred_by={self.referred_by})>"


class AccountIntegration(BaseModel, TimestampMixin):
    """An OAuth link between an account and a data provider."""

    __tablename__ = "account_integrations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    provider: Mapped[str] = mapped_column(
        String(32),
        comment="Provider name, e.g. strava"
    )

    address: Mapped[str] = mapped_column(
        String(64),
        index=True,
        comment="Ledger address of the user"
    )

    remote_identifier: Mapped[Optional[str]] = mapped_column(
        String(64),
        index=True,
        comment="User identifier at the provider (athlete id)"
    )

    access_token: Mapped[Optional[str]] = mapped_column(
        Text,
        comment="Current access token"
    )

    refresh_token: Mapped[Optional[str]] = mapped_column(
        Text,
        comment="Refresh token"
    )

    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        comment="Access token expiry (UTC)"
    )

    __table_args__ = (
        UniqueConstraint("provider", "address", name="uq_integration_provider_address"),
        Index("idx_integration_provider_remote", "provider", "remote_identifier"),
    )

    def __repr__(self) -> str:
        return f"<AccountIntegration(provider={self.provider}, address={self.address})>"
