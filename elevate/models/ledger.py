"""
Ledger records discovered from the network: blocks, transactions and assets.
Rows are immutable once written, only timestamp bookkeeping changes.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import (
    BigInteger, Integer, String, Text, JSON, Index, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin


class Block(BaseModel, TimestampMixin):
    """A block of the ledger, keyed by height."""

    __tablename__ = "blocks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    height: Mapped[int] = mapped_column(
        BigInteger,
        unique=True,
        index=True,
        comment="Block height"
    )

    harvester: Mapped[str] = mapped_column(
        String(64),
        comment="Harvester (signer) of the block"
    )

    timestamp: Mapped[int] = mapped_column(
        BigInteger,
        comment="Network timestamp (milliseconds since nemesis)"
    )

    count_transactions: Mapped[int] = mapped_column(
        Integer,
        default=0,
        comment="Number of transactions in the block"
    )

    def __repr__(self) -> str:
        return f"<Block(height={self.height})>"


class Transaction(BaseModel, TimestampMixin):
    """A confirmed transaction involving one of the discovery sources."""

    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    transaction_hash: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        index=True,
        comment="Transaction hash"
    )

    source_address: Mapped[str] = mapped_column(
        String(40),
        index=True,
        comment="Discovery source this transaction was found for"
    )

    signer_address: Mapped[str] = mapped_column(
        String(64),
        index=True,
        comment="Signer address (or public key when no address is known)"
    )

    recipient_address: Mapped[Optional[str]] = mapped_column(
        String(64),
        index=True,
        comment="Recipient address of transfers"
    )

    transaction_mode: Mapped[str] = mapped_column(
        String(10),
        comment="incoming or outgoing, relative to the source"
    )

    transaction_type: Mapped[int] = mapped_column(
        Integer,
        default=0,
        comment="Ledger transaction type"
    )

    transaction_assets: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSON,
        default=list,
        comment="Transferred mosaics [{mosaicId, amount}]"
    )

    transaction_message: Mapped[Optional[str]] = mapped_column(
        Text,
        comment="Plain message attached to the transfer"
    )

    creation_block: Mapped[int] = mapped_column(
        BigInteger,
        index=True,
        comment="Height of the block that includes this transaction"
    )

    def __repr__(self) -> str:
        return f"<Transaction(hash={self.transaction_hash}, block={self.creation_block})>"


class Asset(BaseModel, TimestampMixin):
    """An asset amount received by a user, materialized from a transaction."""

    __tablename__ = "assets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    transaction_hash: Mapped[str] = mapped_column(
        String(64),
        index=True,
        comment="Transaction that transferred this asset"
    )

    user_address: Mapped[str] = mapped_column(
        String(64),
        index=True,
        comment="Owner of the asset"
    )

    mosaic_id: Mapped[str] = mapped_column(
        String(16),
        index=True,
        comment="Mosaic identifier (hexadecimal)"
    )

    amount: Mapped[int] = mapped_column(
        BigInteger,
        comment="Absolute amount (atomic units)"
    )

    creation_block: Mapped[int] = mapped_column(
        BigInteger,
        index=True,
        comment="Height of the transaction's block"
    )

    __table_args__ = (
        UniqueConstraint("user_address", "mosaic_id", "transaction_hash", name="uq_asset_owner_tx"),
        Index("idx_asset_owner_mosaic", "user_address", "mosaic_id"),
    )

    def __repr__(self) -> str:
        return f"<Asset(user={self.user_address}, mosaic={self.mosaic_id}, amount={self.amount})>"
