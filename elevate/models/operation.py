"""
Contract operations read from transfer messages.
"""

from typing import Any, Dict, Optional

from sqlalchemy import BigInteger, Integer, String, JSON
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin


class Operation(BaseModel, TimestampMixin):
    """One execution of a dApp contract, identified by its transaction."""

    __tablename__ = "operations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    transaction_hash: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        index=True,
        comment="Transaction that carried the contract"
    )

    user_address: Mapped[str] = mapped_column(
        String(64),
        index=True,
        comment="User the operation was executed for"
    )

    contract_signature: Mapped[str] = mapped_column(
        String(64),
        index=True,
        comment="Contract identifier, e.g. elevate:earn"
    )

    contract_payload: Mapped[Dict[str, Any]] = mapped_column(
        JSON,
        comment="Decoded contract body"
    )

    creation_block: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        comment="Height of the transaction's block"
    )

    def __repr__(self) -> str:
        return f"<Operation(contract={self.contract_signature}, hash={self.transaction_hash})>"
