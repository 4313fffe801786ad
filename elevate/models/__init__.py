"""
Database models for the Elevate backend.

Contains SQLAlchemy models for job cursors, ledger records discovered from
the network, accounts, contract operations, provider activities and payouts.
"""

from .base import BaseModel, TimestampMixin
from .state import JobState
from .ledger import Block, Transaction, Asset
from .account import Account, AccountIntegration
from .payout import Payout, PayoutState
from .activity import Activity, ActivityCounter, ProcessingState
from .operation import Operation

__all__ = [
    "BaseModel",
    "TimestampMixin",
    "JobState",
    "Block",
    "Transaction",
    "Asset",
    "Account",
    "AccountIntegration",
    "Payout",
    "PayoutState",
    "Activity",
    "ActivityCounter",
    "ProcessingState",
    "Operation",
]
