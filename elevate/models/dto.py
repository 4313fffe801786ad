"""
Plain data transfer objects and the free functions that derive them from rows.

Rows stay plain SQLAlchemy models; querying and serialization are functions
over them rather than mixins on them.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict

from .base import BaseModel as TableModel
from .ledger import Block, Transaction, Asset
from .activity import Activity
from .operation import Operation
from .payout import Payout
from .state import JobState


# Natural unique key of each collection, used for existence checks.
NATURAL_KEYS = {
    Block: ("height",),
    Transaction: ("transaction_hash",),
    Asset: ("user_address", "mosaic_id", "transaction_hash"),
    Activity: ("slug",),
    Operation: ("transaction_hash",),
    Payout: ("subject_collection", "subject_slug", "user_address", "asset_id"),
    JobState: ("name",),
}


def to_query(record: TableModel) -> Dict[str, Any]:
    """Return the `filter_by` arguments that identify `record` by its natural key."""
    try:
        keys = NATURAL_KEYS[type(record)]
    except KeyError:
        raise TypeError(f"No natural key registered for {type(record).__name__}")
    return {key: getattr(record, key) for key in keys}


class ActivityDTO(BaseModel):
    """Activity as returned to callers of the webhook ingestor."""

    model_config = ConfigDict(frozen=True)

    slug: str
    address: str
    date_slug: str
    daily_index: int
    remote_identifier: str
    provider: str
    processing_state: str
    payout_state: str
    activity_data: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None


class PayoutDTO(BaseModel):
    """Payout as reported by the preparation pipeline."""

    model_config = ConfigDict(frozen=True)

    subject_collection: str
    subject_slug: str
    user_address: str
    asset_id: str
    amount: int
    transaction_hash: str
    payout_state: str


def activity_to_dto(activity: Activity) -> ActivityDTO:
    return ActivityDTO(
        slug=activity.slug,
        address=activity.address,
        date_slug=activity.date_slug,
        daily_index=activity.daily_index,
        remote_identifier=activity.remote_identifier,
        provider=activity.provider,
        processing_state=activity.processing_state.value,
        payout_state=activity.payout_state.value,
        activity_data=activity.activity_data,
        created_at=activity.created_at,
    )


def payout_to_dto(payout: Payout) -> PayoutDTO:
    return PayoutDTO(
        subject_collection=payout.subject_collection,
        subject_slug=payout.subject_slug,
        user_address=payout.user_address,
        asset_id=payout.asset_id,
        amount=payout.amount,
        transaction_hash=payout.transaction_hash,
        payout_state=payout.payout_state.value,
    )
