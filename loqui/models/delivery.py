"""
loqui/models/delivery.py

Scheduled delivery models.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field


class DeliveryStatus(str, Enum):
    SCHEDULED = "Scheduled"
    SENT = "Sent"
    FAILED = "Failed"


# Terminal states have no outgoing transitions
ALLOWED_TRANSITIONS = {
    DeliveryStatus.SCHEDULED: {DeliveryStatus.SENT, DeliveryStatus.FAILED},
    DeliveryStatus.SENT: set(),
    DeliveryStatus.FAILED: set(),
}


def can_transition(current: DeliveryStatus, new: DeliveryStatus) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, set())


class DeliveryDraft(BaseModel):
    """One row produced by expanding a schedule request, not yet persisted."""
    model_config = ConfigDict(frozen=True)

    channel: str
    provider: Optional[str] = None
    title: Optional[str] = None
    content: str
    scheduled_at: datetime
    transcript_id: Optional[str] = None
    meta: Dict[str, Any] = Field(default_factory=dict)


class ScheduledDelivery(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    tenant_id: str
    transcript_id: Optional[str] = None
    channel: str
    provider: Optional[str] = None
    title: Optional[str] = None
    content: str
    scheduled_at: datetime
    status: DeliveryStatus
    meta: Dict[str, Any] = Field(default_factory=dict)
    external_id: Optional[str] = None
    last_error: Optional[str] = None
    published_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
