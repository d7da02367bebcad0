"""
loqui/features/scheduling/requests.py

Schedule request shapes, discriminated by kind: single, thread or series.
"""

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, field_validator

from loqui.features.scheduling.channels import Channel


NonEmptyText = Annotated[str, Field(min_length=1)]


class _ScheduleBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    channel: Channel
    provider: Optional[str] = None
    scheduled_at: datetime
    transcript_id: Optional[str] = None
    trigger_tag: Optional[str] = None
    automation_id: Optional[str] = None
    audience_id: Optional[str] = None
    meta: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("scheduled_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class SingleScheduleRequest(_ScheduleBase):
    kind: Literal["single"] = "single"
    content: NonEmptyText
    title: Optional[str] = None


class ThreadScheduleRequest(_ScheduleBase):
    kind: Literal["thread"]
    parts: List[NonEmptyText] = Field(min_length=1)


class SeriesItem(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    day: int = Field(ge=1)
    content: NonEmptyText
    subject: Optional[str] = None
    # Overrides the request channel for this item
    platform: Optional[str] = None


class SeriesScheduleRequest(_ScheduleBase):
    kind: Literal["series"]
    items: List[SeriesItem] = Field(min_length=1)


def _request_kind(value: Any) -> str:
    # kind is optional on the wire; a body without one is a single post
    if isinstance(value, dict):
        return value.get("kind") or "single"
    return getattr(value, "kind", None) or "single"


ScheduleRequest = Annotated[
    Union[
        Annotated[SingleScheduleRequest, Tag("single")],
        Annotated[ThreadScheduleRequest, Tag("thread")],
        Annotated[SeriesScheduleRequest, Tag("series")],
    ],
    Discriminator(_request_kind),
]


class DeliveryUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    content: Optional[NonEmptyText] = None
    title: Optional[str] = None
    scheduled_at: Optional[datetime] = None
