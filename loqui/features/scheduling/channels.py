"""
loqui/features/scheduling/channels.py

Delivery channels and how each one turns an item into a delivery draft.

Every Channel must have a strategy in CHANNEL_STRATEGIES; the module fails
to import otherwise.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from loqui.core.errors import ExpansionError
from loqui.features.integrations.contracts import DeliveryMode
from loqui.features.integrations.registry import ProviderRegistry
from loqui.models.delivery import DeliveryDraft


class Channel(str, Enum):
    TWITTER = "twitter"
    LINKEDIN = "linkedin"
    FACEBOOK = "facebook"
    MEDIUM = "medium"
    TIKTOK = "tiktok"
    YOUTUBE = "youtube"
    TEASER = "teaser"
    EMAIL = "email"


def parse_channel(value: Any) -> Channel:
    try:
        return Channel(str(value).lower())
    except ValueError:
        raise ExpansionError(f"Unknown channel: {value}")


@dataclass
class ExpansionContext:
    """Request-level values shared by every row of one expansion."""
    provider: Optional[str]
    trigger_tag: Optional[str]
    audience_id: Optional[str]
    transcript_id: Optional[str]
    group_id: str
    registry: ProviderRegistry
    base_meta: Dict[str, Any] = field(default_factory=dict)


def render_email(subject: Optional[str], body: str) -> str:
    if subject:
        return f"Subject: {subject}\n\n{body}"
    return body


class ChannelStrategy:
    def build(
        self,
        ctx: ExpansionContext,
        channel: Channel,
        body: str,
        subject: Optional[str],
        scheduled_at: datetime,
        meta: Dict[str, Any],
    ) -> DeliveryDraft:
        raise NotImplementedError


class DirectStrategy(ChannelStrategy):
    """Social channels: the row content is what gets posted."""

    def build(self, ctx, channel, body, subject, scheduled_at, meta):
        return DeliveryDraft(
            channel=channel.value,
            provider=None,
            title=subject,
            content=body,
            scheduled_at=scheduled_at,
            transcript_id=ctx.transcript_id,
            meta={**ctx.base_meta, **meta, "group_id": ctx.group_id},
        )


class ProviderStrategy(ChannelStrategy):
    """Email: the provider's delivery mode decides what is stored and how it dispatches."""

    def build(self, ctx, channel, body, subject, scheduled_at, meta):
        if not ctx.provider:
            raise ExpansionError("Email deliveries require a provider")
        adapter = ctx.registry.get(ctx.provider)
        if adapter is None:
            raise ExpansionError(f"Unknown provider: {ctx.provider}")

        rendered = render_email(subject, body)
        row_meta: Dict[str, Any] = {**ctx.base_meta, **meta, "group_id": ctx.group_id}
        if ctx.audience_id:
            row_meta["audience_id"] = ctx.audience_id

        mode = adapter.delivery_mode()
        if mode == DeliveryMode.TAG_TRIGGER:
            if not ctx.trigger_tag:
                raise ExpansionError(f"{adapter.display_name} emails are sent by tag; a trigger tag is required")
            content = ctx.trigger_tag
            row_meta.update({"dispatch": mode.value, "trigger_tag": ctx.trigger_tag, "payload_preview": rendered})
        elif mode == DeliveryMode.SEND:
            content = rendered
            row_meta["dispatch"] = mode.value
        else:
            content = rendered
            row_meta.update({"dispatch": mode.value, "manual_message": adapter.manual_message("sending")})

        return DeliveryDraft(
            channel=channel.value,
            provider=adapter.provider,
            title=subject,
            content=content,
            scheduled_at=scheduled_at,
            transcript_id=ctx.transcript_id,
            meta=row_meta,
        )


_DIRECT = DirectStrategy()

CHANNEL_STRATEGIES: Dict[Channel, ChannelStrategy] = {
    Channel.TWITTER: _DIRECT,
    Channel.LINKEDIN: _DIRECT,
    Channel.FACEBOOK: _DIRECT,
    Channel.MEDIUM: _DIRECT,
    Channel.TIKTOK: _DIRECT,
    Channel.YOUTUBE: _DIRECT,
    Channel.TEASER: _DIRECT,
    Channel.EMAIL: ProviderStrategy(),
}

_unhandled = set(Channel) - set(CHANNEL_STRATEGIES)
if _unhandled:
    raise RuntimeError(f"No scheduling strategy for channels: {sorted(c.value for c in _unhandled)}")


def strategy_for(channel: Channel) -> ChannelStrategy:
    return CHANNEL_STRATEGIES[channel]
