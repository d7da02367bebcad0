"""
loqui/features/scheduling/expander.py

Expands one schedule request into the delivery rows it implies.

- single: one row at scheduled_at
- thread: part i lands i-1 days after scheduled_at
- series: each item lands day-1 days after scheduled_at; same-day items keep input order
"""

from datetime import timedelta
from typing import List, Optional
from uuid import uuid4

from loqui.features.integrations.registry import ProviderRegistry
from loqui.features.scheduling.channels import Channel, ExpansionContext, parse_channel, strategy_for
from loqui.features.scheduling.requests import (
    ScheduleRequest,
    SeriesScheduleRequest,
    SingleScheduleRequest,
    ThreadScheduleRequest,
)
from loqui.models.delivery import DeliveryDraft


class ScheduleExpander:
    def __init__(self, registry: ProviderRegistry):
        self.registry = registry

    def _context(self, request: ScheduleRequest, group_id: Optional[str]) -> ExpansionContext:
        return ExpansionContext(
            provider=request.provider.lower() if request.provider else None,
            trigger_tag=request.trigger_tag,
            audience_id=request.audience_id,
            transcript_id=request.transcript_id,
            group_id=group_id or str(uuid4()),
            registry=self.registry,
            base_meta=dict(request.meta),
        )

    def expand(self, tenant_id: str, request: ScheduleRequest, *, group_id: Optional[str] = None) -> List[DeliveryDraft]:
        ctx = self._context(request, group_id)

        if isinstance(request, SingleScheduleRequest):
            channel = Channel(request.channel)
            return [strategy_for(channel).build(ctx, channel, request.content, request.title, request.scheduled_at, {})]

        if isinstance(request, ThreadScheduleRequest):
            channel = Channel(request.channel)
            strategy = strategy_for(channel)
            total = len(request.parts)
            return [
                strategy.build(
                    ctx,
                    channel,
                    part,
                    None,
                    request.scheduled_at + timedelta(days=index - 1),
                    {"thread_index": index, "thread_total": total},
                )
                for index, part in enumerate(request.parts, start=1)
            ]

        if isinstance(request, SeriesScheduleRequest):
            total = len(request.items)
            indexed = list(enumerate(request.items, start=1))
            # sorted() is stable, so equal days stay in input order
            ordered = sorted(indexed, key=lambda pair: pair[1].day)
            drafts = []
            for index, item in ordered:
                channel = parse_channel(item.platform) if item.platform else Channel(request.channel)
                drafts.append(
                    strategy_for(channel).build(
                        ctx,
                        channel,
                        item.content,
                        item.subject,
                        request.scheduled_at + timedelta(days=item.day - 1),
                        {"series_day": item.day, "series_index": index, "series_total": total},
                    )
                )
            return drafts

        raise TypeError(f"Unsupported schedule request: {type(request).__name__}")
