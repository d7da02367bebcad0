"""Request-scoped accessors for collaborators stored on app.state."""

from datetime import datetime, timezone

from fastapi import Request

from loqui.features.integrations.registry import ProviderRegistry
from loqui.features.scheduling.expander import ScheduleExpander
from loqui.features.usage.service import UsageAggregator


def get_now(request: Request) -> datetime:
    clock = getattr(request.app.state, "clock", None)
    now = clock() if clock else datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def get_registry(request: Request) -> ProviderRegistry:
    return request.app.state.registry


def get_aggregator(request: Request) -> UsageAggregator:
    return request.app.state.aggregator


def get_expander(request: Request) -> ScheduleExpander:
    return ScheduleExpander(request.app.state.registry)
