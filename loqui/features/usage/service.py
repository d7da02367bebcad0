"""
loqui/features/usage/service.py

Usage aggregation service.

Handles:
- Counting metered records per tenant within the current cycle
- Concurrent fan-out of the counters
- Best-effort degradation when a counter fails
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Optional, Protocol, Tuple

from pydantic import BaseModel, ConfigDict
from sqlalchemy import select, func

from loqui.core.database import get_db_session, transcripts, scheduled_posts, email_automations
from loqui.core.metrics import usage_query_failures_total
from loqui.features.plans.catalog import Resource
from loqui.features.usage.cycle import BillingCycle, cycle_window
from loqui.models.tenant import Tenant


logger = logging.getLogger(__name__)


class UsageSource(Protocol):
    def count_analyses(self, tenant_id: str, start: datetime, end: datetime) -> int: ...

    def count_scheduled_posts(self, tenant_id: str, start: datetime, end: datetime) -> int: ...

    def count_automations(self, tenant_id: str) -> int: ...


class SqlUsageSource:
    """Count queries against the metered tables. Windows are half-open [start, end)."""

    def _count(self, statement) -> int:
        with get_db_session() as session:
            return int(session.execute(statement).scalar() or 0)

    def count_analyses(self, tenant_id: str, start: datetime, end: datetime) -> int:
        return self._count(
            select(func.count())
            .select_from(transcripts)
            .where(transcripts.c.tenant_id == tenant_id)
            .where(transcripts.c.created_at >= start)
            .where(transcripts.c.created_at < end)
        )

    def count_scheduled_posts(self, tenant_id: str, start: datetime, end: datetime) -> int:
        return self._count(
            select(func.count())
            .select_from(scheduled_posts)
            .where(scheduled_posts.c.tenant_id == tenant_id)
            .where(scheduled_posts.c.created_at >= start)
            .where(scheduled_posts.c.created_at < end)
        )

    def count_automations(self, tenant_id: str) -> int:
        return self._count(
            select(func.count())
            .select_from(email_automations)
            .where(email_automations.c.tenant_id == tenant_id)
        )


class AggregationMode(str, Enum):
    BEST_EFFORT = "best_effort"
    STRICT = "strict"


class TenantUsage(BaseModel):
    model_config = ConfigDict(frozen=True)

    analyses: int
    scheduled_posts: int
    active_automations: int
    cycle_start: datetime
    cycle_end: datetime
    # Counters that failed and were reported as 0
    failed: Tuple[str, ...] = ()

    @property
    def partial(self) -> bool:
        return bool(self.failed)

    def as_counters(self) -> Dict[Resource, int]:
        return {
            Resource.ANALYSES: self.analyses,
            Resource.SCHEDULED_POSTS: self.scheduled_posts,
            Resource.ACTIVE_AUTOMATIONS: self.active_automations,
        }


def resolve_anchor(tenant: Tenant, now: datetime) -> datetime:
    return tenant.cycle_anchor_at or tenant.created_at or now


class UsageAggregator:
    def __init__(
        self,
        source: Optional[UsageSource] = None,
        mode: AggregationMode = AggregationMode.BEST_EFFORT,
        max_workers: int = 3,
    ):
        self.source = source or SqlUsageSource()
        self.mode = mode
        self.max_workers = max_workers

    def cycle_for(self, tenant: Tenant, now: datetime) -> BillingCycle:
        return cycle_window(resolve_anchor(tenant, now), now)

    def _counters(self, tenant: Tenant, cycle: BillingCycle, now: datetime) -> Dict[Resource, Callable[[], int]]:
        tenant_id = tenant.tenant_id
        in_cycle = cycle.contains(now)
        return {
            Resource.ANALYSES: (lambda: self.source.count_analyses(tenant_id, cycle.start, cycle.end)) if in_cycle else (lambda: 0),
            Resource.SCHEDULED_POSTS: (lambda: self.source.count_scheduled_posts(tenant_id, cycle.start, cycle.end)) if in_cycle else (lambda: 0),
            Resource.ACTIVE_AUTOMATIONS: lambda: self.source.count_automations(tenant_id),
        }

    def _run(self, tenant_id: str, resource: Resource, fn: Callable[[], int]) -> Tuple[int, bool]:
        try:
            return int(fn()), False
        except Exception as e:
            if self.mode == AggregationMode.STRICT:
                raise
            usage_query_failures_total.inc(labels={"counter": resource.value})
            logger.warning(
                "[usage] counter failed, defaulting to 0",
                extra={"tenant_id": tenant_id, "counter": resource.value, "error": str(e)},
            )
            return 0, True

    def usage(self, tenant: Tenant, now: Optional[datetime] = None) -> TenantUsage:
        now = now or datetime.now(timezone.utc)
        cycle = self.cycle_for(tenant, now)
        counters = self._counters(tenant, cycle, now)

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {
                resource: pool.submit(self._run, tenant.tenant_id, resource, fn)
                for resource, fn in counters.items()
            }
            results = {resource: future.result() for resource, future in futures.items()}

        return TenantUsage(
            analyses=results[Resource.ANALYSES][0],
            scheduled_posts=results[Resource.SCHEDULED_POSTS][0],
            active_automations=results[Resource.ACTIVE_AUTOMATIONS][0],
            cycle_start=cycle.start,
            cycle_end=cycle.end,
            failed=tuple(r.value for r, (_, failed) in results.items() if failed),
        )

    def count(self, tenant: Tenant, resource: Resource, now: Optional[datetime] = None) -> int:
        """Count one resource for the tenant's current cycle."""
        now = now or datetime.now(timezone.utc)
        resource = Resource(resource)
        if resource == Resource.TEAM_MEMBERS:
            # Membership lives in the identity store
            return 0
        cycle = self.cycle_for(tenant, now)
        value, _ = self._run(tenant.tenant_id, resource, self._counters(tenant, cycle, now)[resource])
        return value
