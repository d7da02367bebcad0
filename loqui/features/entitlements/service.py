"""
loqui/features/entitlements/service.py

Plan limit checks and enforcement.

Handles:
- Pure limit decisions against the plan catalog
- Enforcement that raises QuotaExceededError (403 plan_limit_reached)
- FastAPI guard dependencies run right before mutating handlers
- Usage summaries for the dashboard
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from fastapi import Depends, Request

from loqui.core.auth import get_current_tenant_id
from loqui.core.errors import QuotaExceededError, format_timestamp
from loqui.core.logging import log_event
from loqui.core.metrics import plan_limit_denied_total
from loqui.features.plans.catalog import PlanId, Resource, cap_for, display_name, is_cycle_scoped, normalize_plan
from loqui.features.plans.service import effective_plan_for, get_tenant
from loqui.features.usage.service import UsageAggregator
from loqui.models.tenant import Tenant


APPROACHING_THRESHOLD = 0.8

RESOURCE_LABELS = {
    Resource.ANALYSES: "analyses",
    Resource.SCHEDULED_POSTS: "scheduled posts",
    Resource.ACTIVE_AUTOMATIONS: "active automations",
    Resource.TEAM_MEMBERS: "team members",
}


@dataclass(frozen=True)
class LimitDecision:
    allowed: bool
    plan: PlanId
    resource: Resource
    limit: Optional[int]
    used: int
    cycle_end: Optional[datetime]
    reason: Optional[str] = None


def check_limit(
    plan: str,
    current_usage: Mapping[Resource, int],
    resource: Resource,
    *,
    requested: int = 1,
    cycle_end: Optional[datetime] = None,
) -> LimitDecision:
    """Allow when used + requested stays within the cap. None caps always allow."""
    plan_id = normalize_plan(plan)
    resource = Resource(resource)
    limit = cap_for(plan_id, resource)
    used = int(current_usage.get(resource, 0))
    scoped_end = cycle_end if is_cycle_scoped(resource) else None

    if limit is None:
        return LimitDecision(True, plan_id, resource, None, used, scoped_end)

    if used + requested > limit:
        reason = (
            f"{display_name(plan_id)} plan limit reached: {used}/{limit} "
            f"{RESOURCE_LABELS[resource]}. Upgrade to continue."
        )
        return LimitDecision(False, plan_id, resource, limit, used, scoped_end, reason)

    return LimitDecision(True, plan_id, resource, limit, used, scoped_end)


def _now(clock: Optional[Callable[[], datetime]] = None) -> datetime:
    now = clock() if clock else datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


class LimitEnforcer:
    def __init__(self, aggregator: UsageAggregator):
        self.aggregator = aggregator

    def evaluate(self, tenant: Tenant, resource: Resource, now: datetime, *, requested: int = 1) -> LimitDecision:
        plan = effective_plan_for(tenant, now)
        resource = Resource(resource)
        if cap_for(plan, resource) is None:
            return LimitDecision(True, plan, resource, None, 0, None)

        used = self.aggregator.count(tenant, resource, now)
        cycle_end = self.aggregator.cycle_for(tenant, now).end
        return check_limit(plan, {resource: used}, resource, requested=requested, cycle_end=cycle_end)

    def enforce(self, tenant: Tenant, resource: Resource, now: datetime, *, requested: int = 1) -> LimitDecision:
        """Raises QuotaExceededError when the plan cap is reached."""
        decision = self.evaluate(tenant, resource, now, requested=requested)
        if decision.allowed:
            return decision

        plan_limit_denied_total.inc(labels={"resource": decision.resource.value, "plan": decision.plan.value})
        log_event(
            "warning",
            "[enforcement] BLOCK",
            tenant_id=tenant.tenant_id,
            event_type="plan_limit",
            error_code=QuotaExceededError.code,
            plan_id=decision.plan.value,
            resource=decision.resource.value,
            limit=decision.limit,
            used=decision.used,
            requested=requested,
        )
        raise QuotaExceededError(
            decision.reason,
            plan=decision.plan.value,
            resource=decision.resource.value,
            limit=decision.limit,
            used=decision.used,
            cycle_end=decision.cycle_end,
            upgrade_required=True,
        )


def usage_summary(tenant: Tenant, aggregator: UsageAggregator, now: datetime) -> Dict[str, Any]:
    plan = effective_plan_for(tenant, now)
    usage = aggregator.usage(tenant, now)
    counters = usage.as_counters()

    resources: Dict[str, Any] = {}
    for resource, used in counters.items():
        cap = cap_for(plan, resource)
        if cap is None:
            status, remaining = "ok", None
        elif used >= cap:
            status, remaining = "at_limit", 0
        elif used >= cap * APPROACHING_THRESHOLD:
            status, remaining = "approaching_limit", cap - used
        else:
            status, remaining = "ok", cap - used
        resources[resource.value] = {"used": used, "limit": cap, "remaining": remaining, "status": status}

    return {
        "plan": plan.value,
        "planName": display_name(plan),
        "usage": resources,
        "teamMembers": {"limit": cap_for(plan, Resource.TEAM_MEMBERS)},
        "partial": list(usage.failed),
        "cycleStart": format_timestamp(usage.cycle_start),
        "cycleEnd": format_timestamp(usage.cycle_end),
    }


def load_tenant(tenant_id: str, now: datetime) -> Tenant:
    """Tenants unknown to the account store are metered as free, anchored now."""
    tenant = get_tenant(tenant_id)
    if tenant is None:
        return Tenant(tenant_id=tenant_id, plan=PlanId.FREE.value, cycle_anchor_at=now, created_at=now)
    return tenant


def require_quota(resource: Resource):
    """Build a guard dependency that enforces the plan cap for resource."""
    resource = Resource(resource)

    def guard(request: Request, tenant_id: str = Depends(get_current_tenant_id)) -> Tenant:
        state = request.app.state
        now = _now(getattr(state, "clock", None))
        tenant = load_tenant(tenant_id, now)
        LimitEnforcer(state.aggregator).enforce(tenant, resource, now)
        return tenant

    guard.__name__ = f"require_quota_{resource.value}"
    return guard
