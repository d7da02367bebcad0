"""
loqui/features/plans/service.py

Tenant plan service.

Handles:
- Effective plan resolution (beta -> beta_grace -> free)
- Tenant lookup and creation
- Plan assignment (never moves the cycle anchor)
"""

from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import select, insert, update

from loqui.core.database import get_db_session, tenants, as_utc
from loqui.core.errors import NotFoundError
from loqui.features.plans.catalog import PlanId, cap_for, normalize_plan, Resource
from loqui.models.tenant import Tenant


def resolve_effective_plan(
    stored_plan: Optional[str],
    beta_expires_at: Optional[datetime],
    grace_expires_at: Optional[datetime],
    now: datetime,
) -> PlanId:
    """
    Map the stored plan to the plan whose caps apply right now.

    Beta tenants keep beta until beta_expires_at, then beta_grace until
    grace_expires_at (defaults to the beta end), then drop to free.
    A missing beta end never expires. Any other stored plan, beta_grace
    included, is used as-is.
    """
    plan = normalize_plan(stored_plan)
    if plan != PlanId.BETA:
        return plan

    beta_end = as_utc(beta_expires_at)
    if beta_end is None:
        return PlanId.BETA
    now = as_utc(now)
    if now <= beta_end:
        return PlanId.BETA
    grace_end = as_utc(grace_expires_at) or beta_end
    if now <= grace_end:
        return PlanId.BETA_GRACE
    return PlanId.FREE


def effective_plan_for(tenant: Tenant, now: datetime) -> PlanId:
    return resolve_effective_plan(tenant.plan, tenant.beta_expires_at, tenant.grace_expires_at, now)


def _row_to_tenant(row) -> Tenant:
    return Tenant(
        tenant_id=row.tenant_id,
        plan=row.plan,
        cycle_anchor_at=as_utc(row.cycle_anchor_at),
        beta_expires_at=as_utc(row.beta_expires_at),
        grace_expires_at=as_utc(row.grace_expires_at),
        created_at=as_utc(row.created_at),
    )


def get_tenant(tenant_id: str) -> Optional[Tenant]:
    with get_db_session() as session:
        row = session.execute(select(tenants).where(tenants.c.tenant_id == tenant_id)).first()
    return _row_to_tenant(row) if row else None


def create_tenant(
    tenant_id: str,
    plan: str = "free",
    *,
    cycle_anchor_at: Optional[datetime] = None,
    beta_expires_at: Optional[datetime] = None,
    grace_expires_at: Optional[datetime] = None,
    created_at: Optional[datetime] = None,
) -> Tenant:
    created = as_utc(created_at) or datetime.now(timezone.utc)
    values = {
        "tenant_id": tenant_id,
        "plan": normalize_plan(plan).value,
        "cycle_anchor_at": as_utc(cycle_anchor_at) or created,
        "beta_expires_at": as_utc(beta_expires_at),
        "grace_expires_at": as_utc(grace_expires_at),
        "created_at": created,
    }
    with get_db_session() as session:
        session.execute(insert(tenants).values(**values))
    return Tenant(**values)


def assign_plan(tenant_id: str, plan: str) -> Tenant:
    """Change the stored plan. cycle_anchor_at is left untouched."""
    with get_db_session() as session:
        result = session.execute(
            update(tenants)
            .where(tenants.c.tenant_id == tenant_id)
            .values(plan=normalize_plan(plan).value)
        )
        if result.rowcount == 0:
            raise NotFoundError(f"Tenant {tenant_id} not found")
    return get_tenant(tenant_id)


def get_team_member_limit(plan: Optional[str]) -> Optional[int]:
    return cap_for(plan, Resource.TEAM_MEMBERS)
