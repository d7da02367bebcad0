"""
loqui/features/plans/catalog.py

Compiled-in plan catalog. None means unlimited.
"""

from enum import Enum
from typing import Dict, Optional
from pydantic import BaseModel, ConfigDict


class Resource(str, Enum):
    ANALYSES = "analyses"
    SCHEDULED_POSTS = "scheduled_posts"
    ACTIVE_AUTOMATIONS = "active_automations"
    TEAM_MEMBERS = "team_members"


class PlanId(str, Enum):
    FREE = "free"
    STARTER = "starter"
    PRO = "pro"
    GROWTH = "growth"
    BETA = "beta"
    BETA_GRACE = "beta_grace"


class PlanLimits(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    analyses: Optional[int]
    scheduled_posts: Optional[int]
    active_automations: Optional[int]
    team_members: Optional[int]


PLAN_LIMITS: Dict[PlanId, PlanLimits] = {
    PlanId.FREE: PlanLimits(name="Free", analyses=3, scheduled_posts=5, active_automations=1, team_members=0),
    PlanId.STARTER: PlanLimits(name="Starter", analyses=10, scheduled_posts=20, active_automations=3, team_members=0),
    PlanId.PRO: PlanLimits(name="Pro", analyses=30, scheduled_posts=75, active_automations=None, team_members=3),
    PlanId.GROWTH: PlanLimits(name="Growth", analyses=150, scheduled_posts=400, active_automations=None, team_members=10),
    PlanId.BETA: PlanLimits(name="Beta", analyses=None, scheduled_posts=None, active_automations=None, team_members=10),
    PlanId.BETA_GRACE: PlanLimits(name="Beta (grace)", analyses=None, scheduled_posts=None, active_automations=None, team_members=10),
}

_missing = set(PlanId) - set(PLAN_LIMITS)
if _missing:
    raise RuntimeError(f"Plan catalog missing entries for: {sorted(p.value for p in _missing)}")

# Counted within the current usage cycle; the rest are standing totals
CYCLE_SCOPED = frozenset({Resource.ANALYSES, Resource.SCHEDULED_POSTS})


def normalize_plan(plan: Optional[str]) -> PlanId:
    """Unknown or missing identifiers fall back to free."""
    if isinstance(plan, PlanId):
        return plan
    try:
        return PlanId(str(plan).lower()) if plan else PlanId.FREE
    except ValueError:
        return PlanId.FREE


def get_limits(plan: Optional[str]) -> PlanLimits:
    return PLAN_LIMITS[normalize_plan(plan)]


def cap_for(plan: Optional[str], resource: Resource) -> Optional[int]:
    return getattr(get_limits(plan), Resource(resource).value)


def is_cycle_scoped(resource: Resource) -> bool:
    return Resource(resource) in CYCLE_SCOPED


def display_name(plan: Optional[str]) -> str:
    return get_limits(plan).name
