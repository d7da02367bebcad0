"""
loqui/models/tenant.py

Tenant model (the account whose usage is metered).
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


class Tenant(BaseModel):
    """
    Tenant as seen by this service.

    cycle_anchor_at is set once at signup and never changes with the plan;
    usage cycles are derived from it.
    """
    model_config = ConfigDict(frozen=True)

    tenant_id: str
    plan: str = "free"
    cycle_anchor_at: Optional[datetime] = None
    beta_expires_at: Optional[datetime] = None
    grace_expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
