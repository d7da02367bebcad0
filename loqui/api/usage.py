from datetime import datetime

from fastapi import APIRouter, Depends

from loqui.api.deps import get_aggregator, get_now
from loqui.core.auth import get_current_tenant_id
from loqui.features.entitlements.service import load_tenant, usage_summary
from loqui.features.usage.service import UsageAggregator


router = APIRouter(prefix="/api/usage", tags=["usage"])


@router.get("")
def get_usage(
    tenant_id: str = Depends(get_current_tenant_id),
    aggregator: UsageAggregator = Depends(get_aggregator),
    now: datetime = Depends(get_now),
):
    """Current-cycle usage against the tenant's effective plan."""
    return usage_summary(load_tenant(tenant_id, now), aggregator, now)
