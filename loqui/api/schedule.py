"""
Scheduling API.

POST validates and expands a single post, a thread or a multi-day series,
checks the plan cap against the full expanded batch, then stores every
delivery atomically.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Response
from pydantic import RootModel

from loqui.api.deps import get_aggregator, get_expander, get_now
from loqui.core.auth import get_current_tenant_id
from loqui.features.entitlements.service import LimitEnforcer, load_tenant
from loqui.features.plans.catalog import Resource
from loqui.features.scheduling import service
from loqui.features.scheduling.expander import ScheduleExpander
from loqui.features.scheduling.requests import DeliveryUpdate, ScheduleRequest
from loqui.features.usage.service import UsageAggregator
from loqui.models.delivery import DeliveryStatus


router = APIRouter(prefix="/api/schedule", tags=["schedule"])


class ScheduleRequestBody(RootModel[ScheduleRequest]):
    pass


@router.post("", status_code=201)
def create_schedule(
    body: ScheduleRequestBody,
    tenant_id: str = Depends(get_current_tenant_id),
    expander: ScheduleExpander = Depends(get_expander),
    aggregator: UsageAggregator = Depends(get_aggregator),
    now: datetime = Depends(get_now),
):
    request = body.root
    drafts = service.expand_request(tenant_id, request, expander=expander)

    # A thread or series counts one scheduled post per expanded delivery
    tenant = load_tenant(tenant_id, now)
    LimitEnforcer(aggregator).enforce(tenant, Resource.SCHEDULED_POSTS, now, requested=len(drafts))

    ids = service.insert_deliveries(tenant_id, drafts, kind=request.kind, now=now)
    return {"ids": ids, "count": len(ids)}


@router.get("")
def list_schedule(
    status: Optional[DeliveryStatus] = None,
    tenant_id: str = Depends(get_current_tenant_id),
):
    deliveries = service.list_deliveries(tenant_id, status)
    return {"deliveries": [d.model_dump(mode="json") for d in deliveries], "count": len(deliveries)}


@router.get("/{delivery_id}")
def get_schedule_item(delivery_id: str, tenant_id: str = Depends(get_current_tenant_id)):
    return service.get_delivery(tenant_id, delivery_id).model_dump(mode="json")


@router.patch("/{delivery_id}")
def update_schedule_item(
    delivery_id: str,
    changes: DeliveryUpdate,
    tenant_id: str = Depends(get_current_tenant_id),
    now: datetime = Depends(get_now),
):
    return service.update_delivery(tenant_id, delivery_id, changes, now=now).model_dump(mode="json")


@router.delete("/{delivery_id}", status_code=204)
def cancel_schedule_item(delivery_id: str, tenant_id: str = Depends(get_current_tenant_id)):
    service.cancel_delivery(tenant_id, delivery_id)
    return Response(status_code=204)
