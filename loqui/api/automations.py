from datetime import datetime

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field

from loqui.api.deps import get_now, get_registry
from loqui.core.auth import get_current_tenant_id
from loqui.features.automations.service import create_automation, delete_automation, list_automations
from loqui.features.entitlements.service import require_quota
from loqui.features.integrations.registry import ProviderRegistry
from loqui.features.plans.catalog import Resource
from loqui.models.tenant import Tenant


router = APIRouter(prefix="/api/automations", tags=["automations"])


class AutomationRequest(BaseModel):
    provider: str
    name: str = Field(min_length=1)
    trigger_tag: str = Field(min_length=1)


@router.post("", status_code=201)
def create(
    body: AutomationRequest,
    tenant: Tenant = Depends(require_quota(Resource.ACTIVE_AUTOMATIONS)),
    registry: ProviderRegistry = Depends(get_registry),
    now: datetime = Depends(get_now),
):
    return create_automation(tenant.tenant_id, body.provider, body.name, body.trigger_tag, registry=registry, now=now)


@router.get("")
def list_all(tenant_id: str = Depends(get_current_tenant_id)):
    automations = list_automations(tenant_id)
    return {"automations": automations, "count": len(automations)}


@router.delete("/{automation_id}", status_code=204)
def remove(automation_id: str, tenant_id: str = Depends(get_current_tenant_id)):
    delete_automation(tenant_id, automation_id)
    return Response(status_code=204)
