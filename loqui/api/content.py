"""Metered content endpoints: transcript analyses and repurposing."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from loqui.api.deps import get_now
from loqui.core.auth import get_current_tenant_id
from loqui.features.content.service import get_transcript, record_analysis
from loqui.features.entitlements.service import require_quota
from loqui.features.plans.catalog import Resource
from loqui.features.scheduling.channels import Channel
from loqui.models.tenant import Tenant


router = APIRouter(prefix="/api", tags=["content"])


class AnalysisRequest(BaseModel):
    title: Optional[str] = None


class RepurposeRequest(BaseModel):
    transcript_id: str
    channel: Optional[Channel] = None


@router.post("/analyses", status_code=201)
def create_analysis(
    body: AnalysisRequest,
    tenant: Tenant = Depends(require_quota(Resource.ANALYSES)),
    now: datetime = Depends(get_now),
):
    return record_analysis(tenant.tenant_id, body.title, now=now)


@router.post("/repurpose")
def repurpose(body: RepurposeRequest, tenant_id: str = Depends(get_current_tenant_id)):
    """Resolve the stored transcript a repurposing run works from."""
    transcript = get_transcript(tenant_id, body.transcript_id)
    return {
        "transcriptId": transcript["id"],
        "title": transcript["title"],
        "createdAt": transcript["createdAt"],
        "channel": body.channel.value if body.channel else None,
    }
