"""
loqui/features/automations/service.py

Email automations started by applying a tag in the tenant's provider.
Active automations are a standing count against the plan.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4
import logging

from sqlalchemy import select, insert, delete

from loqui.core.database import get_db_session, email_automations, as_utc
from loqui.core.errors import NotFoundError, ValidationError, format_timestamp
from loqui.features.integrations.registry import ProviderRegistry


logger = logging.getLogger(__name__)


def _serialize(row) -> Dict[str, Any]:
    data = dict(row._mapping)
    return {
        "id": data["id"],
        "provider": data["provider"],
        "name": data["name"],
        "triggerType": data["trigger_type"],
        "triggerTag": data["trigger_value"],
        "createdAt": format_timestamp(as_utc(data["created_at"])),
    }


def create_automation(
    tenant_id: str,
    provider: str,
    name: str,
    trigger_tag: str,
    *,
    registry: ProviderRegistry,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    adapter = registry.get(provider)
    if adapter is None:
        raise NotFoundError(f"Unknown provider: {provider}")
    if not adapter.capabilities.tag:
        raise ValidationError(f"{adapter.display_name} does not support tag-triggered automations")
    if not trigger_tag.strip():
        raise ValidationError("trigger_tag is required")

    automation_id = str(uuid4())
    created_at = as_utc(now) or datetime.now(timezone.utc)
    with get_db_session() as session:
        session.execute(
            insert(email_automations).values(
                id=automation_id,
                tenant_id=tenant_id,
                provider=adapter.provider,
                name=name,
                trigger_type="tag_applied",
                trigger_value=trigger_tag.strip(),
                created_at=created_at,
            )
        )
        row = session.execute(select(email_automations).where(email_automations.c.id == automation_id)).first()
    logger.info("[automations] created", extra={"tenant_id": tenant_id, "provider": adapter.provider})
    return _serialize(row)


def list_automations(tenant_id: str) -> List[Dict[str, Any]]:
    with get_db_session() as session:
        rows = session.execute(
            select(email_automations)
            .where(email_automations.c.tenant_id == tenant_id)
            .order_by(email_automations.c.created_at)
        ).fetchall()
    return [_serialize(row) for row in rows]


def delete_automation(tenant_id: str, automation_id: str) -> None:
    with get_db_session() as session:
        result = session.execute(
            delete(email_automations)
            .where(email_automations.c.id == automation_id)
            .where(email_automations.c.tenant_id == tenant_id)
        )
        if result.rowcount == 0:
            raise NotFoundError(f"Automation {automation_id} not found")
