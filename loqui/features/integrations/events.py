"""Provider audit log. Writes are best-effort and never fail the caller."""

import logging
from typing import Any, Dict, Optional

from sqlalchemy import insert

from loqui.core.database import get_db_session, integration_events


logger = logging.getLogger(__name__)

EVENT_TYPES = frozenset({
    "auth_start",
    "auth_success",
    "auth_failure",
    "api_call",
    "api_error",
    "contact_upsert",
    "subscribe",
    "tag",
    "send",
    "send_failure",
    "disconnect",
})


def log_integration_event(
    tenant_id: str,
    provider: str,
    event_type: str,
    status: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    error: Optional[str] = None,
) -> bool:
    if event_type not in EVENT_TYPES:
        raise ValueError(f"Unknown integration event type: {event_type}")
    try:
        with get_db_session() as session:
            session.execute(
                insert(integration_events).values(
                    tenant_id=tenant_id,
                    provider=provider,
                    event_type=event_type,
                    status=status,
                    payload=payload or {},
                    error=error,
                )
            )
        return True
    except Exception as e:
        logger.warning(
            "[integrations] audit write failed",
            extra={"tenant_id": tenant_id, "provider": provider, "event_type": event_type, "error": str(e)},
        )
        return False
