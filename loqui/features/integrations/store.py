"""
loqui/features/integrations/store.py

connected_accounts persistence. One row per (tenant, provider).
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from sqlalchemy import select, insert, update

from loqui.core.database import get_db_session, connected_accounts, as_utc


def _row_to_dict(row) -> Dict[str, Any]:
    data = dict(row._mapping)
    for key in ("expires_at", "last_sync_at", "updated_at"):
        data[key] = as_utc(data.get(key))
    return data


def get_connected_account(tenant_id: str, provider: str) -> Optional[Dict[str, Any]]:
    with get_db_session() as session:
        row = session.execute(
            select(connected_accounts)
            .where(connected_accounts.c.tenant_id == tenant_id)
            .where(connected_accounts.c.provider == provider)
        ).first()
    return _row_to_dict(row) if row else None


def upsert_connected_account(
    tenant_id: str,
    provider: str,
    *,
    access_token: Optional[str],
    refresh_token: Optional[str] = None,
    expires_at: Optional[datetime] = None,
    scopes: Optional[List[str]] = None,
    provider_user_id: Optional[str] = None,
    profile: Optional[Dict[str, Any]] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    now = datetime.now(timezone.utc)
    values = {
        "provider_user_id": provider_user_id,
        "access_token": access_token,
        "refresh_token": refresh_token,
        "expires_at": as_utc(expires_at),
        "scopes": scopes or [],
        "profile": profile or {},
        "status": "connected",
        "last_sync_at": now,
        "metadata": metadata or {},
        "updated_at": now,
    }
    with get_db_session() as session:
        existing = session.execute(
            select(connected_accounts.c.id)
            .where(connected_accounts.c.tenant_id == tenant_id)
            .where(connected_accounts.c.provider == provider)
        ).first()
        if existing:
            session.execute(
                update(connected_accounts)
                .where(connected_accounts.c.id == existing.id)
                .values(**values)
            )
        else:
            session.execute(insert(connected_accounts).values(tenant_id=tenant_id, provider=provider, **values))
    return get_connected_account(tenant_id, provider)


def disconnect_account(tenant_id: str, provider: str) -> bool:
    """Clear tokens and mark disconnected. Returns False when nothing was connected."""
    with get_db_session() as session:
        result = session.execute(
            update(connected_accounts)
            .where(connected_accounts.c.tenant_id == tenant_id)
            .where(connected_accounts.c.provider == provider)
            .values(
                status="disconnected",
                access_token=None,
                refresh_token=None,
                expires_at=None,
                updated_at=datetime.now(timezone.utc),
            )
        )
        return result.rowcount > 0
