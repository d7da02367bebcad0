"""
loqui/features/content/service.py

Transcript analysis records. Each stored record counts as one analysis.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from sqlalchemy import select, insert

from loqui.core.database import get_db_session, transcripts, as_utc
from loqui.core.errors import NotFoundError, format_timestamp


def _serialize(row) -> Dict[str, Any]:
    return {
        "id": row.id,
        "title": row.title,
        "createdAt": format_timestamp(as_utc(row.created_at)),
    }


def record_analysis(tenant_id: str, title: Optional[str] = None, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    created_at = as_utc(now) or datetime.now(timezone.utc)
    transcript_id = str(uuid4())
    with get_db_session() as session:
        session.execute(
            insert(transcripts).values(id=transcript_id, tenant_id=tenant_id, title=title, created_at=created_at)
        )
    return {"id": transcript_id, "title": title, "createdAt": format_timestamp(created_at)}


def get_transcript(tenant_id: str, transcript_id: str) -> Dict[str, Any]:
    with get_db_session() as session:
        row = session.execute(
            select(transcripts)
            .where(transcripts.c.id == transcript_id)
            .where(transcripts.c.tenant_id == tenant_id)
        ).first()
    if row is None:
        raise NotFoundError(f"Transcript {transcript_id} not found")
    return _serialize(row)
