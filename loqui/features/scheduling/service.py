"""
loqui/features/scheduling/service.py

Scheduled delivery service.

Handles:
- Expanding and persisting schedule requests (all rows or none)
- Tenant-scoped listing, edits and cancellation of pending deliveries
- Status transitions reported by the external dispatch sweep
"""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4
import logging

from sqlalchemy import select, insert, update, delete

from loqui.core.database import get_db_session, scheduled_posts, email_automations, as_utc
from loqui.core.errors import AppError, ConflictError, ExpansionError, NotFoundError
from loqui.core.metrics import deliveries_scheduled_total
from loqui.features.scheduling.expander import ScheduleExpander
from loqui.features.scheduling.requests import DeliveryUpdate, ScheduleRequest
from loqui.models.delivery import DeliveryDraft, DeliveryStatus, ScheduledDelivery, can_transition


logger = logging.getLogger(__name__)


def _now(now: Optional[datetime] = None) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    return as_utc(now)


def _row_to_delivery(row) -> ScheduledDelivery:
    return ScheduledDelivery(
        id=row.id,
        tenant_id=row.tenant_id,
        transcript_id=row.transcript_id,
        channel=row.channel,
        provider=row.provider,
        title=row.title,
        content=row.content,
        scheduled_at=as_utc(row.scheduled_at),
        status=DeliveryStatus(row.status),
        meta=row.meta or {},
        external_id=row.external_id,
        last_error=row.last_error,
        published_at=as_utc(row.published_at),
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def resolve_automation(tenant_id: str, request: ScheduleRequest) -> ScheduleRequest:
    """Fill trigger_tag (and provider, if unset) from the referenced automation."""
    if not request.automation_id or request.trigger_tag:
        return request
    with get_db_session() as session:
        row = session.execute(
            select(email_automations)
            .where(email_automations.c.id == request.automation_id)
            .where(email_automations.c.tenant_id == tenant_id)
        ).first()
    if row is None:
        raise ExpansionError(f"Automation {request.automation_id} not found")
    return request.model_copy(update={"trigger_tag": row.trigger_value, "provider": request.provider or row.provider})


def expand_request(tenant_id: str, request: ScheduleRequest, *, expander: ScheduleExpander) -> List[DeliveryDraft]:
    """Resolve any automation reference, then expand into drafts. Writes nothing."""
    return expander.expand(tenant_id, resolve_automation(tenant_id, request))


def insert_deliveries(
    tenant_id: str,
    drafts: List[DeliveryDraft],
    *,
    kind: str,
    now: Optional[datetime] = None,
) -> List[str]:
    """Insert every draft in one transaction. Returns the new ids."""
    created_at = _now(now)
    rows = [
        {
            "id": str(uuid4()),
            "tenant_id": tenant_id,
            "transcript_id": draft.transcript_id,
            "channel": draft.channel,
            "provider": draft.provider,
            "title": draft.title,
            "content": draft.content,
            "scheduled_at": draft.scheduled_at,
            "status": DeliveryStatus.SCHEDULED.value,
            "meta": draft.meta,
            "created_at": created_at,
            "updated_at": created_at,
        }
        for draft in drafts
    ]

    try:
        with get_db_session() as session:
            for row in rows:
                session.execute(insert(scheduled_posts).values(**row))
    except AppError:
        raise
    except Exception as e:
        logger.error(
            "[scheduling] insert failed, batch rolled back",
            extra={"tenant_id": tenant_id, "rows": len(rows), "error": str(e)},
        )
        raise ExpansionError("Failed to schedule deliveries; nothing was scheduled") from e

    for draft in drafts:
        deliveries_scheduled_total.inc(labels={"channel": draft.channel, "dispatch": draft.meta.get("dispatch", "direct")})
    logger.info(
        "[scheduling] scheduled",
        extra={"tenant_id": tenant_id, "count": len(rows), "kind": kind, "group_id": drafts[0].meta.get("group_id")},
    )
    return [row["id"] for row in rows]


def schedule(
    tenant_id: str,
    request: ScheduleRequest,
    *,
    expander: ScheduleExpander,
    now: Optional[datetime] = None,
) -> List[str]:
    """Expand the request and insert every row in one transaction. Returns the new ids."""
    drafts = expand_request(tenant_id, request, expander=expander)
    return insert_deliveries(tenant_id, drafts, kind=request.kind, now=now)


def list_deliveries(tenant_id: str, status: Optional[DeliveryStatus] = None) -> List[ScheduledDelivery]:
    query = select(scheduled_posts).where(scheduled_posts.c.tenant_id == tenant_id)
    if status is not None:
        query = query.where(scheduled_posts.c.status == DeliveryStatus(status).value)
    query = query.order_by(scheduled_posts.c.scheduled_at, scheduled_posts.c.created_at)
    with get_db_session() as session:
        rows = session.execute(query).fetchall()
    return [_row_to_delivery(row) for row in rows]


def get_delivery(tenant_id: str, delivery_id: str) -> ScheduledDelivery:
    with get_db_session() as session:
        row = session.execute(
            select(scheduled_posts)
            .where(scheduled_posts.c.id == delivery_id)
            .where(scheduled_posts.c.tenant_id == tenant_id)
        ).first()
    if row is None:
        raise NotFoundError(f"Scheduled delivery {delivery_id} not found")
    return _row_to_delivery(row)


def update_delivery(tenant_id: str, delivery_id: str, changes: DeliveryUpdate, *, now: Optional[datetime] = None) -> ScheduledDelivery:
    """Edit a pending delivery. Sent and failed rows are immutable."""
    current = get_delivery(tenant_id, delivery_id)
    if current.status != DeliveryStatus.SCHEDULED:
        raise ConflictError(f"Delivery is {current.status.value}; only scheduled deliveries can be edited")

    values = changes.model_dump(exclude_none=True)
    if "scheduled_at" in values:
        values["scheduled_at"] = as_utc(values["scheduled_at"])
    if not values:
        return current
    values["updated_at"] = _now(now)

    with get_db_session() as session:
        result = session.execute(
            update(scheduled_posts)
            .where(scheduled_posts.c.id == delivery_id)
            .where(scheduled_posts.c.tenant_id == tenant_id)
            .where(scheduled_posts.c.status == DeliveryStatus.SCHEDULED.value)
            .values(**values)
        )
        if result.rowcount == 0:
            raise ConflictError("Delivery changed state; only scheduled deliveries can be edited")
    return get_delivery(tenant_id, delivery_id)


def cancel_delivery(tenant_id: str, delivery_id: str) -> None:
    """Cancelling removes the row; there is no cancelled state."""
    current = get_delivery(tenant_id, delivery_id)
    if current.status != DeliveryStatus.SCHEDULED:
        raise ConflictError(f"Delivery is {current.status.value}; only scheduled deliveries can be cancelled")

    with get_db_session() as session:
        result = session.execute(
            delete(scheduled_posts)
            .where(scheduled_posts.c.id == delivery_id)
            .where(scheduled_posts.c.tenant_id == tenant_id)
            .where(scheduled_posts.c.status == DeliveryStatus.SCHEDULED.value)
        )
        if result.rowcount == 0:
            raise ConflictError("Delivery changed state; only scheduled deliveries can be cancelled")
    logger.info("[scheduling] cancelled", extra={"tenant_id": tenant_id, "delivery_id": delivery_id})


def transition_status(
    delivery_id: str,
    new_status: DeliveryStatus,
    *,
    error: Optional[str] = None,
    external_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ScheduledDelivery:
    """Record a dispatch outcome. Only Scheduled -> Sent | Failed is allowed."""
    new_status = DeliveryStatus(new_status)
    timestamp = _now(now)
    with get_db_session() as session:
        row = session.execute(select(scheduled_posts).where(scheduled_posts.c.id == delivery_id)).first()
        if row is None:
            raise NotFoundError(f"Scheduled delivery {delivery_id} not found")
        current = DeliveryStatus(row.status)
        if not can_transition(current, new_status):
            raise ConflictError(f"Cannot move delivery from {current.value} to {new_status.value}")

        values = {"status": new_status.value, "updated_at": timestamp, "last_error": error}
        if external_id is not None:
            values["external_id"] = external_id
        if new_status == DeliveryStatus.SENT:
            values["published_at"] = timestamp
        session.execute(update(scheduled_posts).where(scheduled_posts.c.id == delivery_id).values(**values))
        tenant_id = row.tenant_id

    logger.info(
        "[scheduling] status changed",
        extra={"delivery_id": delivery_id, "from_status": current.value, "to_status": new_status.value},
    )
    return get_delivery(tenant_id, delivery_id)
