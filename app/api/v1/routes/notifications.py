from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from api.dependencies.rate_limits import get_limiter
from infrastructure.events import Event
from infrastructure.logging import get_module_logger
from infrastructure.services import EventBusDep, NotificationServiceDep

logger = get_module_logger()
router = APIRouter(prefix="/notifications", tags=["Notifications"])
limiter = get_limiter()


class DomainEventRequest(BaseModel):
    """A domain event submitted for notification planning."""

    event_type: str = Field(..., min_length=1)
    event_id: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    lifecycle_state: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class ReplayRequest(BaseModel):
    replayed_by: str = Field(..., min_length=1)
    limit: int = Field(default=100, ge=1, le=1000)


@router.post("/{tenant_id}/events", status_code=202)
@limiter.limit("120/minute")
def publish_domain_event(
    tenant_id: str,
    request: Request,  # pylint: disable=unused-argument
    body: DomainEventRequest,
    event_bus: EventBusDep,
):
    """Publish a domain event; subscribed planners enqueue a plan job."""
    event = Event(
        event_type=body.event_type,
        tenant_id=tenant_id,
        payload=body.model_dump(exclude={"event_type"}, exclude_none=True),
    )
    event_bus.publish(event)
    return {"correlation_id": str(event.correlation_id)}


@router.get("/{tenant_id}/messages/{message_id}/explain")
def explain_message(tenant_id: str, message_id: str, service: NotificationServiceDep):
    """Return the decision trace of a notification message."""
    trace = service.explain(tenant_id, message_id)
    if trace is None:
        raise HTTPException(status_code=404, detail="Message not found")
    return trace.model_dump(mode="json")


@router.get("/{tenant_id}/dlq")
def list_dead_letters(
    tenant_id: str,
    service: NotificationServiceDep,
    unreplayed_only: bool = Query(default=False),
    limit: int = Query(default=100, ge=1, le=1000),
):
    entries = service.dlq.list(tenant_id, unreplayed_only=unreplayed_only, limit=limit)
    return {"entries": [entry.model_dump(mode="json") for entry in entries]}


@router.get("/{tenant_id}/dlq/{entry_id}")
def inspect_dead_letter(tenant_id: str, entry_id: str, service: NotificationServiceDep):
    entry = service.dlq.inspect(tenant_id, entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="DLQ entry not found")
    return entry.model_dump(mode="json")


@router.post("/{tenant_id}/dlq/{entry_id}/retry")
def retry_dead_letter(
    tenant_id: str,
    entry_id: str,
    body: ReplayRequest,
    service: NotificationServiceDep,
):
    """Replay one dead-lettered delivery as a fresh delivery."""
    if not service.dlq.retry(tenant_id, entry_id, body.replayed_by):
        raise HTTPException(status_code=404, detail="DLQ entry not found")
    return {"replayed": True}


@router.post("/{tenant_id}/dlq/replay")
def bulk_replay_dead_letters(
    tenant_id: str, body: ReplayRequest, service: NotificationServiceDep
):
    result = service.dlq.bulk_replay(tenant_id, body.replayed_by, limit=body.limit)
    logger.info(
        "dlq_bulk_replay_requested",
        tenant_id=tenant_id,
        replayed=result.replayed,
        errors=result.errors,
    )
    return {"replayed": result.replayed, "errors": result.errors}
