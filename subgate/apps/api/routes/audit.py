from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from subgate.apps.api.deps import get_db, require_admin
from subgate.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from subgate.domain.models import AuditEvent
from subgate.services.audit import list_events
from subgate.services.auth.pipeline import AccessContext


router = APIRouter(prefix="/audit", tags=["audit"], responses=DEFAULT_ERROR_RESPONSES)


class AuditEventResponse(BaseModel):
    id: int
    occurred_at: datetime
    actor_id: str | None
    actor_role: str | None
    event_type: str
    outcome: str
    resource_type: str | None
    resource_id: str | None
    request_id: str | None
    metadata: dict[str, Any]
    error_code: str | None


def _to_payload(event: AuditEvent) -> AuditEventResponse:
    return AuditEventResponse(
        id=event.id,
        occurred_at=event.occurred_at,
        actor_id=event.actor_id,
        actor_role=event.actor_role,
        event_type=event.event_type,
        outcome=event.outcome,
        resource_type=event.resource_type,
        resource_id=event.resource_id,
        request_id=event.request_id,
        metadata=event.metadata_json or {},
        error_code=event.error_code,
    )


@router.get("/events", response_model=list[AuditEventResponse])
async def get_audit_events(
    event_type: str | None = Query(default=None),
    resource_id: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    _admin: AccessContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> list[AuditEventResponse]:
    events = await list_events(db, event_type=event_type, resource_id=resource_id, limit=limit)
    return [_to_payload(event) for event in events]
