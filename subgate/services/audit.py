from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import HTTPConnection

from subgate.domain.models import AuditEvent, utc_now
from subgate.persistence.db import SessionLocal


logger = logging.getLogger(__name__)

# Substrings that mark a metadata key as credential-bearing.
_REDACT_MARKERS = ("password", "token", "secret", "cookie", "authorization")
REDACTED = "[REDACTED]"


@dataclass(frozen=True)
class RequestContext:
    request_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    @classmethod
    def from_connection(cls, conn: HTTPConnection | None) -> "RequestContext":
        # Identifiers and client hints only; cookies never reach the audit log.
        if conn is None:
            return cls()
        return cls(
            request_id=getattr(conn.state, "request_id", None) or conn.headers.get("X-Request-Id"),
            ip_address=conn.client.host if conn.client else None,
            user_agent=conn.headers.get("user-agent"),
        )


def sanitize_metadata(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            str(key): REDACTED
            if any(marker in str(key).lower() for marker in _REDACT_MARKERS)
            else sanitize_metadata(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [sanitize_metadata(item) for item in value]
    return value


async def _persist(session: AsyncSession, event: AuditEvent, *, commit: bool) -> None:
    try:
        session.add(event)
        if commit:
            await session.commit()
    except SQLAlchemyError as exc:
        if commit:
            await session.rollback()
        # Best-effort: a lost audit row never fails the caller.
        logger.warning(
            "audit_write_failed event_type=%s request_id=%s",
            event.event_type,
            event.request_id,
            exc_info=exc,
        )


async def record_event(
    *,
    session: AsyncSession | None = None,
    actor_id: str | None,
    actor_role: str | None,
    event_type: str,
    outcome: str,
    resource_type: str | None = None,
    resource_id: str | None = None,
    context: RequestContext | None = None,
    metadata: dict[str, Any] | None = None,
    error_code: str | None = None,
    commit: bool = False,
) -> None:
    """Append one audit row.

    Without a session the row is written through a short-lived session of its
    own, so it survives a rollback of the caller's unit of work.
    """
    context = context or RequestContext()
    event = AuditEvent(
        occurred_at=utc_now(),
        actor_id=actor_id,
        actor_role=actor_role,
        event_type=event_type,
        outcome=outcome,
        resource_type=resource_type,
        resource_id=resource_id,
        request_id=context.request_id,
        ip_address=context.ip_address,
        user_agent=context.user_agent,
        metadata_json=sanitize_metadata(metadata or {}),
        error_code=error_code,
    )
    if session is not None:
        await _persist(session, event, commit=commit)
        return
    async with SessionLocal() as own_session:
        await _persist(own_session, event, commit=True)


async def record_request_event(
    conn: HTTPConnection,
    *,
    session: AsyncSession | None,
    actor_id: str | None,
    actor_role: str | None,
    event_type: str,
    outcome: str = "success",
    resource_type: str | None = None,
    resource_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    error_code: str | None = None,
) -> None:
    await record_event(
        session=session,
        actor_id=actor_id,
        actor_role=actor_role,
        event_type=event_type,
        outcome=outcome,
        resource_type=resource_type,
        resource_id=resource_id,
        context=RequestContext.from_connection(conn),
        metadata=metadata,
        error_code=error_code,
        commit=session is not None,
    )


async def list_events(
    session: AsyncSession,
    *,
    event_type: str | None = None,
    resource_id: str | None = None,
    limit: int = 100,
) -> list[AuditEvent]:
    query = select(AuditEvent)
    if event_type:
        query = query.where(AuditEvent.event_type == event_type)
    if resource_id:
        query = query.where(AuditEvent.resource_id == resource_id)
    result = await session.execute(
        query.order_by(AuditEvent.occurred_at.desc(), AuditEvent.id.desc()).limit(limit)
    )
    return list(result.scalars().all())
