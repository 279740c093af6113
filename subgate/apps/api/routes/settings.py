from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from subgate.apps.api.deps import get_db, require_admin
from subgate.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from subgate.domain.models import AppSettings
from subgate.services import app_settings as app_settings_service
from subgate.services.audit import record_request_event
from subgate.services.auth.pipeline import AccessContext


router = APIRouter(prefix="/settings", tags=["settings"], responses=DEFAULT_ERROR_RESPONSES)


class SettingsResponse(BaseModel):
    contact_number: str
    updated_at: datetime


class SettingsUpdateRequest(BaseModel):
    contact_number: str | None = Field(default=None, max_length=64)


def _to_payload(row: AppSettings) -> SettingsResponse:
    return SettingsResponse(contact_number=row.contact_number, updated_at=row.updated_at)


@router.get("", response_model=SettingsResponse)
async def get_settings_record(db: AsyncSession = Depends(get_db)) -> SettingsResponse:
    return _to_payload(await app_settings_service.get_or_create(db))


@router.put("", response_model=SettingsResponse)
async def update_settings_record(
    payload: SettingsUpdateRequest,
    request: Request,
    admin: AccessContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> SettingsResponse:
    row = await app_settings_service.update_settings(db, contact_number=payload.contact_number)
    await record_request_event(
        request,
        session=db,
        actor_id=admin.user.id,
        actor_role=admin.user.role,
        event_type="settings.updated",
        resource_type="settings",
        resource_id=str(row.id),
    )
    return _to_payload(row)
