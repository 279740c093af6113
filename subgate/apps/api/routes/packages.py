from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from subgate.apps.api.deps import get_db, require_admin
from subgate.apps.api.openapi import CONFLICT_RESPONSE, DEFAULT_ERROR_RESPONSES, NOT_FOUND_RESPONSE
from subgate.apps.api.response import MessageResponse
from subgate.domain.models import Package
from subgate.services import packages as packages_service
from subgate.services.audit import record_request_event
from subgate.services.auth.pipeline import AccessContext


router = APIRouter(prefix="/packages", tags=["packages"], responses=DEFAULT_ERROR_RESPONSES)


class PackageResponse(BaseModel):
    id: str
    name: str
    price: float
    duration_days: int
    description: str | None
    features: list[str]
    is_active: bool
    created_at: datetime
    updated_at: datetime


class PackageCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    price: float = Field(ge=0)
    # 0 grants lifetime access.
    duration_days: int = Field(ge=0)
    description: str | None = None
    features: list[str] = Field(default_factory=list)
    is_active: bool = True


class PackageUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    price: float | None = Field(default=None, ge=0)
    duration_days: int | None = Field(default=None, ge=0)
    description: str | None = None
    features: list[str] | None = None
    is_active: bool | None = None


def _to_payload(package: Package) -> PackageResponse:
    return PackageResponse(
        id=package.id,
        name=package.name,
        price=float(package.price),
        duration_days=package.duration_days,
        description=package.description,
        features=list(package.features_json or []),
        is_active=package.is_active,
        created_at=package.created_at,
        updated_at=package.updated_at,
    )


@router.get("", response_model=list[PackageResponse])
async def list_packages(db: AsyncSession = Depends(get_db)) -> list[PackageResponse]:
    # Public catalog; no session required.
    return [_to_payload(package) for package in await packages_service.list_public_packages(db)]


@router.get("/all", response_model=list[PackageResponse])
async def list_all_packages(
    _admin: AccessContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> list[PackageResponse]:
    return [_to_payload(package) for package in await packages_service.list_all_packages(db)]


@router.post("", response_model=PackageResponse, status_code=201)
async def create_package(
    payload: PackageCreateRequest,
    request: Request,
    admin: AccessContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> PackageResponse:
    package = await packages_service.create_package(
        db,
        name=payload.name,
        price=payload.price,
        duration_days=payload.duration_days,
        description=payload.description,
        features=payload.features,
        is_active=payload.is_active,
    )
    await record_request_event(
        request,
        session=db,
        actor_id=admin.user.id,
        actor_role=admin.user.role,
        event_type="package.created",
        resource_type="package",
        resource_id=package.id,
    )
    return _to_payload(package)


@router.put("/{package_id}", response_model=PackageResponse, responses=NOT_FOUND_RESPONSE)
async def update_package(
    package_id: str,
    payload: PackageUpdateRequest,
    request: Request,
    admin: AccessContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> PackageResponse:
    changes = payload.model_dump(exclude_none=True)
    package = await packages_service.update_package(db, package_id, changes)
    await record_request_event(
        request,
        session=db,
        actor_id=admin.user.id,
        actor_role=admin.user.role,
        event_type="package.updated",
        resource_type="package",
        resource_id=package.id,
        metadata={"fields": sorted(changes)},
    )
    return _to_payload(package)


@router.delete(
    "/{package_id}",
    response_model=MessageResponse,
    responses={**NOT_FOUND_RESPONSE, **CONFLICT_RESPONSE},
)
async def delete_package(
    package_id: str,
    request: Request,
    admin: AccessContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await packages_service.delete_package(db, package_id)
    await record_request_event(
        request,
        session=db,
        actor_id=admin.user.id,
        actor_role=admin.user.role,
        event_type="package.deleted",
        resource_type="package",
        resource_id=package_id,
    )
    return MessageResponse(message="Package deleted successfully")
