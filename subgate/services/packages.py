from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from subgate.core.errors import Conflict, NotFound, ServerFault
from subgate.domain.models import Package
from subgate.persistence.repos import packages as packages_repo


logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = ("name", "price", "duration_days", "description", "features", "is_active")


class PackageInUse(Conflict):
    code = "PACKAGE_IN_USE"
    message = "Package is referenced by subscriptions; deactivate it instead"


def _clean_features(features: list[str] | None) -> list[str]:
    # Order is significant; blanks are dropped.
    return [feature.strip() for feature in features or [] if feature and feature.strip()]


async def list_public_packages(session: AsyncSession) -> list[Package]:
    return await packages_repo.list_active_packages(session)


async def list_all_packages(session: AsyncSession) -> list[Package]:
    return await packages_repo.list_all_packages(session)


async def get_package(session: AsyncSession, package_id: str) -> Package:
    package = await packages_repo.get_package(session, package_id)
    if package is None:
        raise NotFound("Package not found")
    return package


async def create_package(
    session: AsyncSession,
    *,
    name: str,
    price: float,
    duration_days: int,
    description: str | None = None,
    features: list[str] | None = None,
    is_active: bool = True,
) -> Package:
    package = Package(
        name=name.strip(),
        price=price,
        duration_days=duration_days,
        description=description.strip() if description else description,
        features_json=_clean_features(features),
        is_active=is_active,
    )
    try:
        session.add(package)
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise ServerFault("Failed to create package") from exc
    logger.info("package_created package_id=%s duration_days=%s", package.id, duration_days)
    return package


async def update_package(session: AsyncSession, package_id: str, changes: dict[str, Any]) -> Package:
    package = await get_package(session, package_id)
    for field in _UPDATABLE_FIELDS:
        if field not in changes or changes[field] is None:
            continue
        value = changes[field]
        if field == "features":
            package.features_json = _clean_features(value)
        elif field in ("name", "description"):
            setattr(package, field, value.strip())
        else:
            setattr(package, field, value)
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise ServerFault("Failed to update package") from exc
    logger.info("package_updated package_id=%s fields=%s", package.id, sorted(changes))
    return package


async def delete_package(session: AsyncSession, package_id: str) -> Package:
    package = await get_package(session, package_id)
    references = await packages_repo.count_package_references(session, package_id)
    if references:
        # Deleting would leave subscriptions pointing at nothing.
        raise PackageInUse(details={"subscriptions": references})
    try:
        await session.delete(package)
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise ServerFault("Failed to delete package") from exc
    logger.info("package_deleted package_id=%s", package_id)
    return package
