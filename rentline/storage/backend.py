"""Backend query surface consumed by session resolution, backed by PostgreSQL."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

import structlog
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from rentline.exceptions import BackendError
from rentline.models.database import (
    Business,
    BusinessMember,
    BusinessUser,
    OrganizationPackageSettings,
    PackageTierRow,
    PropertyOwner,
    SuperAdmin,
    UserProfile,
)
from rentline.models.domain import Identity, PackageOverrides, PackageTier, TenantRecord

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)


class Backend(Protocol):
    """Remote calls that may fail independently of one another."""

    async def get_identity(self, identity_id: str) -> Identity | None: ...

    async def get_tenants_for_identity(self, identity_id: str) -> list[TenantRecord]: ...

    async def get_tenant_package(
        self, tenant_id: str
    ) -> tuple[PackageTier, PackageOverrides] | None: ...

    async def get_tier_by_slug(self, slug: str) -> PackageTier | None: ...

    async def check_privileged(self, identity_id: str) -> bool: ...

    async def is_restricted_owner_class(self, identity_id: str) -> bool: ...


def _to_tier(row: PackageTierRow) -> PackageTier:
    return PackageTier(
        id=row.id,
        tier_slug=row.tier_slug,
        tier_name=row.tier_name,
        package_type=row.package_type,
        max_businesses=row.max_businesses,
        max_properties=row.max_properties,
        max_units=row.max_units,
        max_tenants=row.max_tenants,
        max_users=row.max_users,
        max_payment_methods=row.max_payment_methods,
        features=dict(row.features or {}),
    )


class DatabaseBackend:
    """SQLModel implementation of the backend query surface.

    Storage errors are re-raised as ``BackendError``; callers decide whether
    a failure is fatal.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def get_identity(self, identity_id: str) -> Identity | None:
        try:
            async with AsyncSession(self._engine) as session:
                stmt = select(UserProfile).where(col(UserProfile.user_id) == identity_id)
                profile = (await session.execute(stmt)).scalars().first()
                if profile is None:
                    return None
                privileged = await self._is_super_admin(session, identity_id)
        except SQLAlchemyError as exc:
            raise BackendError(f"identity lookup failed: {exc}") from exc
        return Identity(
            id=identity_id,
            email=profile.email,
            privileged=privileged,
            first_name=profile.first_name,
            last_name=profile.last_name,
            phone=profile.phone,
            selected_tier=profile.selected_tier,
        )

    async def get_tenants_for_identity(self, identity_id: str) -> list[TenantRecord]:
        """Businesses the identity owns or holds an active membership in, oldest first."""
        try:
            async with AsyncSession(self._engine) as session:
                member_stmt = select(BusinessMember).where(
                    col(BusinessMember.user_id) == identity_id,
                    col(BusinessMember.is_active).is_(True),
                )
                memberships = {
                    m.business_id: m for m in (await session.execute(member_stmt)).scalars().all()
                }
                biz_stmt = (
                    select(Business)
                    .where(
                        col(Business.is_active).is_(True),
                        or_(
                            col(Business.owner_user_id) == identity_id,
                            col(Business.id).in_(list(memberships)),
                        ),
                    )
                    .order_by(col(Business.created_at))
                )
                businesses = (await session.execute(biz_stmt)).scalars().all()
        except SQLAlchemyError as exc:
            raise BackendError(f"tenant lookup failed: {exc}") from exc

        records = []
        for biz in businesses:
            member = memberships.get(biz.id)
            records.append(
                TenantRecord(
                    id=biz.id,
                    name=biz.business_name,
                    owner_user_id=biz.owner_user_id,
                    is_default=biz.is_default,
                    public_page=dict(biz.public_page or {}),
                    created_at=biz.created_at,
                    my_role=member.role if member else None,
                    my_member_id=member.id if member else None,
                )
            )
        return records

    async def get_tenant_package(
        self, tenant_id: str
    ) -> tuple[PackageTier, PackageOverrides] | None:
        try:
            async with AsyncSession(self._engine) as session:
                stmt = select(OrganizationPackageSettings).where(
                    col(OrganizationPackageSettings.organization_id) == tenant_id
                )
                settings = (await session.execute(stmt)).scalars().first()
                if settings is None or not settings.package_tier_id:
                    return None
                tier = await session.get(PackageTierRow, settings.package_tier_id)
        except SQLAlchemyError as exc:
            raise BackendError(f"package lookup failed: {exc}") from exc
        if tier is None:
            raise BackendError(f"package tier {settings.package_tier_id} not found")
        overrides = PackageOverrides(
            custom_max_businesses=settings.custom_max_businesses,
            custom_max_properties=settings.custom_max_properties,
            custom_max_units=settings.custom_max_units,
            custom_max_tenants=settings.custom_max_tenants,
            custom_max_users=settings.custom_max_users,
            custom_max_payment_methods=settings.custom_max_payment_methods,
            custom_features=settings.custom_features,
        )
        return _to_tier(tier), overrides

    async def get_tier_by_slug(self, slug: str) -> PackageTier | None:
        try:
            async with AsyncSession(self._engine) as session:
                stmt = select(PackageTierRow).where(
                    col(PackageTierRow.tier_slug) == slug,
                    col(PackageTierRow.is_active).is_(True),
                )
                row = (await session.execute(stmt)).scalars().first()
        except SQLAlchemyError as exc:
            raise BackendError(f"tier lookup failed: {exc}") from exc
        return _to_tier(row) if row else None

    async def check_privileged(self, identity_id: str) -> bool:
        try:
            async with AsyncSession(self._engine) as session:
                return await self._is_super_admin(session, identity_id)
        except SQLAlchemyError as exc:
            raise BackendError(f"privilege check failed: {exc}") from exc

    async def is_restricted_owner_class(self, identity_id: str) -> bool:
        """True for property owners: legacy owner rows or a property_owner portal role."""
        try:
            async with AsyncSession(self._engine) as session:
                legacy_stmt = select(PropertyOwner.id).where(
                    col(PropertyOwner.user_id) == identity_id,
                    col(PropertyOwner.is_active).is_(True),
                )
                if (await session.execute(legacy_stmt)).first() is not None:
                    return True
                portal_stmt = select(BusinessUser.id).where(
                    col(BusinessUser.auth_user_id) == identity_id,
                    col(BusinessUser.role) == "property_owner",
                    col(BusinessUser.is_active).is_(True),
                )
                return (await session.execute(portal_stmt)).first() is not None
        except SQLAlchemyError as exc:
            raise BackendError(f"owner class check failed: {exc}") from exc

    @staticmethod
    async def _is_super_admin(session: AsyncSession, identity_id: str) -> bool:
        stmt = select(SuperAdmin.id).where(
            col(SuperAdmin.user_id) == identity_id,
            col(SuperAdmin.is_active).is_(True),
        )
        return (await session.execute(stmt)).first() is not None
