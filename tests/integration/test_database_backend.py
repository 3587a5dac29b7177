"""Integration tests for DatabaseBackend against SQLite."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
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
from rentline.storage.backend import DatabaseBackend
from rentline.types import PackageType

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


async def _add(engine: AsyncEngine, *rows: object) -> None:
    async with AsyncSession(engine) as session:
        for row in rows:
            session.add(row)
        await session.commit()


@pytest.mark.integration
class TestIdentityQueries:
    async def test_get_identity(self, async_engine: AsyncEngine) -> None:
        await _add(
            async_engine,
            UserProfile(user_id="u1", email="a@example.com", first_name="Ana", selected_tier="free"),
            SuperAdmin(user_id="u1"),
        )
        identity = await DatabaseBackend(async_engine).get_identity("u1")
        assert identity is not None
        assert identity.email == "a@example.com"
        assert identity.privileged is True
        assert identity.selected_tier == "free"

    async def test_unknown_identity(self, async_engine: AsyncEngine) -> None:
        assert await DatabaseBackend(async_engine).get_identity("ghost") is None

    async def test_inactive_super_admin_is_not_privileged(self, async_engine: AsyncEngine) -> None:
        await _add(async_engine, SuperAdmin(user_id="u1", is_active=False))
        assert await DatabaseBackend(async_engine).check_privileged("u1") is False


@pytest.mark.integration
class TestTenantQueries:
    async def test_owned_and_member_businesses_oldest_first(self, async_engine: AsyncEngine) -> None:
        base = datetime(2024, 1, 1)
        await _add(
            async_engine,
            Business(id="b2", owner_user_id="u9", business_name="Beta", created_at=base + timedelta(days=1)),
            Business(id="b1", owner_user_id="u1", business_name="Acme", created_at=base),
            Business(id="b3", owner_user_id="u9", business_name="Gamma", created_at=base),
            Business(id="b4", owner_user_id="u1", business_name="Closed", is_active=False),
        )
        await _add(async_engine, BusinessMember(business_id="b2", user_id="u1", role="accounting"))

        records = await DatabaseBackend(async_engine).get_tenants_for_identity("u1")
        assert [r.id for r in records] == ["b1", "b2"]
        assert records[0].my_role is None
        assert records[1].my_role == "accounting"
        assert records[1].my_member_id is not None

    async def test_inactive_membership_is_ignored(self, async_engine: AsyncEngine) -> None:
        await _add(async_engine, Business(id="b2", owner_user_id="u9", business_name="Beta"))
        await _add(
            async_engine,
            BusinessMember(business_id="b2", user_id="u1", role="viewer", is_active=False),
        )
        assert await DatabaseBackend(async_engine).get_tenants_for_identity("u1") == []


@pytest.mark.integration
class TestPackageQueries:
    async def test_tenant_package_with_overrides(self, async_engine: AsyncEngine) -> None:
        await _add(
            async_engine,
            PackageTierRow(
                id="t1",
                tier_slug="management_pro",
                package_type="management_company",
                max_properties=100,
                features={"owner_portal": True},
            ),
        )
        await _add(
            async_engine,
            OrganizationPackageSettings(
                organization_id="b1",
                package_tier_id="t1",
                custom_max_properties=150,
                custom_features={"owner_portal": False},
            ),
        )
        package = await DatabaseBackend(async_engine).get_tenant_package("b1")
        assert package is not None
        tier, overrides = package
        assert tier.package_type == PackageType.MANAGEMENT_COMPANY
        assert tier.features == {"owner_portal": True}
        assert overrides.custom_max_properties == 150
        assert overrides.custom_features == {"owner_portal": False}

    async def test_no_package_assigned(self, async_engine: AsyncEngine) -> None:
        assert await DatabaseBackend(async_engine).get_tenant_package("b1") is None

    async def test_tier_by_slug_skips_inactive(self, async_engine: AsyncEngine) -> None:
        await _add(
            async_engine,
            PackageTierRow(tier_slug="free"),
            PackageTierRow(tier_slug="legacy", is_active=False),
        )
        backend = DatabaseBackend(async_engine)
        assert (await backend.get_tier_by_slug("free")).tier_slug == "free"
        assert await backend.get_tier_by_slug("legacy") is None


@pytest.mark.integration
class TestOwnerClass:
    async def test_legacy_property_owner(self, async_engine: AsyncEngine) -> None:
        await _add(async_engine, PropertyOwner(user_id="u1"))
        assert await DatabaseBackend(async_engine).is_restricted_owner_class("u1") is True

    async def test_portal_property_owner(self, async_engine: AsyncEngine) -> None:
        await _add(async_engine, Business(id="b1", business_name="Acme"))
        await _add(async_engine, BusinessUser(business_id="b1", auth_user_id="u1", role="property_owner"))
        assert await DatabaseBackend(async_engine).is_restricted_owner_class("u1") is True

    async def test_portal_tenant_is_not_restricted(self, async_engine: AsyncEngine) -> None:
        await _add(async_engine, Business(id="b1", business_name="Acme"))
        await _add(async_engine, BusinessUser(business_id="b1", auth_user_id="u1", role="tenant"))
        assert await DatabaseBackend(async_engine).is_restricted_owner_class("u1") is False


@pytest.mark.integration
class TestFailures:
    async def test_missing_tables_raise_backend_error(self) -> None:
        engine = create_async_engine("sqlite+aiosqlite:///:memory:")
        try:
            with pytest.raises(BackendError):
                await DatabaseBackend(engine).get_tenants_for_identity("u1")
        finally:
            await engine.dispose()


@pytest.mark.integration
class TestInitDb:
    async def test_creates_tables(self) -> None:
        from rentline.storage.database import init_db

        engine = create_async_engine("sqlite+aiosqlite:///:memory:")
        try:
            await init_db(engine)
            assert await DatabaseBackend(engine).get_tenants_for_identity("u1") == []
        finally:
            await engine.dispose()
