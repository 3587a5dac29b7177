"""Tenant loading and current-tenant selection."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from rentline.exceptions import BackendError, TenancyLookupError, TenantAccessError
from rentline.models.domain import Membership, Tenant, to_membership, to_tenant
from rentline.types import Role

if TYPE_CHECKING:
    from rentline.storage.backend import Backend
    from rentline.storage.kv import KeyValueStore

logger = structlog.get_logger(__name__)


class TenancyStore:
    """Resolves which tenant is current and persists the selection.

    The persisted selection key is written only here.
    """

    def __init__(self, backend: Backend, persisted: KeyValueStore, selection_key: str) -> None:
        self._backend = backend
        self._persisted = persisted
        self._selection_key = selection_key

    async def load_tenants(self, identity_id: str) -> tuple[list[Tenant], list[Membership]]:
        """Return the tenants the identity owns or belongs to, in backend order."""
        try:
            records = await self._backend.get_tenants_for_identity(identity_id)
        except BackendError as exc:
            raise TenancyLookupError(str(exc)) from exc
        tenants = [to_tenant(r) for r in records]
        memberships = [m for r in records if (m := to_membership(r, identity_id)) is not None]
        logger.debug("tenants_loaded", identity_id=identity_id, count=len(tenants))
        return tenants, memberships

    def resolve_current(self, identity_id: str, tenants: list[Tenant]) -> Tenant | None:
        """Persisted selection if still valid, else the default tenant, else the first."""
        if not tenants:
            return None
        saved_id = self._persisted.get(self._selection_key)
        if saved_id:
            for tenant in tenants:
                if tenant.id == saved_id:
                    return tenant
            logger.info("stale_tenant_selection", identity_id=identity_id, tenant_id=saved_id)
        for tenant in tenants:
            if tenant.is_default:
                return tenant
        return tenants[0]

    def switch_tenant(self, tenant_id: str, tenants: list[Tenant]) -> Tenant:
        for tenant in tenants:
            if tenant.id == tenant_id:
                self._persisted.set(self._selection_key, tenant_id)
                return tenant
        raise TenantAccessError(f"Not a member of tenant {tenant_id}")

    @staticmethod
    def role_for(
        identity_id: str, tenant: Tenant | None, memberships: list[Membership]
    ) -> Role | None:
        """Owner when the identity created the tenant, else its membership role."""
        if tenant is None:
            return None
        if tenant.owner_id == identity_id:
            return Role.OWNER
        for membership in memberships:
            if membership.tenant_id == tenant.id:
                return membership.role
        return None

    @staticmethod
    def owns(identity_id: str, tenant: Tenant | None) -> bool:
        return tenant is not None and tenant.owner_id == identity_id

    def clear(self) -> None:
        self._persisted.clear(self._selection_key)
