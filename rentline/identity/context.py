"""Session context published to the rest of the application."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from rentline.identity.entitlements import Entitlement
from rentline.identity.permissions import CapabilitySet
from rentline.models.domain import Identity, ImpersonationRecord, Membership, Tenant
from rentline.types import ClientType, Role, SessionState


@dataclass(frozen=True, slots=True)
class SessionContext:
    """Immutable snapshot of who is acting, as whom, with what rights.

    Capabilities and entitlement are always computed for ``effective_identity``
    and ``current_tenant`` of the same snapshot.
    """

    state: SessionState = SessionState.ANONYMOUS
    identity: Identity | None = None
    effective_identity: Identity | None = None
    impersonation: ImpersonationRecord | None = None
    tenants: tuple[Tenant, ...] = ()
    current_tenant: Tenant | None = None
    membership: Membership | None = None
    role: Role | None = None
    restricted_owner: bool = False
    capabilities: CapabilitySet = field(default_factory=CapabilitySet.empty)
    entitlement: Entitlement = field(default_factory=Entitlement.unknown)
    generation: int = 0

    @property
    def is_authenticated(self) -> bool:
        return self.state == SessionState.AUTHENTICATED and self.identity is not None

    @property
    def is_impersonating(self) -> bool:
        return self.impersonation is not None

    @property
    def is_privileged(self) -> bool:
        return self.identity is not None and self.identity.privileged

    @property
    def has_multiple_tenants(self) -> bool:
        return len(self.tenants) > 1

    @property
    def client_type(self) -> ClientType:
        return self.entitlement.client_type

    def has_permission(self, permission: str | Iterable[str]) -> bool:
        return self.capabilities.has_permission(permission)

    def can_manage_properties(self) -> bool:
        return self.capabilities.can_manage_properties()

    def can_manage_payments(self) -> bool:
        return self.capabilities.can_manage_payments()

    def can_view_reports(self) -> bool:
        return self.capabilities.can_view_reports()

    def can_manage_businesses(self) -> bool:
        return self.capabilities.can_manage_businesses()

    def can_manage_clients(self) -> bool:
        """Only property-management clients manage client businesses."""
        if self.client_type != ClientType.PROPERTY_MANAGER:
            return False
        return self.capabilities.can_manage_properties()


ANONYMOUS = SessionContext()
