"""Session orchestration: identity, tenancy, entitlement, capabilities, expiry.

Every resolution captures the generation current when it started and drops
its result if a newer resolution or a sign-out has begun since. State is only
mutated between awaits, so the single event loop needs no locks.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

import structlog

from rentline.config.settings import Settings, get_settings
from rentline.exceptions import (
    AuditWriteFailure,
    AuthFailure,
    BackendError,
    NotPrivileged,
    RentlineError,
    TenancyLookupError,
    TenantAccessError,
)
from rentline.identity.context import SessionContext
from rentline.identity.entitlements import EntitlementResolver
from rentline.identity.impersonation import ImpersonationController
from rentline.identity.permissions import PermissionEngine
from rentline.identity.tenancy import TenancyStore
from rentline.models.domain import Identity
from rentline.types import AuthEventType, SessionState

if TYPE_CHECKING:
    from rentline.audit.logger import AuditLog
    from rentline.auth.provider import AuthProvider
    from rentline.models.domain import AuthEvent, ImpersonationRecord, Membership, Tenant
    from rentline.storage.backend import Backend
    from rentline.storage.kv import KeyValueStore

logger = structlog.get_logger(__name__)

SessionListener = Callable[[SessionContext], None]


class SessionManager:
    """Single source of truth for who is acting, as whom, and with what rights."""

    def __init__(
        self,
        auth: AuthProvider,
        backend: Backend,
        audit_log: AuditLog,
        persisted: KeyValueStore,
        transient: KeyValueStore,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
        on_expiry_warning: Callable[[float], None] | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._auth = auth
        self._backend = backend
        self._tenancy = TenancyStore(backend, persisted, settings.tenant_selection_key)
        self._entitlements = EntitlementResolver(backend)
        self._permissions = PermissionEngine()
        self._impersonation = ImpersonationController(audit_log, backend, transient)
        self._default_tier = settings.default_tier_slug
        self._timeout = settings.inactivity_timeout_seconds
        self._check_interval = settings.activity_check_interval_seconds
        self._warning_lead = settings.expiry_warning_seconds
        self._clock = clock
        self._on_expiry_warning = on_expiry_warning

        self._context = SessionContext()
        self._generation = 0
        self._last_activity = clock()
        self._warned = False
        self._signing_out = False
        self._pending_tenant_id: str | None = None
        self._rejected_tenant_id: str | None = None
        self._inflight = 0
        self._settled = asyncio.Event()
        self._settled.set()
        self._listeners: list[SessionListener] = []
        self._timer_task: asyncio.Task[None] | None = None
        self._unsubscribe_auth: Callable[[], None] | None = None

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def context(self) -> SessionContext:
        return self._context

    @property
    def last_activity(self) -> float:
        return self._last_activity

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register a callback invoked with every newly published context."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> SessionContext:
        """Restore an existing credential, if any, and resolve the session."""
        if self._unsubscribe_auth is None:
            self._unsubscribe_auth = self._auth.subscribe(self.on_auth_event)
        self.record_activity()
        return await self._resolve("initialize")

    def start(self) -> None:
        """Start the background inactivity timer."""
        if self._timer_task is None or self._timer_task.done():
            self._timer_task = asyncio.create_task(self._run_timer())

    async def aclose(self) -> None:
        if self._timer_task is not None:
            self._timer_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._timer_task
            self._timer_task = None
        if self._unsubscribe_auth is not None:
            self._unsubscribe_auth()
            self._unsubscribe_auth = None

    async def on_auth_event(self, event: AuthEvent) -> None:
        if event.type == AuthEventType.SIGNED_OUT:
            if not self._signing_out:
                self._teardown(SessionState.ANONYMOUS, reason="signed_out")
            return
        if event.type == AuthEventType.SIGNED_IN:
            current = self._context.identity
            if self._context.is_authenticated and current and current.id == event.identity_id:
                return
            self.record_activity()
            await self._resolve("signed_in")
            return
        logger.debug("auth_event_ignored", event=event.type.value)

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def login(self, email: str, secret: str) -> SessionContext:
        """Sign in; ``AuthFailure`` leaves the session as it was."""
        user_id = await self._auth.sign_in(email, secret)
        self.record_activity()
        return await self._ensure_resolved_for(user_id, "login")

    async def register(
        self,
        email: str,
        secret: str,
        first_name: str = "",
        last_name: str = "",
        tier_slug: str | None = None,
    ) -> SessionContext:
        user_id = await self._auth.sign_up(
            email, secret, first_name, last_name, tier_slug or self._default_tier
        )
        self.record_activity()
        return await self._ensure_resolved_for(user_id, "register")

    async def logout(self) -> SessionContext:
        """Sign out and clear every persisted selection and transient marker."""
        return await self._logout(SessionState.ANONYMOUS)

    async def refetch(self) -> SessionContext:
        return await self._resolve("refetch")

    # ------------------------------------------------------------------
    # Tenancy and impersonation
    # ------------------------------------------------------------------

    async def switch_tenant(self, tenant_id: str) -> SessionContext:
        """Make ``tenant_id`` current.

        The request is held until a resolution loads the tenant list, so a
        resolution started later for another reason still applies it. Raises
        ``TenantAccessError`` if the effective identity is not a member; the
        session is then re-published with its previous selection.
        """
        if self._context.identity is None:
            raise TenantAccessError("No authenticated session")
        self.record_activity()
        self._pending_tenant_id = tenant_id
        self._rejected_tenant_id = None
        context = await self._resolve("switch_tenant")
        if self._rejected_tenant_id == tenant_id:
            self._rejected_tenant_id = None
            raise TenantAccessError(f"Not a member of tenant {tenant_id}")
        return context

    async def start_impersonation(self, target_id: str) -> SessionContext:
        actor = self._context.identity
        if actor is None or not self._context.is_authenticated:
            raise NotPrivileged("No authenticated session")
        self.record_activity()
        try:
            await self._impersonation.start(actor, target_id)
        except AuditWriteFailure:
            # A retarget may have closed the previous impersonation before failing.
            shown = _target_of(self._context.impersonation)
            if _target_of(self._impersonation.active()) != shown:
                await self._resolve("impersonation_rollback")
            raise
        return await self._resolve("impersonation_start")

    async def stop_impersonation(self) -> SessionContext:
        actor = self._context.identity
        if actor is None:
            return self._context
        self.record_activity()
        record = await self._impersonation.stop(actor)
        if record is None:
            return self._context
        return await self._resolve("impersonation_stop")

    # ------------------------------------------------------------------
    # Inactivity
    # ------------------------------------------------------------------

    def record_activity(self) -> None:
        """Note a user interaction (pointer, key, scroll, touch)."""
        self._last_activity = self._clock()
        self._warned = False

    async def check_inactivity(self) -> SessionState:
        """One timer tick: expire the session once the idle threshold is passed."""
        if self._context.state != SessionState.AUTHENTICATED:
            return self._context.state

        idle = self._clock() - self._last_activity
        if idle > self._timeout:
            logger.info(
                "session_expired",
                identity_id=self._context.identity.id if self._context.identity else None,
                idle_seconds=round(idle, 1),
            )
            try:
                await self._logout(SessionState.EXPIRED)
            except RentlineError as exc:
                logger.warning("expiry_sign_out_failed", error=str(exc))
            return self._context.state

        remaining = self._timeout - idle
        if remaining <= self._warning_lead and not self._warned:
            self._warned = True
            logger.info("session_expiry_warning", seconds_left=round(remaining, 1))
            if self._on_expiry_warning is not None:
                self._on_expiry_warning(remaining)
        return self._context.state

    async def _run_timer(self) -> None:
        logger.debug("inactivity_timer_started", interval=self._check_interval)
        while True:
            await asyncio.sleep(self._check_interval)
            try:
                await self.check_inactivity()
            except Exception:
                logger.exception("inactivity_check_failed")

    # ------------------------------------------------------------------
    # Resolution pipeline
    # ------------------------------------------------------------------

    async def _ensure_resolved_for(self, user_id: str, reason: str) -> SessionContext:
        # The provider's SIGNED_IN event normally resolves before sign-in returns.
        identity = self._context.identity
        if self._context.is_authenticated and identity is not None and identity.id == user_id:
            return self._context
        return await self._resolve(reason)

    async def _resolve(self, reason: str) -> SessionContext:
        """Run one resolution and return the settled context.

        A resolution superseded by a newer one waits for the newest to finish,
        so every caller sees the context that actually won.
        """
        self._inflight += 1
        self._settled.clear()
        try:
            context = await self._run_pipeline(reason)
        finally:
            self._inflight -= 1
            if self._inflight == 0:
                self._settled.set()
        if context is None:
            await self._settled.wait()
            return self._context
        return context

    async def _run_pipeline(self, reason: str) -> SessionContext | None:
        generation = self._next_generation()
        if self._context.state != SessionState.AUTHENTICATED:
            self._publish(SessionContext(state=SessionState.AUTHENTICATING, generation=generation))

        try:
            user_id = await self._auth.get_current_user_id()
        except (AuthFailure, BackendError) as exc:
            logger.warning("credential_lookup_failed", reason=reason, error=str(exc))
            user_id = None
        if self._is_stale(generation):
            return None
        if user_id is None:
            self._publish(SessionContext(state=SessionState.ANONYMOUS, generation=generation))
            return self._context

        identity = await self._load_identity(user_id)
        privileged = await self._check_privileged(user_id)
        if self._is_stale(generation):
            return None
        identity = identity.model_copy(update={"privileged": privileged})

        marker = self._impersonation.revalidate(identity.id, identity.privileged)
        effective = identity
        if marker is not None:
            effective = await self._load_identity(marker.target_id)
        restricted = await self._check_restricted(effective.id)
        tenants, memberships = await self._load_tenants(effective.id)
        if self._is_stale(generation):
            return None

        requested, self._pending_tenant_id = self._pending_tenant_id, None
        current: Tenant | None = None
        if requested is not None:
            try:
                current = self._tenancy.switch_tenant(requested, tenants)
            except TenantAccessError:
                self._rejected_tenant_id = requested
                logger.warning(
                    "tenant_switch_rejected", tenant_id=requested, identity_id=effective.id
                )
        if current is None:
            current = self._tenancy.resolve_current(effective.id, tenants)

        entitlement = await self._entitlements.resolve(
            current.id if current else None, effective.id
        )
        if self._is_stale(generation):
            return None

        role = self._tenancy.role_for(effective.id, current, memberships)
        capabilities = self._permissions.derive(
            role,
            owns_tenant=self._tenancy.owns(effective.id, current),
            restricted_owner=restricted,
            impersonating=marker is not None,
        )
        membership = _membership_for(current, memberships)
        self._publish(
            SessionContext(
                state=SessionState.AUTHENTICATED,
                identity=identity,
                effective_identity=effective,
                impersonation=marker,
                tenants=tuple(tenants),
                current_tenant=current,
                membership=membership,
                role=role,
                restricted_owner=restricted,
                capabilities=capabilities,
                entitlement=entitlement,
                generation=generation,
            )
        )
        logger.info(
            "session_resolved",
            reason=reason,
            identity_id=identity.id,
            effective_identity_id=effective.id,
            tenant_id=current.id if current else None,
            role=role.value if role else None,
            tier=entitlement.tier_slug,
        )
        return self._context

    async def _load_identity(self, user_id: str) -> Identity:
        try:
            identity = await self._backend.get_identity(user_id)
        except BackendError as exc:
            logger.warning("identity_lookup_failed", identity_id=user_id, error=str(exc))
            identity = None
        return identity or Identity(id=user_id)

    async def _check_privileged(self, user_id: str) -> bool:
        try:
            return await self._backend.check_privileged(user_id)
        except BackendError as exc:
            logger.warning("privilege_check_failed", identity_id=user_id, error=str(exc))
            return False

    async def _check_restricted(self, user_id: str) -> bool:
        # An unknown owner class is treated as restricted.
        try:
            return await self._backend.is_restricted_owner_class(user_id)
        except BackendError as exc:
            logger.warning("owner_class_check_failed", identity_id=user_id, error=str(exc))
            return True

    async def _load_tenants(self, user_id: str) -> tuple[list[Tenant], list[Membership]]:
        try:
            return await self._tenancy.load_tenants(user_id)
        except TenancyLookupError as exc:
            logger.warning("tenancy_lookup_failed", identity_id=user_id, error=str(exc))
            return [], []

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def _logout(self, final_state: SessionState) -> SessionContext:
        actor = self._context.identity
        self._signing_out = True
        try:
            if actor is not None and self._impersonation.active() is not None:
                try:
                    await self._impersonation.stop(actor)
                except AuditWriteFailure as exc:
                    logger.error("impersonation_exit_unaudited", actor_id=actor.id, error=str(exc))
            await self._auth.sign_out()
        finally:
            self._signing_out = False
            self._teardown(final_state, reason=final_state.value)
        return self._context

    def _teardown(self, state: SessionState, reason: str) -> None:
        generation = self._next_generation()
        self._pending_tenant_id = None
        self._rejected_tenant_id = None
        self._tenancy.clear()
        self._impersonation.clear()
        if self._context.state != state or self._context.identity is not None:
            self._publish(SessionContext(state=state, generation=generation))
            logger.info("session_cleared", reason=reason)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _next_generation(self) -> int:
        self._generation += 1
        return self._generation

    def _is_stale(self, generation: int) -> bool:
        if generation != self._generation:
            logger.debug("resolution_discarded", generation=generation, current=self._generation)
            return True
        return False

    def _publish(self, context: SessionContext) -> None:
        self._context = context
        for listener in list(self._listeners):
            try:
                listener(context)
            except Exception:
                logger.exception("session_listener_failed")


def _membership_for(tenant: Tenant | None, memberships: list[Membership]) -> Membership | None:
    if tenant is None:
        return None
    for membership in memberships:
        if membership.tenant_id == tenant.id:
            return membership
    return None


def _target_of(marker: ImpersonationRecord | None) -> str | None:
    return marker.target_id if marker is not None else None
