"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlmodel import SQLModel

import rentline.models.database  # noqa: F401  registers the tables
from rentline.audit.logger import InMemoryAuditLog
from rentline.config.settings import Settings
from rentline.exceptions import AuditWriteFailure, AuthFailure, BackendError
from rentline.identity.session import SessionManager
from rentline.models.domain import (
    AuditEntry,
    AuthEvent,
    Identity,
    PackageOverrides,
    PackageTier,
    TenantRecord,
)
from rentline.storage.kv import InMemoryKeyValueStore
from rentline.types import AuthEventType, PackageType


class FakeBackend:
    """In-memory backend. Methods named in ``failing`` raise ``BackendError``;
    methods with an entry in ``gates`` wait on that event first."""

    def __init__(self) -> None:
        self.identities: dict[str, Identity] = {}
        self.tenants: dict[str, list[TenantRecord]] = {}
        self.packages: dict[str, tuple[PackageTier, PackageOverrides]] = {}
        self.tiers: dict[str, PackageTier] = {}
        self.privileged: set[str] = set()
        self.restricted: set[str] = set()
        self.failing: set[str] = set()
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[tuple[str, str]] = []

    async def _enter(self, method: str, arg: str) -> None:
        self.calls.append((method, arg))
        gate = self.gates.get(method)
        if gate is not None:
            await gate.wait()
        if method in self.failing:
            raise BackendError(f"{method} unavailable")

    async def get_identity(self, identity_id: str) -> Identity | None:
        await self._enter("get_identity", identity_id)
        return self.identities.get(identity_id)

    async def get_tenants_for_identity(self, identity_id: str) -> list[TenantRecord]:
        await self._enter("get_tenants_for_identity", identity_id)
        return list(self.tenants.get(identity_id, []))

    async def get_tenant_package(self, tenant_id: str) -> tuple[PackageTier, PackageOverrides] | None:
        await self._enter("get_tenant_package", tenant_id)
        return self.packages.get(tenant_id)

    async def get_tier_by_slug(self, slug: str) -> PackageTier | None:
        await self._enter("get_tier_by_slug", slug)
        return self.tiers.get(slug)

    async def check_privileged(self, identity_id: str) -> bool:
        await self._enter("check_privileged", identity_id)
        return identity_id in self.privileged

    async def is_restricted_owner_class(self, identity_id: str) -> bool:
        await self._enter("is_restricted_owner_class", identity_id)
        return identity_id in self.restricted

    # -- seeding helpers --------------------------------------------------

    def add_identity(self, identity_id: str, email: str = "", **fields: object) -> Identity:
        identity = Identity(id=identity_id, email=email or f"{identity_id}@example.com", **fields)
        self.identities[identity_id] = identity
        return identity

    def add_tenant(
        self,
        identity_id: str,
        tenant_id: str,
        owner_id: str | None = None,
        role: str | None = None,
        is_default: bool = False,
    ) -> TenantRecord:
        record = TenantRecord(
            id=tenant_id,
            name=f"Business {tenant_id}",
            owner_user_id=owner_id,
            is_default=is_default,
            my_role=role,
            my_member_id=f"m-{tenant_id}" if role else None,
        )
        self.tenants.setdefault(identity_id, []).append(record)
        return record


class FakeAuthProvider:
    """Auth provider holding credentials in memory; emits the same events as the real one."""

    def __init__(self) -> None:
        self.accounts: dict[str, tuple[str, str]] = {}
        self.current_user_id: str | None = None
        self.signed_up: list[dict[str, object]] = []
        self._listeners: list[Callable] = []

    def add_account(self, email: str, secret: str, user_id: str) -> None:
        self.accounts[email] = (secret, user_id)

    def subscribe(self, listener):
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    async def get_current_user_id(self) -> str | None:
        return self.current_user_id

    async def sign_in(self, email: str, secret: str) -> str:
        account = self.accounts.get(email)
        if account is None or account[0] != secret:
            raise AuthFailure("Invalid login credentials")
        self.current_user_id = account[1]
        await self.emit(AuthEventType.SIGNED_IN, account[1])
        return account[1]

    async def sign_up(
        self,
        email: str,
        secret: str,
        first_name: str = "",
        last_name: str = "",
        tier_slug: str | None = None,
    ) -> str:
        if email in self.accounts:
            raise AuthFailure("User already registered")
        user_id = f"user-{len(self.accounts) + 1}"
        self.accounts[email] = (secret, user_id)
        self.signed_up.append({"email": email, "tier_slug": tier_slug})
        self.current_user_id = user_id
        await self.emit(AuthEventType.SIGNED_IN, user_id)
        return user_id

    async def sign_out(self) -> None:
        had_user = self.current_user_id is not None
        self.current_user_id = None
        if had_user:
            await self.emit(AuthEventType.SIGNED_OUT)

    async def emit(self, event_type: AuthEventType, identity_id: str | None = None) -> None:
        for listener in list(self._listeners):
            await listener(AuthEvent(type=event_type, identity_id=identity_id))


class FailingAuditLog:
    """Accepts the first ``fail_after`` entries, then refuses every write."""

    def __init__(self, fail_after: int = 0) -> None:
        self.fail_after = fail_after
        self.entries: list[AuditEntry] = []

    async def append(self, entry: AuditEntry) -> None:
        if len(self.entries) >= self.fail_after:
            raise AuditWriteFailure("audit store offline")
        self.entries.append(entry)


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_tier(slug: str = "starter", **fields: object) -> PackageTier:
    fields.setdefault("package_type", PackageType.SINGLE_COMPANY)
    return PackageTier(id=f"tier-{slug}", tier_slug=slug, tier_name=slug.title(), **fields)


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        secret_key="test-secret",
        inactivity_timeout_seconds=1800,
        activity_check_interval_seconds=60,
        expiry_warning_seconds=300,
    )


@pytest.fixture()
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture()
def auth() -> FakeAuthProvider:
    return FakeAuthProvider()


@pytest.fixture()
def audit_log() -> InMemoryAuditLog:
    return InMemoryAuditLog()


@pytest.fixture()
def failing_audit_log() -> FailingAuditLog:
    return FailingAuditLog()


@pytest.fixture()
def tier_factory() -> Callable[..., PackageTier]:
    return make_tier


@pytest.fixture()
def persisted() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture()
def transient() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def make_manager(auth, backend, audit_log, persisted, transient, settings, clock):
    """Factory so tests can swap the audit log or add an expiry-warning hook."""
    managers: list[SessionManager] = []

    def _make(**overrides: object) -> SessionManager:
        kwargs: dict[str, object] = {
            "auth": auth,
            "backend": backend,
            "audit_log": audit_log,
            "persisted": persisted,
            "transient": transient,
            "settings": settings,
            "clock": clock,
        }
        kwargs.update(overrides)
        manager = SessionManager(**kwargs)  # type: ignore[arg-type]
        managers.append(manager)
        return manager

    return _make


@pytest.fixture()
def manager(make_manager) -> SessionManager:
    return make_manager()


@pytest.fixture()
async def async_engine():
    """In-memory SQLite engine with all tables created."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()
