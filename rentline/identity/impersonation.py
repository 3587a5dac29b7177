"""Audited impersonation of one identity by a privileged operator.

Markers live in the transient store only, so impersonation never survives a
full restart. Every start and stop appends its audit entry before the marker
changes; if the entry cannot be written the transition does not happen.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from rentline.config.settings import (
    ADMIN_USER_KEY,
    IMPERSONATING_USER_KEY,
    IMPERSONATION_STARTED_KEY,
)
from rentline.exceptions import BackendError, InvalidTarget, NotPrivileged
from rentline.models.domain import AuditEntry, ImpersonationRecord
from rentline.types import AuditAction

if TYPE_CHECKING:
    from collections.abc import Callable

    from rentline.audit.logger import AuditLog
    from rentline.models.domain import Identity
    from rentline.storage.backend import Backend
    from rentline.storage.kv import KeyValueStore

logger = structlog.get_logger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class ImpersonationController:
    def __init__(
        self,
        audit_log: AuditLog,
        backend: Backend,
        transient: KeyValueStore,
        now: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._audit = audit_log
        self._backend = backend
        self._transient = transient
        self._now = now

    def active(self) -> ImpersonationRecord | None:
        """The stored marker, or None if absent or incomplete."""
        target_id = self._transient.get(IMPERSONATING_USER_KEY)
        actor_id = self._transient.get(ADMIN_USER_KEY)
        if not target_id or not actor_id:
            return None
        started_raw = self._transient.get(IMPERSONATION_STARTED_KEY)
        try:
            started_at = datetime.fromisoformat(started_raw) if started_raw else self._now()
        except ValueError:
            started_at = self._now()
        return ImpersonationRecord(actor_id=actor_id, target_id=target_id, started_at=started_at)

    async def start(self, actor: Identity, target_id: str) -> ImpersonationRecord:
        """Begin impersonating ``target_id``.

        Raises ``NotPrivileged`` or ``InvalidTarget`` before anything is
        written, and ``AuditWriteFailure`` if the audit entry is rejected.
        Starting the impersonation that is already active is a no-op.
        """
        if not actor.privileged:
            raise NotPrivileged(f"Identity {actor.id} is not privileged")
        if not target_id or target_id == actor.id:
            raise InvalidTarget("Cannot impersonate yourself")

        current = self.active()
        if current and current.actor_id == actor.id and current.target_id == target_id:
            return current

        try:
            target = await self._backend.get_identity(target_id)
        except BackendError as exc:
            raise InvalidTarget(f"Target lookup failed: {exc}") from exc
        if target is None:
            raise InvalidTarget(f"User {target_id} not found")

        if current:
            await self.stop(actor)

        started_at = self._now()
        await self._audit.append(
            AuditEntry(
                admin_user_id=actor.id,
                action=AuditAction.IMPERSONATE_USER,
                target_user_id=target_id,
                metadata={"target_email": target.email, "timestamp": started_at.isoformat()},
            )
        )
        self._transient.set(IMPERSONATING_USER_KEY, target_id)
        self._transient.set(ADMIN_USER_KEY, actor.id)
        self._transient.set(IMPERSONATION_STARTED_KEY, started_at.isoformat())
        logger.info("impersonation_started", actor_id=actor.id, target_id=target_id)
        return ImpersonationRecord(actor_id=actor.id, target_id=target_id, started_at=started_at)

    async def stop(self, actor: Identity) -> ImpersonationRecord | None:
        """End the active impersonation. Returns the closed record, or None if idle."""
        current = self.active()
        if current is None:
            self.clear()
            return None

        ended_at = self._now()
        await self._audit.append(
            AuditEntry(
                admin_user_id=actor.id,
                action=AuditAction.EXIT_IMPERSONATION,
                target_user_id=current.target_id,
                metadata={"timestamp": ended_at.isoformat()},
            )
        )
        self.clear()
        logger.info("impersonation_stopped", actor_id=actor.id, target_id=current.target_id)
        return current.model_copy(update={"ended_at": ended_at})

    def revalidate(self, actual_id: str, privileged: bool) -> ImpersonationRecord | None:
        """Honor a marker only for the same actor, still privileged right now."""
        current = self.active()
        if current is None:
            if self._transient.get(IMPERSONATING_USER_KEY) or self._transient.get(ADMIN_USER_KEY):
                logger.warning("impersonation_marker_incomplete", identity_id=actual_id)
                self.clear()
            return None
        if current.actor_id != actual_id or not privileged:
            logger.warning(
                "impersonation_marker_discarded",
                identity_id=actual_id,
                marker_actor_id=current.actor_id,
                privileged=privileged,
            )
            self.clear()
            return None
        return current

    def clear(self) -> None:
        for key in (IMPERSONATING_USER_KEY, ADMIN_USER_KEY, IMPERSONATION_STARTED_KEY):
            self._transient.clear(key)
