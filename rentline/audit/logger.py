"""Audit log: immutable, append-only trail of privileged actions.

Unlike ordinary logging, an audit write that fails is an error the caller must
see: impersonation transitions refuse to proceed without their entry.
Metadata is sanitized (sensitive fields stripped, 10KB max).
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Protocol

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from rentline.exceptions import AuditWriteFailure
from rentline.models.database import AdminAuditLog

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from rentline.models.domain import AuditEntry

logger = structlog.get_logger(__name__)

_SENSITIVE_FIELDS = frozenset(
    {
        "password",
        "secret",
        "token",
        "api_key",
        "apikey",
        "authorization",
        "cookie",
        "session",
    }
)

_MAX_METADATA_BYTES = 10_240  # 10KB


def sanitize_metadata(metadata: dict[str, Any]) -> str:
    """Strip sensitive fields and enforce the size limit."""
    sanitized = {k: v for k, v in metadata.items() if k.lower() not in _SENSITIVE_FIELDS}
    encoded = json.dumps(sanitized, default=str)
    if len(encoded.encode()) > _MAX_METADATA_BYTES:
        encoded = json.dumps({"timestamp": sanitized.get("timestamp"), "truncated": True})
    return encoded


class AuditLog(Protocol):
    async def append(self, entry: AuditEntry) -> None: ...


class DatabaseAuditLog:
    """Insert-only audit log with its own DB session per entry."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def append(self, entry: AuditEntry) -> None:
        """Write an audit entry, raising ``AuditWriteFailure`` if it cannot be stored."""
        row = AdminAuditLog(
            admin_user_id=entry.admin_user_id,
            action=entry.action.value,
            target_user_id=entry.target_user_id,
            metadata_json=sanitize_metadata(entry.metadata),
        )
        try:
            async with AsyncSession(self._engine) as session:
                session.add(row)
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            logger.error(
                "audit_write_failed",
                action=entry.action.value,
                admin_user_id=entry.admin_user_id,
                target_user_id=entry.target_user_id,
                error=str(exc),
            )
            raise AuditWriteFailure(str(exc)) from exc
        logger.info(
            "audit_entry_written",
            action=entry.action.value,
            admin_user_id=entry.admin_user_id,
            target_user_id=entry.target_user_id,
        )


class InMemoryAuditLog:
    """Audit log kept in a list (single-process dev mode and tests)."""

    def __init__(self) -> None:
        self.entries: list[AuditEntry] = []

    async def append(self, entry: AuditEntry) -> None:
        self.entries.append(entry)
        logger.info(
            "audit_entry_written",
            action=entry.action.value,
            admin_user_id=entry.admin_user_id,
            target_user_id=entry.target_user_id,
        )
