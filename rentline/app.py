"""Session manager factory wired to the database backend."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from rentline.audit.logger import DatabaseAuditLog
from rentline.auth.provider import LocalAuthProvider
from rentline.config.settings import Settings, get_settings
from rentline.identity.session import SessionManager
from rentline.storage.backend import DatabaseBackend
from rentline.storage.database import get_engine
from rentline.storage.kv import InMemoryKeyValueStore, JsonFileKeyValueStore

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from rentline.storage.kv import KeyValueStore


def build_session_manager(
    settings: Settings | None = None,
    engine: AsyncEngine | None = None,
    persisted: KeyValueStore | None = None,
) -> SessionManager:
    """Create the one SessionManager for this process."""
    settings = settings or get_settings()
    engine = engine or get_engine()
    if persisted is None:
        persisted = JsonFileKeyValueStore(Path(settings.state_dir).expanduser() / "session.json")
    return SessionManager(
        auth=LocalAuthProvider(engine, settings.secret_key, persisted),
        backend=DatabaseBackend(engine),
        audit_log=DatabaseAuditLog(engine),
        persisted=persisted,
        transient=InMemoryKeyValueStore(),
        settings=settings,
    )
