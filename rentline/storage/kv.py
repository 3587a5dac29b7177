"""Key-value storage for session bookkeeping.

Two lifetimes are used: a transient store that lives as long as the process
(impersonation markers) and a persisted store that survives restarts
(selected tenant, auth token).
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Protocol

import structlog

logger = structlog.get_logger(__name__)


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def clear(self, key: str) -> None: ...


class InMemoryKeyValueStore:
    """Process-lifetime store. Nothing written here outlives the process."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._store.get(key)

    def set(self, key: str, value: str) -> None:
        self._store[key] = value

    def clear(self, key: str) -> None:
        self._store.pop(key, None)


class JsonFileKeyValueStore:
    """Persisted store backed by a single JSON object on disk.

    The file is rewritten atomically on every change. A missing, truncated or
    hand-edited file is treated as empty rather than trusted; non-string
    values are dropped on load.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path).expanduser()
        self._store = self._load()

    def get(self, key: str) -> str | None:
        return self._store.get(key)

    def set(self, key: str, value: str) -> None:
        self._store[key] = value
        self._flush()

    def clear(self, key: str) -> None:
        if self._store.pop(key, None) is not None:
            self._flush()

    def _load(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("kv_store_unreadable", path=str(self._path), error=str(exc))
            return {}
        if not isinstance(data, dict):
            logger.warning("kv_store_malformed", path=str(self._path))
            return {}
        return {k: v for k, v in data.items() if isinstance(k, str) and isinstance(v, str)}

    def _flush(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".kv-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(self._store, fh)
            os.replace(tmp, self._path)
        except OSError:
            Path(tmp).unlink(missing_ok=True)
            raise
