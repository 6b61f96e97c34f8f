"""
Synchronous key-value backends for small persisted records.

Backends
────────
SqliteKeyValueStore   table ``kv (key TEXT PRIMARY KEY, value TEXT, updated_at TEXT)``
FileKeyValueStore     one JSON object file, replaced atomically on every write
MemoryKeyValueStore   process-local dict, for tests

All backends expose ``read(key) -> str | None`` and ``write(key, value)``.
A write either replaces the whole value or leaves the previous one intact.
Errors (``sqlite3.Error``, ``OSError``, ``ValueError``) propagate to the caller;
``PreferenceStore`` turns them into defaults.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import tempfile
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path(__file__).parent.parent / "data" / "preferences.db"


class KeyValueStore(Protocol):
    def read(self, key: str) -> Optional[str]: ...

    def write(self, key: str, value: str) -> None: ...


class SqliteKeyValueStore:
    """SQLite-backed store; each write is a single-row upsert in one transaction."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path) if path is not None else _db_path()
        self._initialised = False

    @contextmanager
    def _connect(self):
        """Yield a connected sqlite3.Connection, creating the file/dir if needed."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.path))
        conn.row_factory = sqlite3.Row
        try:
            if not self._initialised:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS kv (
                        key        TEXT PRIMARY KEY,
                        value      TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
                self._initialised = True
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def read(self, key: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return None if row is None else row["value"]

    def write(self, key: str, value: str) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
                "updated_at = excluded.updated_at",
                (key, value, now),
            )
        logger.debug("Stored key=%s in %s", key, self.path)


class FileKeyValueStore:
    """JSON-object file store.

    Writes go to a temporary file in the same directory which then replaces
    the target with ``os.replace``, so readers see either the old or the new
    file, never a partial one.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        data = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not hold a JSON object")
        return data

    def read(self, key: str) -> Optional[str]:
        value = self._load().get(key)
        return value if isinstance(value, str) else None

    def write(self, key: str, value: str) -> None:
        try:
            data = self._load()
        except ValueError:
            logger.warning("Replacing unreadable store file %s", self.path)
            data = {}
        data[key] = value

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                json.dump(data, tmp, ensure_ascii=False, indent=2)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise


class MemoryKeyValueStore:
    def __init__(self, initial: Optional[dict[str, str]] = None) -> None:
        self.data: dict[str, str] = dict(initial or {})

    def read(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def write(self, key: str, value: str) -> None:
        self.data[key] = value


def _db_path() -> Path:
    """Return the database file path, honouring a PREFERENCES_DB_PATH env var if set."""
    env = os.getenv("PREFERENCES_DB_PATH")
    return Path(env) if env else DEFAULT_DB_PATH
