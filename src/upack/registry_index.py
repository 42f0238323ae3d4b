from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from .errors import StorageError
from .logger import setup_logger
from .package import CacheKey

_logger = setup_logger()

SCHEMA_PATH = Path(__file__).parent / "schema.sql"

ENTRY_COLUMNS = (
    "group_name",
    "name",
    "version",
    "artifact_path",
    "sha256",
    "size",
    "feed_url",
    "installed_by",
    "installed_using",
    "comment",
    "installed_at",
)

# Fields a re-install may overwrite; the payload columns stay fixed once admitted.
METADATA_COLUMNS = ("feed_url", "installed_by", "installed_using", "comment", "installed_at")


def _key_params(key: CacheKey):
    return (key.group or "", key.name, str(key.version))


class RegistryIndex:
    """
    sqlite metadata index of one registry scope.
    Safe to share between threads; concurrent processes are serialized by sqlite.
    """

    def __init__(self, db_path: Union[str, Path], busy_timeout: float = 30.0):
        self.db_path = Path(db_path)
        self._lock = threading.RLock()

        with _storage_errors(f"open registry index {self.db_path}"):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(str(self.db_path), timeout=busy_timeout, check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            self._configure_pragmas(self.conn)
            with self.conn:
                self.conn.executescript(SCHEMA_PATH.read_text(encoding="utf-8"))

    def _configure_pragmas(self, connection: sqlite3.Connection) -> None:
        pragmas = (
            "PRAGMA journal_mode=WAL;",
            "PRAGMA synchronous=FULL;",
        )
        try:
            cur = connection.cursor()
            for p in pragmas:
                cur.execute(p)
            cur.close()
        except sqlite3.Error as e:
            _logger.debug("PRAGMA configuration failed: %s", e)

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    # -------------------------
    # Queries
    # -------------------------
    def get_entry(self, key: CacheKey) -> Optional[Dict[str, Any]]:
        sql = "SELECT * FROM installed_packages WHERE group_name=? AND name=? AND version=?"
        with self._lock, _storage_errors(f"read registry entry {key}"):
            row = self.conn.execute(sql, _key_params(key)).fetchone()
        return dict(row) if row else None

    def list_entries(self) -> List[Dict[str, Any]]:
        sql = "SELECT * FROM installed_packages ORDER BY group_name, name, version"
        with self._lock, _storage_errors("list registry entries"):
            rows = self.conn.execute(sql).fetchall()
        return [dict(r) for r in rows]

    # -------------------------
    # Writes
    # -------------------------
    def put_entry(self, row: Dict[str, Any]) -> None:
        """Insert an admitted artifact, replacing any stale row for the same key."""
        data = {c: row.get(c) for c in ENTRY_COLUMNS}
        data["group_name"] = data["group_name"] or ""
        cols = ", ".join(ENTRY_COLUMNS)
        placeholders = ", ".join("?" for _ in ENTRY_COLUMNS)
        sql = f"INSERT OR REPLACE INTO installed_packages ({cols}) VALUES ({placeholders})"
        with self._lock, _storage_errors(f"write registry entry {data['name']} {data['version']}"):
            with self.conn:
                self.conn.execute(sql, tuple(data[c] for c in ENTRY_COLUMNS))

    def update_metadata(self, key: CacheKey, **fields: Any) -> None:
        unknown = set(fields) - set(METADATA_COLUMNS)
        if unknown:
            raise ValueError(f"Not updatable registry fields: {sorted(unknown)}")
        if not fields:
            return
        assignments = ", ".join(f"{c}=?" for c in fields)
        sql = f"UPDATE installed_packages SET {assignments} WHERE group_name=? AND name=? AND version=?"
        with self._lock, _storage_errors(f"update registry entry {key}"):
            with self.conn:
                self.conn.execute(sql, tuple(fields.values()) + _key_params(key))


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    try:
        yield
    except (sqlite3.Error, OSError) as e:
        raise StorageError(f"Failed to {action}: {e}") from e
