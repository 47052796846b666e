from __future__ import annotations

import json
import os
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Mapping, Optional, Protocol

from ..domain.errors import StoreError
from ..logging import get_logger
from ..paths import find_project_root, var_dir


LOG = get_logger("stock-store")


DEFAULT_DB_FOLDER = "stockdb"
DEFAULT_DB_FILENAME = "stock.sqlite3"


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS kv_store (
  key         TEXT PRIMARY KEY,
  value       TEXT NOT NULL,            -- JSON document
  updated_at  TEXT DEFAULT (datetime('now'))
);
"""


class KeyValueStore(Protocol):
    """Durable string -> JSON mapping. The ledger is its only writer."""

    def get(self, key: str) -> Optional[Any]:
        ...

    def set(self, key: str, value: Any) -> None:
        ...

    def set_many(self, values: Mapping[str, Any]) -> None:
        ...


def _dumps(key: str, value: Any) -> str:
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        raise StoreError(f"Value for {key!r} is not JSON-serializable: {exc}") from exc


class MemoryKeyValueStore:
    """In-process store; values round-trip through JSON so nothing is aliased."""

    def __init__(self, initial: Optional[Mapping[str, Any]] = None) -> None:
        self._data: Dict[str, str] = {}
        for key, value in (initial or {}).items():
            self._data[key] = _dumps(key, value)

    def get(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: Any) -> None:
        self._data[key] = _dumps(key, value)

    def set_many(self, values: Mapping[str, Any]) -> None:
        encoded = {key: _dumps(key, value) for key, value in values.items()}
        self._data.update(encoded)


class SqliteKeyValueStore:
    """SQLite-backed key-value store.

    - Places the DB under `<repo-root>/var/stockdb/stock.sqlite3` unless a path is given.
    - Ensures schema on first use.
    - `set_many` writes every key in a single transaction.
    """

    def __init__(self, db_path: Optional[str] = None, *, root_dir: Optional[str] = None) -> None:
        if db_path:
            self.db_path = os.path.abspath(db_path)
            folder = os.path.dirname(self.db_path)
        else:
            root = find_project_root(root_dir)
            folder = os.path.join(var_dir(root), DEFAULT_DB_FOLDER)
            self.db_path = os.path.join(folder, DEFAULT_DB_FILENAME)
        os.makedirs(folder, exist_ok=True)
        LOG.info(f"Stock DB path: {self.db_path}")
        self._ensure_schema()

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        try:
            with self.connect() as conn:
                cur = conn.cursor()
                try:
                    cur.execute("PRAGMA journal_mode=WAL;")
                    cur.execute("PRAGMA synchronous=NORMAL;")
                except sqlite3.DatabaseError:
                    # Non-fatal; continue with schema creation
                    pass
                cur.executescript(SCHEMA_SQL)
                conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot initialize stock DB at {self.db_path}: {exc}") from exc
        LOG.debug("Stock DB schema ensured.")

    def get(self, key: str) -> Optional[Any]:
        try:
            with self.connect() as conn:
                cur = conn.cursor()
                cur.execute("SELECT value FROM kv_store WHERE key = ?;", (key,))
                row = cur.fetchone()
        except sqlite3.Error as exc:
            raise StoreError(f"Failed reading {key!r}: {exc}") from exc
        if row is None:
            return None
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError as exc:
            raise StoreError(f"Stored value for {key!r} is not valid JSON: {exc}") from exc

    def set(self, key: str, value: Any) -> None:
        self.set_many({key: value})

    def set_many(self, values: Mapping[str, Any]) -> None:
        rows = [(key, _dumps(key, value)) for key, value in values.items()]
        try:
            with self.connect() as conn:
                cur = conn.cursor()
                try:
                    cur.executemany(
                        """
                        INSERT INTO kv_store (key, value, updated_at)
                        VALUES (?, ?, datetime('now'))
                        ON CONFLICT(key) DO UPDATE SET
                            value=excluded.value,
                            updated_at=excluded.updated_at;
                        """,
                        rows,
                    )
                    conn.commit()
                except sqlite3.Error:
                    conn.rollback()
                    raise
        except sqlite3.Error as exc:
            LOG.exception("Failed writing keys %s", [key for key, _ in rows])
            raise StoreError(f"Failed writing {', '.join(k for k, _ in rows)}: {exc}") from exc
        LOG.debug("Persisted keys: %s", ", ".join(key for key, _ in rows))
