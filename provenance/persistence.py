"""
Snapshot persistence

The stores keep their full state in memory and hand a JSON-ready blob to a
SnapshotStore after every mutation. Backends raise PersistenceError; the
stores log it and keep running in memory.
"""

from __future__ import annotations

import copy
import json
import threading
import time
from typing import Any, Optional, Protocol

import psycopg2
import structlog

from provenance import config
from provenance.errors import PersistenceError

log = structlog.get_logger(__name__)


class SnapshotStore(Protocol):
    def load(self, key: str) -> Optional[dict[str, Any]]: ...

    def save(self, key: str, snapshot: dict[str, Any]) -> None: ...


class InMemorySnapshotStore:
    """Process-local backend. Useful for tests and single-shot tools."""

    def __init__(self):
        self._blobs: dict[str, str] = {}
        self._lock = threading.Lock()

    def load(self, key: str) -> Optional[dict[str, Any]]:
        with self._lock:
            blob = self._blobs.get(key)
        if blob is None:
            return None
        return json.loads(blob)

    def save(self, key: str, snapshot: dict[str, Any]) -> None:
        try:
            blob = json.dumps(snapshot)
        except (TypeError, ValueError) as exc:
            raise PersistenceError(f"snapshot for '{key}' is not serializable: {exc}") from exc
        with self._lock:
            self._blobs[key] = blob

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._blobs)

    def raw(self, key: str) -> Optional[dict[str, Any]]:
        """Deep copy of a stored blob, for inspection."""
        loaded = self.load(key)
        return copy.deepcopy(loaded) if loaded is not None else None


class PostgresSnapshotStore:
    """
    Key/blob snapshots in a single PostgreSQL table.

        CREATE TABLE provenance_snapshots (
            key        TEXT PRIMARY KEY,
            snapshot   JSONB NOT NULL,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
    """

    TABLE = "provenance_snapshots"

    def __init__(self, db_config: dict | None = None, max_retries: int = 3):
        self._db_config = db_config or config.DB_CONFIG
        self._max_retries = max_retries

    def _connect(self):
        try:
            return psycopg2.connect(**self._db_config)
        except psycopg2.Error as exc:
            raise PersistenceError(f"cannot connect to snapshot database: {exc}") from exc

    def ensure_schema(self) -> None:
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(
                f"CREATE TABLE IF NOT EXISTS {self.TABLE} ("
                "key TEXT PRIMARY KEY, "
                "snapshot JSONB NOT NULL, "
                "updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW())"
            )
            conn.commit()
            cur.close()
        except psycopg2.Error as exc:
            conn.rollback()
            raise PersistenceError(f"cannot create snapshot table: {exc}") from exc
        finally:
            conn.close()

    def load(self, key: str) -> Optional[dict[str, Any]]:
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(
                f"SELECT snapshot FROM {self.TABLE} WHERE key = %s",
                (key,),
            )
            row = cur.fetchone()
            cur.close()
        except psycopg2.Error as exc:
            raise PersistenceError(f"cannot load snapshot '{key}': {exc}") from exc
        finally:
            conn.close()

        if row is None:
            return None
        snapshot = row[0]
        # psycopg2 decodes JSONB to Python objects; plain TEXT comes back raw
        if isinstance(snapshot, str):
            snapshot = json.loads(snapshot)
        return snapshot

    def save(self, key: str, snapshot: dict[str, Any]) -> None:
        """
        Upsert the snapshot for *key*. Retries on deadlocks and unique
        violations from concurrent first inserts.
        """
        payload = json.dumps(snapshot)
        for attempt in range(self._max_retries):
            conn = self._connect()
            try:
                cur = conn.cursor()
                cur.execute(
                    f"INSERT INTO {self.TABLE} (key, snapshot, updated_at) "
                    "VALUES (%s, %s::jsonb, NOW()) "
                    "ON CONFLICT (key) DO UPDATE "
                    "SET snapshot = EXCLUDED.snapshot, updated_at = NOW()",
                    (key, payload),
                )
                conn.commit()
                cur.close()
                return
            except (psycopg2.errors.UniqueViolation, psycopg2.errors.DeadlockDetected):
                conn.rollback()
                if attempt < self._max_retries - 1:
                    time.sleep(0.05 * (attempt + 1))
                    continue
                raise PersistenceError(f"save of '{key}' exhausted retries")
            except psycopg2.Error as exc:
                conn.rollback()
                raise PersistenceError(f"cannot save snapshot '{key}': {exc}") from exc
            finally:
                conn.close()
        raise PersistenceError(f"save of '{key}' exhausted retries")


def build_snapshot_store(backend: str = config.SNAPSHOT_BACKEND) -> SnapshotStore:
    """Return the configured backend ("memory" or "postgres")."""
    if backend == "postgres":
        return PostgresSnapshotStore()
    if backend == "memory":
        return InMemorySnapshotStore()
    raise ValueError(f"Unknown snapshot backend: {backend}")
