"""Durable key-value store and translation cache.

The store is injected into the orchestrator instead of being reached as
global state. Two keyspaces share it: translation cache entries
(``translation:<fingerprint>``) and the resume record (see checkpoint.py).
"""

import hashlib
import json
import logging
import os
import sqlite3
import threading
from abc import ABC, abstractmethod
from typing import Any

from .extractors import normalize_fragment

logger = logging.getLogger(__name__)

CACHE_PREFIX = "translation:"
CACHE_VERSION = "lit-v12"


class KeyValueStore(ABC):
    """Minimal durable key-value interface (JSON-serialisable values)."""

    @abstractmethod
    def get(self, key: str) -> Any | None:
        pass

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    def close(self) -> None:
        pass


class MemoryStore(KeyValueStore):
    """Process-local store, used in tests and for throwaway runs."""

    def __init__(self):
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Any | None:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: Any) -> None:
        # Stored as JSON so callers never share mutable state with the store
        self._data[key] = json.dumps(value, ensure_ascii=False)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class SqliteStore(KeyValueStore):
    """SQLite-backed store; every ``set`` is committed immediately."""

    def __init__(self, db_path: str):
        """
        Open (or create) the store.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path
        self._lock = threading.RLock()

        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        self._connection = sqlite3.connect(db_path, check_same_thread=False, timeout=30.0)
        with self._lock:
            self._connection.execute(
                "CREATE TABLE IF NOT EXISTS kv_store ("
                " key TEXT PRIMARY KEY,"
                " value TEXT NOT NULL,"
                " updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP)"
            )
            self._connection.commit()

        logger.debug(f"Key-value store opened: {db_path}")

    def get(self, key: str) -> Any | None:
        with self._lock:
            row = self._connection.execute(
                "SELECT value FROM kv_store WHERE key = ?", (key,)
            ).fetchone()
        return json.loads(row[0]) if row else None

    def set(self, key: str, value: Any) -> None:
        payload = json.dumps(value, ensure_ascii=False)
        with self._lock:
            self._connection.execute(
                "INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP",
                (key, payload),
            )
            self._connection.commit()

    def delete(self, key: str) -> None:
        with self._lock:
            self._connection.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            self._connection.commit()

    def count(self, prefix: str = "") -> int:
        with self._lock:
            row = self._connection.execute(
                "SELECT COUNT(*) FROM kv_store WHERE key LIKE ?", (f"{prefix}%",)
            ).fetchone()
        return row[0]

    def close(self) -> None:
        with self._lock:
            self._connection.close()


def fingerprint(fragment: str, source_language: str, target_language: str, model: str) -> str:
    """Stable fingerprint of a fragment and its translation scope."""
    payload = json.dumps(
        [CACHE_VERSION, normalize_fragment(fragment), source_language, target_language, model],
        ensure_ascii=False,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class TranslationCache:
    """Translated fragments keyed by fragment, languages and model.

    Entries are never invalidated within a run and persist across runs.
    """

    def __init__(self, store: KeyValueStore, source_language: str, target_language: str, model: str):
        self.store = store
        self.source_language = source_language
        self.target_language = target_language
        self.model = model
        self.hits = 0
        self.misses = 0

    def key_for(self, fragment: str) -> str:
        return CACHE_PREFIX + fingerprint(
            fragment, self.source_language, self.target_language, self.model
        )

    def get(self, fragment: str) -> str | None:
        value = self.store.get(self.key_for(fragment))
        if value is None:
            self.misses += 1
            return None
        self.hits += 1
        return value

    def set(self, fragment: str, translated: str) -> None:
        self.store.set(self.key_for(fragment), translated)
