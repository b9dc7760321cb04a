"""
config_store.py - the single owner of the canonical configuration document.

The document is stored as one JSON blob in SQLite (config_document table)
and cached in memory. Every read and every write goes through one lock:

  read(selector)        selector(deep copy), nothing escapes by reference
  update(mutation)      mutate a deep copy, always commit
  update_if(mutation)   mutate a deep copy, commit only if mutation returns True

On commit the mutated copy is deep-copied again before it becomes canonical,
so objects the mutation built and attached are never shared with the caller.
Mutations must not call back into the store (the lock is not re-entrant).
"""
from __future__ import annotations

import copy
import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Callable, Optional, TypeVar

from langmirror.models import PluginConfiguration, config_to_dict, dict_to_config

logger = logging.getLogger(__name__)

T = TypeVar("T")

_DOCUMENT_KEY = "plugin_configuration"


class ConfigurationUnavailable(RuntimeError):
    """No canonical document exists yet (first boot, not initialized)."""


class ConfigurationWriteError(RuntimeError):
    """A committed mutation could not be persisted. The canonical document is unchanged."""


class ConfigurationStore:
    def __init__(self, db_path: str):
        self.db_path = db_path
        self._lock = threading.Lock()
        self._document: Optional[PluginConfiguration] = None

    # -------------------------
    # SQLite helpers
    # -------------------------
    def _connect(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_tables(self):
        parent = Path(self.db_path).parent
        parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS config_document (
                    key        TEXT PRIMARY KEY,
                    body       TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );
            """)

    def _load(self) -> Optional[PluginConfiguration]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT body FROM config_document WHERE key = ?", (_DOCUMENT_KEY,)
            ).fetchone()
        if row is None:
            return None
        return dict_to_config(json.loads(row["body"]))

    def _persist(self, document: PluginConfiguration):
        body = json.dumps(config_to_dict(document), ensure_ascii=False)
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO config_document (key, body, updated_at)
                   VALUES (?, ?, CURRENT_TIMESTAMP)
                   ON CONFLICT(key) DO UPDATE SET
                       body = excluded.body,
                       updated_at = CURRENT_TIMESTAMP""",
                (_DOCUMENT_KEY, body),
            )

    @staticmethod
    def _clone(document: PluginConfiguration) -> PluginConfiguration:
        return copy.deepcopy(document)

    # -------------------------
    # Lifecycle
    # -------------------------
    def initialize(self, default: Optional[PluginConfiguration] = None) -> None:
        """Load the persisted document, creating it from *default* if absent.

        Safe to call on every startup.
        """
        with self._lock:
            self._ensure_tables()
            loaded = self._load()
            if loaded is None:
                loaded = self._clone(default) if default is not None else PluginConfiguration()
                self._persist(loaded)
                logger.info("Configuration document created at %s", self.db_path)
            else:
                logger.info(
                    "Configuration document loaded from %s (%d alternatives, %d assignments)",
                    self.db_path,
                    len(loaded.language_alternatives),
                    len(loaded.user_language_assignments),
                )
            self._document = loaded

    @property
    def is_available(self) -> bool:
        return self._document is not None

    # -------------------------
    # Snapshot access
    # -------------------------
    def read(self, selector: Callable[[PluginConfiguration], T]) -> T:
        with self._lock:
            if self._document is None:
                raise ConfigurationUnavailable("Configuration is not available")
            snapshot = self._clone(self._document)
            return selector(snapshot)

    def update(self, mutation: Callable[[PluginConfiguration], None]) -> None:
        def _always(snapshot: PluginConfiguration) -> bool:
            mutation(snapshot)
            return True

        if not self.update_if(_always):
            raise ConfigurationUnavailable("Configuration is not available")

    def update_if(self, mutation: Callable[[PluginConfiguration], bool]) -> bool:
        """Commit *mutation* iff it returns True. Returns whether it committed.

        False also when no document exists yet (logged as a warning).
        """
        with self._lock:
            if self._document is None:
                logger.warning("update: configuration document is not available")
                return False

            snapshot = self._clone(self._document)
            if not mutation(snapshot):
                return False

            to_save = self._clone(snapshot)
            try:
                self._persist(to_save)
            except sqlite3.Error as e:
                logger.error("update: could not persist configuration: %s", e)
                raise ConfigurationWriteError(str(e)) from e
            self._document = to_save
            return True
