"""Local cache of identity and attestation-topic records, backed by SQLite.

Keyed by (kind, account).  Writes are last-writer-wins and the Mirror is
always authoritative: the cache only answers when the Mirror cannot be
reached, and a Mirror "not found" clears the entry.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

IDENTITY = "identity"
ATTESTATION_TOPIC = "attestation_topic"
IDENTITY_PROGRESS = "identity_progress"

_CREATE_CACHE = """
CREATE TABLE IF NOT EXISTS record_cache (
    kind        TEXT NOT NULL,
    account_id  TEXT NOT NULL,
    value_json  TEXT NOT NULL,
    updated_utc TEXT NOT NULL,
    PRIMARY KEY (kind, account_id)
);
"""


class RecordCache:
    """Keyed JSON record cache.

    Parameters
    ----------
    db_path:
        SQLite file path, or ``":memory:"`` for a process-local cache.
    """

    def __init__(self, db_path: Path | str = ":memory:") -> None:
        self._lock = threading.Lock()
        if str(db_path) == ":memory:":
            self._conn = sqlite3.connect(":memory:", check_same_thread=False)
        else:
            path = Path(db_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(path), check_same_thread=False)
            self._conn.execute("PRAGMA journal_mode=WAL")
        with self._lock:
            self._conn.execute(_CREATE_CACHE)
            self._conn.commit()

    def get(self, kind: str, account_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT value_json FROM record_cache WHERE kind = ? AND account_id = ?",
                (kind, account_id),
            ).fetchone()
        return json.loads(row[0]) if row else None

    def put(self, kind: str, account_id: str, value: dict[str, Any]) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO record_cache (kind, account_id, value_json, updated_utc)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(kind, account_id) DO UPDATE SET
                    value_json = excluded.value_json,
                    updated_utc = excluded.updated_utc
                """,
                (kind, account_id, json.dumps(value, sort_keys=True),
                 datetime.now(timezone.utc).isoformat()),
            )
            self._conn.commit()

    def invalidate(self, kind: str, account_id: str) -> bool:
        """Remove an entry.  Returns True if one existed."""
        with self._lock:
            cur = self._conn.execute(
                "DELETE FROM record_cache WHERE kind = ? AND account_id = ?",
                (kind, account_id),
            )
            self._conn.commit()
        if cur.rowcount:
            logger.info("Invalidated cached %s for %s", kind, account_id)
        return bool(cur.rowcount)

    def close(self) -> None:
        with self._lock:
            self._conn.close()
