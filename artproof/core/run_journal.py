"""Append-only, hash-chained run journal backed by SQLite.

The journal is the local record of what a pipeline run did, including
the ledger transaction ids each stage submitted.  Ledger transactions
cannot be undone, so a run that fails halfway must still say exactly
what already happened on-chain.

Design:
- Append-only: only ``append()`` writes; no update, no delete.
- Hash-chained: each entry includes the SHA-256 of the previous entry.
- WAL journal mode for concurrent readers.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from artproof.core.hasher import canonical_json_bytes, compute_entry_hash, sha256_hex
from artproof.models.journal import JournalEntry

_CREATE_JOURNAL = """
CREATE TABLE IF NOT EXISTS run_journal (
    id                   INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id             TEXT NOT NULL UNIQUE,
    run_id               TEXT NOT NULL,
    stage_id             TEXT NOT NULL,
    state_transition     TEXT NOT NULL,
    timestamp_utc        TEXT NOT NULL,
    input_hash           TEXT NOT NULL DEFAULT '',
    output_hash          TEXT NOT NULL DEFAULT '',
    transaction_ids_json TEXT NOT NULL DEFAULT '[]',
    detail_json          TEXT NOT NULL DEFAULT '{}',
    pipeline_version     TEXT NOT NULL,
    toolchain_version    TEXT NOT NULL,
    previous_entry_hash  TEXT NOT NULL DEFAULT '',
    entry_hash           TEXT NOT NULL UNIQUE
);
"""

_CREATE_IDX_RUN = """
CREATE INDEX IF NOT EXISTS idx_journal_run ON run_journal(run_id, id);
"""


class JournalIntegrityError(RuntimeError):
    """Raised when the hash chain is broken."""


def _checkpoint_hash(checkpoint: dict[str, Any]) -> str:
    body = {k: v for k, v in checkpoint.items() if k != "checkpoint_hash"}
    return sha256_hex(canonical_json_bytes(body))


class RunJournal:
    """Append-only, hash-chained run journal.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_JOURNAL)
            conn.execute(_CREATE_IDX_RUN)
            conn.commit()

    # ------------------------------------------------------------------
    # Append-only write
    # ------------------------------------------------------------------

    def append(self, entry: JournalEntry) -> JournalEntry:
        """Seal *entry* onto the run's chain and persist it.

        Returns the entry with ``previous_entry_hash`` and ``entry_hash`` set.
        """
        previous_hash = self._get_latest_hash(entry.run_id)

        entry_dict = entry.model_dump(mode="json")
        entry_dict["previous_entry_hash"] = previous_hash
        entry_dict["entry_hash"] = ""
        entry_hash = compute_entry_hash(entry_dict)

        sealed = entry.model_copy(
            update={"previous_entry_hash": previous_hash, "entry_hash": entry_hash}
        )
        self._insert(sealed)
        return sealed

    def _insert(self, entry: JournalEntry) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO run_journal
                    (entry_id, run_id, stage_id, state_transition, timestamp_utc,
                     input_hash, output_hash, transaction_ids_json, detail_json,
                     pipeline_version, toolchain_version,
                     previous_entry_hash, entry_hash)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.entry_id,
                    entry.run_id,
                    entry.stage_id,
                    entry.state_transition,
                    entry.model_dump(mode="json")["timestamp_utc"],
                    entry.input_hash,
                    entry.output_hash,
                    json.dumps(entry.transaction_ids),
                    json.dumps(entry.detail, sort_keys=True, default=str),
                    entry.pipeline_version,
                    entry.toolchain_version,
                    entry.previous_entry_hash,
                    entry.entry_hash,
                ),
            )
            conn.commit()

    def _get_latest_hash(self, run_id: str) -> str:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT entry_hash FROM run_journal WHERE run_id = ? ORDER BY id DESC LIMIT 1",
                (run_id,),
            ).fetchone()
        return row[0] if row else ""

    # ------------------------------------------------------------------
    # Queries (read-only)
    # ------------------------------------------------------------------

    def get_run_entries(self, run_id: str) -> list[JournalEntry]:
        """Return all entries for a run, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM run_journal WHERE run_id = ? ORDER BY id ASC",
                (run_id,),
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def get_all_run_ids(self) -> list[str]:
        """Return distinct run ids, most recent first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT run_id, MAX(id) AS last_id FROM run_journal "
                "GROUP BY run_id ORDER BY last_id DESC"
            ).fetchall()
        return [row[0] for row in rows]

    def transaction_ids(self, run_id: str) -> list[str]:
        """Every ledger transaction id recorded for a run, in order."""
        seen: list[str] = []
        for entry in self.get_run_entries(run_id):
            for tx_id in entry.transaction_ids:
                if tx_id not in seen:
                    seen.append(tx_id)
        return seen

    # ------------------------------------------------------------------
    # Chain verification
    # ------------------------------------------------------------------

    def verify_chain(self, run_id: str) -> bool:
        """Walk a run's entries and recheck every link and seal.

        Returns True, or raises ``JournalIntegrityError``.
        """
        prev_hash = ""
        for entry in self.get_run_entries(run_id):
            if entry.previous_entry_hash != prev_hash:
                raise JournalIntegrityError(
                    f"Chain broken at entry {entry.entry_id}: "
                    f"expected previous_hash={prev_hash!r}, "
                    f"got {entry.previous_entry_hash!r}"
                )
            expected_hash = compute_entry_hash(entry.model_dump(mode="json"))
            if entry.entry_hash != expected_hash:
                raise JournalIntegrityError(
                    f"Tampered entry {entry.entry_id}: "
                    f"expected hash={expected_hash!r}, got {entry.entry_hash!r}"
                )
            prev_hash = entry.entry_hash
        return True

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    def export_checkpoint(self, run_id: str) -> dict[str, Any]:
        """Snapshot a run's chain head and the transaction ids it recorded.

        Kept outside the journal (a file, a ticket, a topic message), a
        checkpoint catches a rewrite that recomputes every entry hash.
        """
        entries = self.get_run_entries(run_id)
        checkpoint = {
            "run_id": run_id,
            "entry_count": len(entries),
            "first_entry_hash": entries[0].entry_hash if entries else "",
            "head_hash": entries[-1].entry_hash if entries else "",
            "transaction_ids": self.transaction_ids(run_id),
            "exported_at": datetime.now(timezone.utc).isoformat(),
        }
        checkpoint["checkpoint_hash"] = _checkpoint_hash(checkpoint)
        return checkpoint

    def verify_against_checkpoint(self, run_id: str, checkpoint: dict[str, Any]) -> bool:
        """Check a run still extends the chain a checkpoint was taken from.

        Entries appended since are fine.  Returns True, or raises
        ``JournalIntegrityError``.
        """
        if checkpoint.get("run_id") != run_id:
            raise JournalIntegrityError(
                f"Checkpoint is for run {checkpoint.get('run_id')!r}, not {run_id!r}"
            )
        if checkpoint.get("checkpoint_hash") != _checkpoint_hash(checkpoint):
            raise JournalIntegrityError("Checkpoint was modified after export")

        entries = self.get_run_entries(run_id)
        count = int(checkpoint.get("entry_count", 0))
        if len(entries) < count:
            raise JournalIntegrityError(
                f"Run {run_id} has {len(entries)} entries, checkpoint saw {count}"
            )
        if count:
            if entries[0].entry_hash != checkpoint["first_entry_hash"]:
                raise JournalIntegrityError("First entry differs from the checkpoint")
            if entries[count - 1].entry_hash != checkpoint["head_hash"]:
                raise JournalIntegrityError(
                    f"Entry {count} differs from the checkpoint head; the chain was rewritten"
                )
        recorded = self.transaction_ids(run_id)
        if recorded[: len(checkpoint["transaction_ids"])] != checkpoint["transaction_ids"]:
            raise JournalIntegrityError("Transaction ids differ from the checkpoint")
        return self.verify_chain(run_id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_entry(row: tuple) -> JournalEntry:
        (
            _id,
            entry_id,
            run_id,
            stage_id,
            state_transition,
            timestamp_utc,
            input_hash,
            output_hash,
            transaction_ids_json,
            detail_json,
            pipeline_version,
            toolchain_version,
            previous_entry_hash,
            entry_hash,
        ) = row
        return JournalEntry(
            entry_id=entry_id,
            run_id=run_id,
            stage_id=stage_id,
            state_transition=state_transition,
            timestamp_utc=timestamp_utc,
            input_hash=input_hash,
            output_hash=output_hash,
            transaction_ids=json.loads(transaction_ids_json),
            detail=json.loads(detail_json),
            pipeline_version=pipeline_version,
            toolchain_version=toolchain_version,
            previous_entry_hash=previous_entry_hash,
            entry_hash=entry_hash,
        )
