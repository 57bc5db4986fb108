"""Run journal entry model: append-only, hash-chained.

One entry per stage transition.  Entries also carry the ledger
transaction ids a stage submitted, so a run that failed halfway still
says exactly what already happened on-chain.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class JournalEntry(BaseModel):
    """A single entry in the run journal."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    stage_id: str
    state_transition: str  # "from_state->to_state", e.g. "not_started->running"
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    input_hash: str = ""
    output_hash: str = ""
    transaction_ids: list[str] = []
    detail: dict[str, Any] = {}  # error type/message and context on failure
    pipeline_version: str = "0.1.0"
    toolchain_version: str = "pydantic-v2+typer+rich+httpx+hatchling"
    previous_entry_hash: str = ""
    entry_hash: str = ""
