"""Deterministic stage state machine for provenance runs.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- Prerequisites PASSED or SKIPPED before a stage may run
- Every transition recorded in the run journal
"""

from __future__ import annotations

from typing import Any

from artproof.core.run_journal import RunJournal
from artproof.models.journal import JournalEntry
from artproof.models.stages import (
    COMPLETED_STATES,
    PIPELINE_STAGES,
    VALID_TRANSITIONS,
    StageDefinition,
    StageState,
)


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


class PrerequisiteNotMetError(RuntimeError):
    """Raised when a stage is started before its prerequisites completed."""


class StageMachine:
    """Tracks stage states per run and records transitions in the journal.

    Parameters
    ----------
    journal:
        The run journal to record transitions into.
    stages:
        Stage definitions; defaults to ``PIPELINE_STAGES``.
    """

    def __init__(
        self, journal: RunJournal, stages: list[StageDefinition] | None = None
    ) -> None:
        self._journal = journal
        self._stages = {sd.stage_id: sd for sd in (stages or PIPELINE_STAGES)}
        # run_id -> {stage_id -> StageState}
        self._states: dict[str, dict[str, StageState]] = {}

    @property
    def stage_ids(self) -> list[str]:
        return sorted(self._stages, key=lambda sid: self._stages[sid].ordinal)

    # ------------------------------------------------------------------
    # State management
    # ------------------------------------------------------------------

    def initialize_run(self, run_id: str) -> dict[str, StageState]:
        states = {sid: StageState.NOT_STARTED for sid in self._stages}
        self._states[run_id] = states
        return dict(states)

    def get_current_state(self, run_id: str, stage_id: str) -> StageState:
        return self.get_all_states(run_id).get(stage_id, StageState.NOT_STARTED)

    def get_all_states(self, run_id: str) -> dict[str, StageState]:
        if run_id not in self._states:
            self._rebuild_state(run_id)
        return dict(self._states[run_id])

    def _rebuild_state(self, run_id: str) -> None:
        """Rebuild in-memory state from the journal (for resume)."""
        states = {sid: StageState.NOT_STARTED for sid in self._stages}
        for entry in self._journal.get_run_entries(run_id):
            _, _, to_state = entry.state_transition.partition("->")
            if entry.stage_id in states and to_state:
                states[entry.stage_id] = StageState(to_state)
        self._states[run_id] = states

    def blocking_reasons(self, run_id: str, stage_id: str) -> list[str]:
        states = self.get_all_states(run_id)
        return [
            f"{prereq} is {states.get(prereq, StageState.NOT_STARTED).value}"
            for prereq in self._stages[stage_id].prerequisites
            if states.get(prereq) not in COMPLETED_STATES
        ]

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def transition(
        self,
        run_id: str,
        stage_id: str,
        target_state: StageState,
        *,
        input_hash: str = "",
        output_hash: str = "",
        transaction_ids: list[str] | None = None,
        detail: dict[str, Any] | None = None,
    ) -> JournalEntry:
        """Move *stage_id* to *target_state* and return the sealed journal entry."""
        if stage_id not in self._stages:
            raise InvalidTransitionError(f"Unknown stage {stage_id!r}")
        if run_id not in self._states:
            self._rebuild_state(run_id)

        current = self._states[run_id][stage_id]
        allowed = VALID_TRANSITIONS.get(current, set())
        if target_state not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition {stage_id} from {current.value} to {target_state.value}. "
                f"Allowed: {sorted(s.value for s in allowed)}"
            )

        if target_state == StageState.RUNNING:
            reasons = self.blocking_reasons(run_id, stage_id)
            if reasons:
                raise PrerequisiteNotMetError(
                    f"Cannot start {stage_id}: {'; '.join(reasons)}"
                )

        entry = JournalEntry(
            run_id=run_id,
            stage_id=stage_id,
            state_transition=f"{current.value}->{target_state.value}",
            input_hash=input_hash,
            output_hash=output_hash,
            transaction_ids=transaction_ids or [],
            detail=detail or {},
        )
        sealed = self._journal.append(entry)
        self._states[run_id][stage_id] = target_state
        return sealed
