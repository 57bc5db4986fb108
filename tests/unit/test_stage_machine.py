"""Tests for the StageMachine: state transitions and prerequisite enforcement."""

from __future__ import annotations

import pytest

from artproof.core.stage_machine import (
    InvalidTransitionError,
    PrerequisiteNotMetError,
    StageMachine,
)
from artproof.models.stages import PIPELINE_STAGES, StageState


def _pass(machine: StageMachine, run_id: str, *stage_ids: str) -> None:
    for stage_id in stage_ids:
        machine.transition(run_id, stage_id, StageState.RUNNING)
        machine.transition(run_id, stage_id, StageState.PASSED)


class TestStageMachine:
    def test_initialize_run(self, stage_machine: StageMachine, run_id: str):
        states = stage_machine.initialize_run(run_id)
        assert all(s == StageState.NOT_STARTED for s in states.values())
        assert len(states) == len(PIPELINE_STAGES)

    def test_stage_order(self, stage_machine: StageMachine):
        assert stage_machine.stage_ids == [
            "fingerprint", "identity", "anchor", "attestation", "mint", "record",
        ]

    def test_transition_to_running(self, stage_machine: StageMachine, run_id: str):
        stage_machine.initialize_run(run_id)
        entry = stage_machine.transition(run_id, "fingerprint", StageState.RUNNING)
        assert entry.state_transition == "not_started->running"
        assert stage_machine.get_current_state(run_id, "fingerprint") == StageState.RUNNING

    def test_transition_records_transaction_ids(self, stage_machine: StageMachine, run_id: str):
        stage_machine.initialize_run(run_id)
        _pass(stage_machine, run_id, "fingerprint", "identity", "anchor")
        stage_machine.transition(run_id, "attestation", StageState.RUNNING)
        entry = stage_machine.transition(
            run_id, "attestation", StageState.PASSED, transaction_ids=["0.0.1@5.000000000"]
        )
        assert entry.transaction_ids == ["0.0.1@5.000000000"]

    def test_invalid_transition_rejected(self, stage_machine: StageMachine, run_id: str):
        stage_machine.initialize_run(run_id)
        with pytest.raises(InvalidTransitionError):
            # Cannot go directly from NOT_STARTED to PASSED
            stage_machine.transition(run_id, "fingerprint", StageState.PASSED)

    def test_passed_is_terminal(self, stage_machine: StageMachine, run_id: str):
        stage_machine.initialize_run(run_id)
        _pass(stage_machine, run_id, "fingerprint")
        with pytest.raises(InvalidTransitionError):
            stage_machine.transition(run_id, "fingerprint", StageState.RUNNING)

    def test_unknown_stage(self, stage_machine: StageMachine, run_id: str):
        with pytest.raises(InvalidTransitionError):
            stage_machine.transition(run_id, "teleport", StageState.RUNNING)

    def test_prerequisite_enforcement(self, stage_machine: StageMachine, run_id: str):
        stage_machine.initialize_run(run_id)
        with pytest.raises(PrerequisiteNotMetError, match="fingerprint"):
            stage_machine.transition(run_id, "identity", StageState.RUNNING)

    def test_attestation_needs_identity_and_anchor(self, stage_machine: StageMachine, run_id: str):
        stage_machine.initialize_run(run_id)
        _pass(stage_machine, run_id, "fingerprint", "identity")
        assert stage_machine.blocking_reasons(run_id, "attestation") == ["anchor is not_started"]
        _pass(stage_machine, run_id, "anchor")
        assert stage_machine.blocking_reasons(run_id, "attestation") == []

    def test_failed_stage_can_retry(self, stage_machine: StageMachine, run_id: str):
        stage_machine.initialize_run(run_id)
        stage_machine.transition(run_id, "fingerprint", StageState.RUNNING)
        stage_machine.transition(run_id, "fingerprint", StageState.FAILED)
        stage_machine.transition(run_id, "fingerprint", StageState.NOT_STARTED)
        _pass(stage_machine, run_id, "fingerprint")
        assert stage_machine.get_current_state(run_id, "fingerprint") == StageState.PASSED

    def test_skipped_counts_as_complete(self, stage_machine: StageMachine, run_id: str):
        stage_machine.initialize_run(run_id)
        stage_machine.transition(run_id, "fingerprint", StageState.SKIPPED)
        entry = stage_machine.transition(run_id, "anchor", StageState.RUNNING)
        assert entry.stage_id == "anchor"

    def test_state_rebuilt_from_journal(self, journal, run_id: str):
        first = StageMachine(journal)
        first.initialize_run(run_id)
        _pass(first, run_id, "fingerprint")

        resumed = StageMachine(journal)
        assert resumed.get_current_state(run_id, "fingerprint") == StageState.PASSED
        assert resumed.get_current_state(run_id, "identity") == StageState.NOT_STARTED
        resumed.transition(run_id, "identity", StageState.RUNNING)
