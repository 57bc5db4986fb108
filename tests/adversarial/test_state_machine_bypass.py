"""Adversarial tests: stage ordering bypass attempts.

These tests verify that:
1. Invalid state transitions are always rejected
2. Prerequisites cannot be bypassed (no mint before attestation)
3. Terminal states cannot be exited
4. Rejected attempts leave no trace in the journal
"""

from __future__ import annotations

import pytest

from artproof.core.run_journal import RunJournal
from artproof.core.stage_machine import (
    InvalidTransitionError,
    PrerequisiteNotMetError,
    StageMachine,
)
from artproof.models.stages import StageState


class TestPrerequisiteBypassAttempts:
    """Try to start stages without satisfying prerequisites."""

    @pytest.fixture
    def sm(self, tmp_path) -> tuple[StageMachine, RunJournal, str]:
        journal = RunJournal(tmp_path / "journal.db")
        sm = StageMachine(journal)
        run_id = "ap-adversarial-sm"
        sm.initialize_run(run_id)
        return sm, journal, run_id

    @pytest.mark.parametrize("stage_id", ["identity", "anchor", "attestation", "mint", "record"])
    def test_cannot_start_out_of_order(self, sm, stage_id):
        machine, _, run_id = sm
        with pytest.raises(PrerequisiteNotMetError):
            machine.transition(run_id, stage_id, StageState.RUNNING)

    def test_mint_blocked_by_failed_attestation(self, sm):
        machine, _, run_id = sm
        for stage_id in ("fingerprint", "identity", "anchor"):
            machine.transition(run_id, stage_id, StageState.RUNNING)
            machine.transition(run_id, stage_id, StageState.PASSED)
        machine.transition(run_id, "attestation", StageState.RUNNING)
        machine.transition(run_id, "attestation", StageState.FAILED)
        with pytest.raises(PrerequisiteNotMetError, match="attestation is failed"):
            machine.transition(run_id, "mint", StageState.RUNNING)

    def test_rejected_transition_not_journaled(self, sm):
        machine, journal, run_id = sm
        with pytest.raises(PrerequisiteNotMetError):
            machine.transition(run_id, "mint", StageState.RUNNING)
        assert journal.get_run_entries(run_id) == []


class TestTransitionAbuse:

    @pytest.fixture
    def sm(self, tmp_path) -> tuple[StageMachine, str]:
        sm = StageMachine(RunJournal(tmp_path / "journal.db"))
        run_id = "ap-adversarial-tr"
        sm.initialize_run(run_id)
        return sm, run_id

    def test_skip_running(self, sm):
        machine, run_id = sm
        with pytest.raises(InvalidTransitionError):
            machine.transition(run_id, "fingerprint", StageState.PASSED)

    def test_failed_cannot_jump_to_passed(self, sm):
        machine, run_id = sm
        machine.transition(run_id, "fingerprint", StageState.RUNNING)
        machine.transition(run_id, "fingerprint", StageState.FAILED)
        with pytest.raises(InvalidTransitionError):
            machine.transition(run_id, "fingerprint", StageState.PASSED)

    @pytest.mark.parametrize("target", list(StageState))
    def test_passed_is_terminal(self, sm, target):
        machine, run_id = sm
        machine.transition(run_id, "fingerprint", StageState.RUNNING)
        machine.transition(run_id, "fingerprint", StageState.PASSED)
        with pytest.raises(InvalidTransitionError):
            machine.transition(run_id, "fingerprint", target)

    def test_resumed_machine_keeps_terminal_state(self, tmp_path):
        journal = RunJournal(tmp_path / "journal.db")
        first = StageMachine(journal)
        first.initialize_run("r")
        first.transition("r", "fingerprint", StageState.RUNNING)
        first.transition("r", "fingerprint", StageState.PASSED)
        with pytest.raises(InvalidTransitionError):
            StageMachine(journal).transition("r", "fingerprint", StageState.RUNNING)
