"""Pipeline stage models: deterministic transitions."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class StageState(str, Enum):
    """Strict state model for each pipeline stage."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    FAILED = "failed"
    PASSED = "passed"
    SKIPPED = "skipped"


# Terminal states (PASSED, SKIPPED) have no outgoing transitions.
VALID_TRANSITIONS: dict[StageState, set[StageState]] = {
    StageState.NOT_STARTED: {StageState.RUNNING, StageState.SKIPPED},
    StageState.RUNNING: {StageState.PASSED, StageState.FAILED},
    StageState.FAILED: {StageState.NOT_STARTED},  # retry
    StageState.PASSED: set(),
    StageState.SKIPPED: set(),
}

COMPLETED_STATES: frozenset[StageState] = frozenset({StageState.PASSED, StageState.SKIPPED})


class StageDefinition(BaseModel):
    """A pipeline stage and the stages that must complete before it."""

    model_config = ConfigDict(frozen=True)

    stage_id: str
    display_name: str
    ordinal: int
    prerequisites: list[str] = []
    submits_transactions: bool = False


PIPELINE_STAGES: list[StageDefinition] = [
    StageDefinition(
        stage_id="fingerprint",
        display_name="Content Fingerprint",
        ordinal=0,
    ),
    StageDefinition(
        stage_id="identity",
        display_name="Identity (DID)",
        ordinal=1,
        prerequisites=["fingerprint"],
        submits_transactions=True,
    ),
    StageDefinition(
        stage_id="anchor",
        display_name="Anchor Artwork",
        ordinal=2,
        prerequisites=["fingerprint"],
    ),
    StageDefinition(
        stage_id="attestation",
        display_name="Publish Attestation",
        ordinal=3,
        prerequisites=["identity", "anchor"],
        submits_transactions=True,
    ),
    StageDefinition(
        stage_id="mint",
        display_name="Mint NFT",
        ordinal=4,
        prerequisites=["attestation"],
        submits_transactions=True,
    ),
    StageDefinition(
        stage_id="record",
        display_name="Record on DID Topic",
        ordinal=5,
        prerequisites=["mint"],
        submits_transactions=True,
    ),
]
