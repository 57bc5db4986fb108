"""Provenance pipeline: the central coordinator for one artwork.

Wires the IdentityResolver, AttestationPublisher and MintingOrchestrator
to one Signer, Mirror and Anchor, and runs the stages in order:

    fingerprint -> identity -> anchor -> attestation -> mint -> record

Every stage transition is journaled with the ledger transaction ids it
produced.  A failing stage is recorded as FAILED with the error's
context and the error is re-raised; nothing already submitted is
compensated, the pipeline only stops.

A PASSED entry also keeps the stage's result, so running the same
``run_id`` again resumes: stages already passed are not re-submitted and
their journaled results are reused.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, TypeVar

from pydantic import BaseModel

from artproof.bridge.anchor import Anchor
from artproof.bridge.mirror import Mirror
from artproof.bridge.signer import Signer
from artproof.config import ArtproofConfig
from artproof.core.attestation_publisher import AttestationPublisher
from artproof.core.content_addressing import compute_content_fingerprint
from artproof.core.errors import InvalidInput, ProvenanceError, TransactionFailed
from artproof.core.finalization import finalize_ai_artwork, finalize_painted_artwork
from artproof.core.hasher import compute_input_hash, compute_output_hash, sha256_hex
from artproof.core.identity_resolver import CreationPrompt, IdentityResolver
from artproof.core.minting import MintingOrchestrator, ProgressCallback
from artproof.core.poller import MirrorPoller, PollPolicy
from artproof.core.production_guard import enforce_production_constraints
from artproof.core.record_cache import RecordCache
from artproof.core.run_journal import RunJournal
from artproof.core.stage_machine import StageMachine
from artproof.models.attestation import AttestationRecord
from artproof.models.content import ContentFingerprint, FinalizedArtwork
from artproof.models.identity import IdentityProfile, IdentityRecord
from artproof.models.journal import JournalEntry
from artproof.models.minting import CollectionOptions, MintWorkflowResult
from artproof.models.pipeline import ProvenanceResult
from artproof.models.stages import StageState

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _json_safe(value: Any) -> Any:
    return json.loads(json.dumps(value, default=str))


def _result_json(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return _json_safe(value)


class ProvenancePipeline:
    """Runs the provenance stages for one artwork per run.

    Parameters
    ----------
    signer, mirror, anchor:
        The injected capabilities.
    config:
        Runtime configuration.  Uses env/default config if not provided.
    journal, cache, poller:
        Override the subsystems built from config (tests pass temp paths).
    run_id:
        Resume an existing run by ID. Creates new if None.  Stages the
        journal already shows as PASSED are not run again.
    creation_prompt, document_reader:
        Passed through to ``IdentityResolver``.
    """

    def __init__(
        self,
        signer: Signer,
        mirror: Mirror,
        anchor: Anchor,
        *,
        config: ArtproofConfig | None = None,
        journal: RunJournal | None = None,
        cache: RecordCache | None = None,
        poller: MirrorPoller | None = None,
        run_id: str | None = None,
        creation_prompt: CreationPrompt | None = None,
        document_reader: Callable[[str], str | None] | None = None,
    ) -> None:
        self.config = config or ArtproofConfig()
        enforce_production_constraints(self.config)

        self.signer = signer
        self.mirror = mirror
        self.anchor = anchor
        self.journal = journal or RunJournal(self.config.journal_path)
        self.stage_machine = StageMachine(self.journal)
        self.cache = cache or RecordCache(self.config.cache_path)
        self.poller = poller or MirrorPoller(PollPolicy.from_config(self.config))

        self.identity = IdentityResolver(
            signer, mirror,
            poller=self.poller, cache=self.cache, config=self.config,
            creation_prompt=creation_prompt,
            document_reader=document_reader,
        )
        self.attestations = AttestationPublisher(
            signer, mirror, poller=self.poller, cache=self.cache, config=self.config
        )
        self.minting = MintingOrchestrator(
            signer, mirror, anchor, poller=self.poller, config=self.config
        )

        ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        self.run_id = run_id or f"ap-{ts}-{uuid.uuid4().hex[:4]}"

    # ------------------------------------------------------------------
    # Stage execution
    # ------------------------------------------------------------------

    def execute_stage(
        self,
        stage_id: str,
        inputs: dict[str, Any],
        handler: Callable[[], tuple[T, dict[str, Any]]],
        *,
        restore: Callable[[Any], T] | None = None,
    ) -> T:
        """Run one stage through RUNNING -> PASSED/FAILED.

        *handler* returns ``(value, outputs)``; ``outputs`` is hashed into the
        journal and may carry ``transaction_ids``.  The value itself is kept
        on the PASSED entry.

        With *restore*, a stage that already PASSED in this run is not run
        again: its journaled value is passed to *restore* instead.  A stage
        left FAILED or RUNNING (interrupted) is reset and retried.
        """
        input_hash = compute_input_hash(stage_id, _json_safe(inputs))
        state = self.stage_machine.get_current_state(self.run_id, stage_id)
        if state == StageState.PASSED and restore is not None:
            return restore(self._passed_result(stage_id, input_hash))
        if state == StageState.RUNNING:
            self.stage_machine.transition(
                self.run_id, stage_id, StageState.FAILED,
                input_hash=input_hash,
                detail={"error_type": "Interrupted", "error": "stage never finished"},
            )
            state = StageState.FAILED
        if state == StageState.FAILED:
            logger.info("Retrying stage %s in run %s", stage_id, self.run_id)
            self.stage_machine.transition(self.run_id, stage_id, StageState.NOT_STARTED)

        self.stage_machine.transition(
            self.run_id, stage_id, StageState.RUNNING, input_hash=input_hash
        )
        try:
            value, outputs = handler()
        except Exception as exc:
            detail: dict[str, Any] = {"error_type": type(exc).__name__, "error": str(exc)}
            tx_ids: list[str] = []
            if isinstance(exc, ProvenanceError):
                detail["context"] = _json_safe(exc.context)
                if exc.context.get("transaction_id"):
                    tx_ids.append(str(exc.context["transaction_id"]))
            self.stage_machine.transition(
                self.run_id, stage_id, StageState.FAILED,
                input_hash=input_hash,
                output_hash=compute_output_hash(stage_id, {"error": str(exc)}),
                transaction_ids=tx_ids,
                detail=detail,
            )
            logger.error("Stage %s failed in run %s: %s", stage_id, self.run_id, exc)
            raise

        outputs = _json_safe(outputs)
        self.stage_machine.transition(
            self.run_id, stage_id, StageState.PASSED,
            input_hash=input_hash,
            output_hash=compute_output_hash(stage_id, outputs),
            transaction_ids=[t for t in outputs.get("transaction_ids", []) if t],
            detail={"result": _result_json(value)},
        )
        logger.info("Stage %s passed in run %s", stage_id, self.run_id)
        return value

    def _passed_result(self, stage_id: str, input_hash: str) -> Any:
        passed = [
            e for e in self.journal.get_run_entries(self.run_id)
            if e.stage_id == stage_id and e.state_transition.endswith("->passed")
        ]
        if not passed or "result" not in passed[-1].detail:
            raise InvalidInput(
                f"Stage {stage_id} of run {self.run_id} has no journaled result to resume from",
                stage_id=stage_id,
            )
        if passed[-1].input_hash != input_hash:
            raise InvalidInput(
                f"Run {self.run_id} already passed {stage_id} with different inputs",
                stage_id=stage_id,
            )
        logger.info("Stage %s already passed in run %s, reusing its result", stage_id, self.run_id)
        return passed[-1].detail["result"]

    # ------------------------------------------------------------------
    # Full run
    # ------------------------------------------------------------------

    def run(
        self,
        image_bytes: bytes,
        metadata: dict[str, Any],
        *,
        owner_account: str | None = None,
        profile: IdentityProfile | None = None,
        collection_options: CollectionOptions | None = None,
        ai_prompt: str | None = None,
        image_format: str = "png",
        on_progress: ProgressCallback | None = None,
    ) -> ProvenanceResult:
        """Take one artwork from raw bytes to a minted, attested NFT.

        Calling this again with the ``run_id`` of an unfinished run picks up
        at the first stage that has not passed.  The artwork and metadata
        must be the same as before, otherwise ``InvalidInput`` is raised.
        """
        owner = owner_account or self.signer.account_id
        if self.journal.get_run_entries(self.run_id):
            logger.info("Resuming provenance run %s for %s", self.run_id, owner)
        else:
            self.stage_machine.initialize_run(self.run_id)
            logger.info("Starting provenance run %s for %s", self.run_id, owner)

        image_digest = (
            sha256_hex(bytes(image_bytes)) if isinstance(image_bytes, (bytes, bytearray)) else ""
        )
        fingerprint = self.execute_stage(
            "fingerprint",
            {"metadata": metadata, "image_sha256": image_digest},
            lambda: (
                (fp := compute_content_fingerprint(image_bytes, metadata)),
                {"content_hash": fp.content_hash},
            ),
            restore=ContentFingerprint.model_validate,
        )

        identity = self.execute_stage(
            "identity",
            {"account_id": owner},
            lambda: (
                (rec := self.identity.ensure_before_use(owner, profile)),
                {"did": rec.did, "topic_id": rec.topic_id},
            ),
            restore=IdentityRecord.model_validate,
        )

        def _anchor():
            if ai_prompt:
                artwork = finalize_ai_artwork(
                    image_bytes, metadata, self.anchor, ai_prompt, image_format=image_format
                )
            else:
                artwork = finalize_painted_artwork(
                    image_bytes, metadata, self.anchor, image_format=image_format
                )
            if artwork.fingerprint.content_hash != fingerprint.content_hash:
                raise TransactionFailed("content changed between fingerprint and anchor")
            return artwork, {"image_url": artwork.image_url}

        artwork = self.execute_stage(
            "anchor", {"content_hash": fingerprint.content_hash}, _anchor,
            restore=FinalizedArtwork.model_validate,
        )
        creation_method = artwork.enhanced_metadata.get("generation_method")

        attestation = self.execute_stage(
            "attestation",
            {"did": identity.did, "content_hash": fingerprint.content_hash},
            lambda: (
                (att := self.attestations.publish(
                    identity.did,
                    fingerprint.content_hash,
                    creator_account=owner,
                    nft_name=metadata.get("name"),
                    creator_account_id=owner,
                    image_hash=fingerprint.image_hash,
                    metadata_hash=fingerprint.metadata_hash,
                    image_url=artwork.image_url,
                    creation_method=creation_method,
                )),
                {
                    "transaction_ids": [att.transaction_id],
                    "topic_id": att.topic_id,
                    "sequence_number": att.sequence_number,
                    "payload_hash": att.payload_hash,
                },
            ),
            restore=AttestationRecord.model_validate,
        )

        mint_metadata = {
            **artwork.enhanced_metadata,
            "creator_did": identity.did,
            "attestation": {
                "topic_id": attestation.topic_id,
                "sequence_number": attestation.sequence_number,
                "transaction_id": attestation.transaction_id,
                "payload_hash": attestation.payload_hash,
            },
        }
        minted = self.execute_stage(
            "mint",
            {"owner": owner, "content_hash": fingerprint.content_hash},
            lambda: (
                (wf := self.minting.run_workflow(
                    owner, mint_metadata, collection_options, on_progress
                )),
                {
                    "transaction_ids": [
                        wf.collection.transaction_id,
                        wf.association.transaction_id,
                        wf.mint.transaction_id,
                    ],
                    "nft_id": wf.mint.nft_id,
                    "pointer": wf.mint.on_chain_metadata_pointer,
                },
            ),
            restore=MintWorkflowResult.model_validate,
        )

        record_tx = self.execute_stage(
            "record",
            {"did": identity.did, "nft_id": minted.mint.nft_id},
            lambda: (
                (tx := self.identity.record_creation(
                    identity,
                    minted.mint,
                    name=str(metadata.get("name")),
                    details={
                        "ipfs_hash": minted.mint.on_chain_metadata_pointer,
                        "image_hash": fingerprint.image_hash,
                        "content_hash": fingerprint.content_hash,
                        "creator": owner,
                        "creation_type": creation_method,
                    },
                )),
                {"transaction_ids": [tx]},
            ),
            restore=str,
        )

        logger.info("Run %s complete: %s", self.run_id, minted.mint.nft_id)
        return ProvenanceResult(
            run_id=self.run_id,
            artwork=artwork,
            identity=identity,
            attestation=attestation,
            minting=minted,
            creation_record_transaction_id=record_tx,
        )

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def get_states(self) -> dict[str, StageState]:
        return self.stage_machine.get_all_states(self.run_id)

    def get_run_entries(self) -> list[JournalEntry]:
        return self.journal.get_run_entries(self.run_id)

    def verify_chain(self) -> bool:
        """Verify the hash chain integrity of the current run's journal."""
        return self.journal.verify_chain(self.run_id)
