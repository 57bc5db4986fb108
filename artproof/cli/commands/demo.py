"""``artproof demo``: run the full pipeline on a simulated ledger.

Creates a creator and a buyer account, takes a synthetic artwork from
bytes to a minted, attested NFT, lists it, and buys it through the
marketplace flow.  Nothing leaves the process; the journal and anchor
store are written under ``--workdir``.
"""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from artproof.bridge.anchor import LocalAnchor
from artproof.bridge.simulated import TINYBARS_PER_HBAR, SimulatedLedger
from artproof.config import ArtproofConfig
from artproof.core.content_addressing import format_fingerprint
from artproof.core.errors import PartialTransferFailure, ProvenanceError
from artproof.core.orchestrator import ProvenancePipeline
from artproof.marketplace import MarketplaceTransferVerifier
from artproof.models.identity import IdentityProfile
from artproof.models.stages import StageState

console = Console()

_STATE_STYLE = {
    StageState.PASSED: "[green]passed[/green]",
    StageState.FAILED: "[red]failed[/red]",
    StageState.RUNNING: "[yellow]running[/yellow]",
    StageState.NOT_STARTED: "[dim]not started[/dim]",
    StageState.SKIPPED: "[dim]skipped[/dim]",
}


def _demo_image() -> bytes:
    stamp = datetime.now(timezone.utc).isoformat().encode()
    return b"\x89PNG\r\n\x1a\n" + hashlib.sha256(stamp).digest() * 32


def demo_cmd(
    delay: float = typer.Option(
        0.2, "--delay", "-d", help="Mirror poll delay in seconds."
    ),
    lag: int = typer.Option(
        1, "--lag", help="Simulated Mirror indexing lag, in reads."
    ),
    workdir: Path = typer.Option(
        Path(".artproof/demo"), "--workdir", help="Directory for the journal and anchor store."
    ),
    fail_transfer: bool = typer.Option(
        False, "--fail-transfer", help="Make the contract keep the NFT after payment."
    ),
) -> None:
    """Run fingerprint -> identity -> anchor -> attestation -> mint -> record, then a sale."""
    ledger = SimulatedLedger("testnet", index_lag=lag)
    creator = ledger.create_account(balance_hbar=100)
    buyer = ledger.create_account(balance_hbar=100)
    marketplace = ledger.deploy_marketplace()

    cfg = ArtproofConfig(
        environment="demo",
        network="testnet",
        journal_path=workdir / "journal.db",
        cache_path=workdir / "records.db",
        anchor_path=workdir / "anchor",
        marketplace_operator_id=marketplace,
        poll_initial_delay=delay,
        poll_step=delay,
        poll_max_delay=delay,
        transfer_retry_delay=delay,
        association_settle_delay=delay,
    )
    pipeline = ProvenancePipeline(
        ledger.signer_for(creator),
        ledger,
        LocalAnchor(cfg.anchor_path, cfg.anchor_base_url),
        config=cfg,
        document_reader=ledger.file_contents,
    )

    console.print()
    console.print(
        Panel(
            "[bold]Artproof Demo[/bold]\n\n"
            f"Creator {creator}, buyer {buyer}, marketplace {marketplace}.\n"
            f"Mirror indexing lag: {lag} read(s).",
            border_style="cyan",
            padding=(1, 2),
        )
    )

    metadata = {
        "name": "Raven Over the Forge",
        "description": "A synthetic artwork for the provenance demo.",
        "attributes": [
            {"trait_type": "palette", "value": "ember"},
            {"trait_type": "medium", "value": "generative"},
        ],
    }

    def _progress(step: str, message: str) -> None:
        console.print(f"  [dim]{step}:[/dim] {message}")

    try:
        result = pipeline.run(
            _demo_image(),
            metadata,
            profile=IdentityProfile(name="Demo Artist", bio="Made by artproof demo"),
            ai_prompt="a raven over a forge at dusk",
            on_progress=_progress,
        )
    except ProvenanceError as exc:
        console.print(f"[bold red]Pipeline failed:[/bold red] {exc}")
        _print_states(pipeline)
        raise typer.Exit(code=1) from exc

    _print_states(pipeline)
    did_ok = pipeline.identity.verify_did(result.identity.did)
    console.print(
        Panel(
            "\n".join([
                f"[bold]Run:[/bold]          {result.run_id}",
                f"[bold]Content:[/bold]      {format_fingerprint(result.artwork.fingerprint.content_hash)}",
                f"[bold]DID:[/bold]          {result.identity.did}"
                f" ({'verified' if did_ok else 'UNVERIFIED'})",
                f"[bold]Attestation:[/bold]  {result.attestation.attestation_id}",
                f"[bold]NFT:[/bold]          {result.nft_id}",
                f"[bold]Pointer:[/bold]      {result.minting.mint.on_chain_metadata_pointer}",
            ]),
            title="[bold]Provenance[/bold]",
            border_style="green",
        )
    )

    if not result.attestation.is_sequence_pending:
        check = pipeline.attestations.verify(
            result.attestation.topic_id,
            result.attestation.sequence_number,  # type: ignore[arg-type]
            expected_content_hash=result.artwork.fingerprint.content_hash,
        )
        verdict = "[green]valid[/green]" if check.hash_valid else "[red]INVALID[/red]"
        console.print(f"Attestation re-check: {verdict}")

    # Sale
    mint = result.minting.mint
    ledger.drop_nft_transfers = fail_transfer
    seller_side = MarketplaceTransferVerifier(ledger.signer_for(creator), ledger, config=cfg)
    try:
        seller_side.grant_pre_approval(mint.collection_id, creator)
    except ProvenanceError as exc:
        console.print(f"[bold red]Listing approval failed:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc
    listing = ledger.list_nft(creator, mint.collection_id, mint.serial_number, 5 * TINYBARS_PER_HBAR)
    verifier = MarketplaceTransferVerifier(
        ledger.signer_for(buyer), ledger, listings=ledger, config=cfg
    )
    console.print(f"\n[cyan]>>> Buying listing {listing.listing_id} as {buyer}[/cyan]")
    try:
        outcome = verifier.complete_purchase(listing, buyer)
    except PartialTransferFailure as exc:
        console.print(f"[bold yellow]Partial failure:[/bold yellow] {exc.outcome.message}")
        raise typer.Exit(code=1) from exc
    except ProvenanceError as exc:
        console.print(f"[bold red]Purchase failed:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc
    console.print(f"[bold green]{outcome.message}[/bold green] (owner {outcome.current_owner})")

    valid = pipeline.verify_chain()
    console.print(f"Journal hash chain: {'[green]valid[/green]' if valid else '[red]BROKEN[/red]'}")


def _print_states(pipeline: ProvenancePipeline) -> None:
    table = Table(title=f"Run {pipeline.run_id}")
    table.add_column("Stage", style="cyan")
    table.add_column("State")
    table.add_column("Transactions")
    tx_by_stage: dict[str, list[str]] = {}
    for entry in pipeline.get_run_entries():
        tx_by_stage.setdefault(entry.stage_id, []).extend(entry.transaction_ids)
    for stage_id, state in pipeline.get_states().items():
        table.add_row(stage_id, _STATE_STYLE[state], "\n".join(tx_by_stage.get(stage_id, [])))
    console.print(table)
