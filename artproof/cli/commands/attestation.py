"""``artproof verify-attestation TOPIC SEQ``: re-hash an attestation."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.panel import Panel

from artproof.bridge.mirror import MirrorClient
from artproof.config import config
from artproof.core.attestation_publisher import AttestationPublisher
from artproof.core.errors import InvalidInput, MirrorUnavailable

console = Console()


def verify_attestation_cmd(
    topic_id: str = typer.Argument(..., help="Attestation topic id."),
    sequence_number: int = typer.Argument(..., help="Message sequence number."),
    content_hash: str = typer.Option(
        None, "--content-hash", "-c", help="Also require the payload to attest this hash."
    ),
) -> None:
    """Fetch an attestation from the Mirror and recompute its payload hash."""
    publisher = AttestationPublisher(None, MirrorClient.from_config(config), config=config)
    try:
        result = publisher.verify(topic_id, sequence_number, expected_content_hash=content_hash)
    except (InvalidInput, MirrorUnavailable) as exc:
        console.print(f"[bold red]Cannot verify:[/bold red] {exc}")
        raise typer.Exit(code=2) from exc

    if not result.found:
        console.print(f"[yellow]No attestation at {topic_id}:{sequence_number}[/yellow]")
        raise typer.Exit(code=1)

    status = "[bold green]VALID[/bold green]" if result.hash_valid else "[bold red]INVALID[/bold red]"
    console.print(
        Panel(
            "\n".join([
                f"[bold]Status:[/bold]     {status}",
                f"[bold]Creator:[/bold]    {result.payload.get('creator_did', '-')}",
                f"[bold]Content:[/bold]    {result.payload.get('content_hash', '-')}",
                f"[bold]Stored:[/bold]     {result.payload_hash}",
                f"[bold]Recomputed:[/bold] {result.recomputed_hash}",
                f"[bold]Consensus:[/bold]  {result.consensus_timestamp or '-'}",
            ]),
            title=f"Attestation {topic_id}:{sequence_number}",
            border_style="green" if result.hash_valid else "red",
        )
    )
    if not result.hash_valid:
        raise typer.Exit(code=1)
