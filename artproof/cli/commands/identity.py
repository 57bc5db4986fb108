"""``artproof check-did ACCOUNT|DID``: look up a DID on the Mirror.

An account id is looked up through its identity topic; a DID string is
resolved directly from the topic it names.
"""

from __future__ import annotations

import typer
from rich.console import Console
from rich.panel import Panel

from artproof.bridge.mirror import MirrorClient
from artproof.config import config
from artproof.core.errors import InvalidInput, MirrorUnavailable
from artproof.core.identity_resolver import IdentityResolver
from artproof.core.record_cache import RecordCache
from artproof.models.identity import IdentityLookup

console = Console()


def check_did_cmd(
    account_id: str = typer.Argument(
        ..., help="Account id (0.0.4821) or DID (did:hedera:testnet:0.0.5000)."
    ),
    history: bool = typer.Option(
        False, "--history", help="Also list NFTs recorded on the DID topic."
    ),
) -> None:
    """Show the DID registered for an account, or resolve a DID."""
    resolver = IdentityResolver(
        None, MirrorClient.from_config(config), cache=RecordCache(config.cache_path), config=config
    )
    is_did = account_id.startswith("did:")
    try:
        if is_did:
            resolution = resolver.resolve(account_id)
            found = IdentityLookup(record=resolution.record if resolution else None)
        else:
            found = resolver.lookup(account_id)
    except InvalidInput as exc:
        label = "DID" if is_did else "account"
        console.print(f"[bold red]Invalid {label}:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc
    except MirrorUnavailable as exc:
        console.print(f"[yellow]Mirror unavailable; cannot resolve:[/yellow] {exc}")
        raise typer.Exit(code=2) from exc

    if found.record is None:
        if found.degraded:
            console.print("[yellow]Mirror unavailable and nothing cached; cannot tell.[/yellow]")
            raise typer.Exit(code=2)
        if is_did:
            console.print(f"[yellow]{account_id} does not resolve[/yellow]")
        else:
            console.print(f"[yellow]No DID registered for {account_id}[/yellow]")
        raise typer.Exit(code=1)

    record = found.record
    lines = [
        f"[bold]DID:[/bold]        {record.did}",
        f"[bold]Topic:[/bold]      {record.topic_id}",
        f"[bold]Document:[/bold]   {record.document_location_id or '-'}",
        f"[bold]Controller:[/bold] {record.controller_account}",
        f"[bold]Created:[/bold]    {record.created_at.isoformat()}",
    ]
    if found.degraded:
        lines.append("\n[yellow]Served from local cache (Mirror unavailable).[/yellow]")
    console.print(Panel("\n".join(lines), title="Identity", border_style="cyan"))

    if history and not found.degraded:
        for item in resolver.list_created_assets(record):
            console.print(
                f"  [cyan]{item.get('nft_token_id')}:{item.get('serial_number')}[/cyan] "
                f"{item.get('name', '')}"
            )
