"""``artproof fingerprint`` / ``artproof verify``: offline content checks.

Neither command touches the network: the fingerprint is a pure function
of the image bytes and the meaningful metadata fields.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from artproof.core.content_addressing import compute_content_fingerprint, verify_content
from artproof.core.errors import InvalidInput

console = Console()


def _load_metadata(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        console.print(f"[bold red]Cannot read metadata:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc
    if not isinstance(data, dict):
        console.print("[bold red]Metadata must be a JSON object.[/bold red]")
        raise typer.Exit(code=1)
    return data


def _read_image(path: Path) -> bytes:
    if not path.is_file():
        console.print(f"[bold red]Image not found:[/bold red] {path}")
        raise typer.Exit(code=1)
    return path.read_bytes()


def fingerprint_cmd(
    image: Path = typer.Argument(..., help="Path to the image file."),
    metadata: Path = typer.Option(..., "--metadata", "-m", help="Metadata JSON file."),
    as_json: bool = typer.Option(False, "--json", help="Print the fingerprint as JSON."),
) -> None:
    """Compute image, metadata and content hashes for an artwork."""
    try:
        fp = compute_content_fingerprint(_read_image(image), _load_metadata(metadata))
    except InvalidInput as exc:
        console.print(f"[bold red]Invalid input:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc

    if as_json:
        console.print_json(fp.model_dump_json())
        return

    table = Table(title=f"Fingerprint: {image.name}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("content_hash", f"[bold]{fp.content_hash}[/bold]")
    table.add_row("image_hash", fp.image_hash)
    table.add_row("metadata_hash", fp.metadata_hash)
    table.add_row("byte_size", str(fp.byte_size))
    table.add_row("canonical", fp.canonical_metadata)
    console.print(table)


def verify_cmd(
    image: Path = typer.Argument(..., help="Path to the image file."),
    expected_hash: str = typer.Argument(..., help="The content hash to check against."),
    metadata: Path = typer.Option(..., "--metadata", "-m", help="Metadata JSON file."),
) -> None:
    """Recompute the content hash and compare.  Exits 1 on mismatch."""
    if verify_content(_read_image(image), _load_metadata(metadata), expected_hash):
        console.print("[bold green]MATCH[/bold green] content hash verified")
        return
    console.print("[bold red]MISMATCH[/bold red] image or metadata differs from the hash")
    raise typer.Exit(code=1)
