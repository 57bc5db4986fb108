"""``artproof journal [RUN_ID]``: inspect the append-only run journal.

Without a run id, lists known runs.  With one, shows every stage
transition and the ledger transactions each stage submitted, and can
export or check a checkpoint file of the run's chain.
"""

from __future__ import annotations

import json
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from artproof.config import config
from artproof.core.run_journal import JournalIntegrityError, RunJournal

console = Console()

_STATE_STYLE = {
    "passed": "green",
    "failed": "red",
    "running": "yellow",
    "skipped": "dim",
}


def journal_cmd(
    run_id: str = typer.Argument(None, help="Run to show; omit to list runs."),
    journal_db: Path = typer.Option(
        None, "--journal", "-j", help="Path to the journal SQLite database."
    ),
    verify_chain: bool = typer.Option(
        False, "--verify-chain", "-V", help="Verify the run's hash chain."
    ),
    export_checkpoint: Path = typer.Option(
        None, "--export-checkpoint", help="Write a checkpoint of the run's chain to this file."
    ),
    verify_checkpoint: Path = typer.Option(
        None, "--verify-checkpoint", help="Check the run against a checkpoint file."
    ),
) -> None:
    """List runs, or show one run's transitions and transaction ids."""
    db_path = journal_db or config.journal_path
    if not Path(db_path).exists():
        console.print(f"[bold red]Journal not found:[/bold red] {db_path}")
        raise typer.Exit(code=1)
    journal = RunJournal(db_path)

    if run_id is None:
        run_ids = journal.get_all_run_ids()
        if not run_ids:
            console.print("[dim]No runs recorded.[/dim]")
            return
        for rid in run_ids:
            console.print(f"  [cyan]{rid}[/cyan]")
        return

    entries = journal.get_run_entries(run_id)
    if not entries:
        console.print(f"[bold red]Run not found:[/bold red] {run_id}")
        raise typer.Exit(code=1)

    table = Table(title=f"Run {run_id}")
    table.add_column("Time", style="dim")
    table.add_column("Stage", style="cyan")
    table.add_column("Transition")
    table.add_column("Transactions")
    table.add_column("Error", style="red")
    for entry in entries:
        to_state = entry.state_transition.partition("->")[2]
        style = _STATE_STYLE.get(to_state, "")
        table.add_row(
            entry.timestamp_utc.strftime("%H:%M:%S"),
            entry.stage_id,
            f"[{style}]{entry.state_transition}[/{style}]" if style else entry.state_transition,
            "\n".join(entry.transaction_ids),
            entry.detail.get("error", ""),
        )
    console.print(table)

    if verify_chain:
        try:
            journal.verify_chain(run_id)
        except JournalIntegrityError as exc:
            console.print(f"[bold red]Hash chain BROKEN:[/bold red] {exc}")
            raise typer.Exit(code=1) from exc
        console.print(f"[bold green]Hash chain valid[/bold green] ({len(entries)} entries)")

    if verify_checkpoint:
        try:
            checkpoint = json.loads(Path(verify_checkpoint).read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            console.print(f"[bold red]Cannot read checkpoint:[/bold red] {exc}")
            raise typer.Exit(code=1) from exc
        if not isinstance(checkpoint, dict):
            console.print("[bold red]Cannot read checkpoint:[/bold red] not a JSON object")
            raise typer.Exit(code=1)
        try:
            journal.verify_against_checkpoint(run_id, checkpoint)
        except JournalIntegrityError as exc:
            console.print(f"[bold red]Checkpoint mismatch:[/bold red] {exc}")
            raise typer.Exit(code=1) from exc
        console.print(
            f"[bold green]Matches checkpoint[/bold green] "
            f"({checkpoint['entry_count']} of {len(entries)} entries)"
        )

    if export_checkpoint:
        checkpoint = journal.export_checkpoint(run_id)
        Path(export_checkpoint).write_text(json.dumps(checkpoint, indent=2), encoding="utf-8")
        console.print(f"Checkpoint written to {export_checkpoint}")
