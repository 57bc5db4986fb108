"""Main Typer application: imports and registers all CLI commands.

Entry point: ``artproof`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from artproof.cli.commands.attestation import verify_attestation_cmd
from artproof.cli.commands.content import fingerprint_cmd, verify_cmd
from artproof.cli.commands.demo import demo_cmd
from artproof.cli.commands.identity import check_did_cmd
from artproof.cli.commands.journal import journal_cmd
from artproof.cli.commands.marketplace import check_approval_cmd, verify_transfer_cmd
from artproof.config import config

app = typer.Typer(
    name="artproof",
    help="Artproof: provenance pipeline for artwork NFTs.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def _configure_logging(
    log_level: str = typer.Option(
        None, "--log-level", help="Override ARTPROOF_LOG_LEVEL for this invocation."
    ),
) -> None:
    logging.basicConfig(
        level=(log_level or config.log_level).upper(),
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


# Register subcommands
app.command(name="fingerprint", help="Compute the content fingerprint of an artwork.")(fingerprint_cmd)
app.command(name="verify", help="Check an artwork against a content hash.")(verify_cmd)
app.command(name="check-did", help="Look up a DID by account, or resolve a DID string.")(check_did_cmd)
app.command(name="verify-attestation", help="Re-read and re-hash a published attestation.")(
    verify_attestation_cmd
)
app.command(name="check-approval", help="Check a seller's marketplace allowance.")(check_approval_cmd)
app.command(name="verify-transfer", help="Poll the Mirror for an NFT's new owner.")(verify_transfer_cmd)
app.command(name="journal", help="List runs or show a run's journal.")(journal_cmd)
app.command(name="demo", help="Run the full pipeline on a simulated ledger.")(demo_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
