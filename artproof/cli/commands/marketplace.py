"""``artproof check-approval`` / ``artproof verify-transfer``: marketplace checks."""

from __future__ import annotations

import typer
from rich.console import Console

from artproof.bridge.mirror import MirrorClient
from artproof.config import config
from artproof.core.errors import InvalidInput
from artproof.marketplace import MarketplaceTransferVerifier

console = Console()


def check_approval_cmd(
    token_id: str = typer.Argument(..., help="NFT collection id."),
    seller: str = typer.Argument(..., help="Seller account id."),
    operator: str = typer.Option(
        None, "--operator", "-o", help="Marketplace operator id (defaults to config)."
    ),
) -> None:
    """Check that the seller granted the operator an all-serials allowance."""
    verifier = MarketplaceTransferVerifier(
        None, MirrorClient.from_config(config), operator_id=operator, config=config
    )
    try:
        status = verifier.check_seller_pre_approval(token_id, seller)
    except InvalidInput as exc:
        console.print(f"[bold red]Invalid input:[/bold red] {exc}")
        raise typer.Exit(code=2) from exc

    if status.approved:
        console.print(
            f"[bold green]APPROVED[/bold green] {status.operator_id} may transfer "
            f"{token_id} serials from {seller}"
        )
        return
    reason = status.details.get("reason") or status.details.get("error") or "not approved"
    console.print(f"[bold red]NOT APPROVED[/bold red] {reason}")
    raise typer.Exit(code=1)


def verify_transfer_cmd(
    token_id: str = typer.Argument(..., help="NFT collection id."),
    serial_number: int = typer.Argument(..., help="Serial number."),
    expected_owner: str = typer.Argument(..., help="Account that should now hold the NFT."),
    retries: int = typer.Option(None, "--retries", help="Override transfer_max_retries."),
    delay: float = typer.Option(None, "--delay", help="Override transfer_retry_delay (seconds)."),
) -> None:
    """Poll the Mirror until the expected owner holds the serial."""
    verifier = MarketplaceTransferVerifier(None, MirrorClient.from_config(config), config=config)
    try:
        result = verifier.verify_transfer(
            token_id, serial_number, expected_owner, max_retries=retries, retry_delay=delay
        )
    except InvalidInput as exc:
        console.print(f"[bold red]Invalid input:[/bold red] {exc}")
        raise typer.Exit(code=2) from exc

    if result.transferred:
        console.print(
            f"[bold green]TRANSFERRED[/bold green] {token_id}:{serial_number} is held by "
            f"{result.current_owner} ({result.attempts} checks)"
        )
        return
    console.print(
        f"[bold red]NOT TRANSFERRED[/bold red] {token_id}:{serial_number} is held by "
        f"{result.current_owner or 'unknown'} after {result.attempts} checks"
    )
    raise typer.Exit(code=1)
