"""Artproof CLI: Typer-based command-line interface.

Provides the ``artproof`` command with subcommands for fingerprinting
and verifying artwork, checking identities, attestations, marketplace
approvals and transfers against the Mirror, inspecting the run
journal, and running an end-to-end demo on the simulated ledger.

All output uses Rich for formatted terminal display.
"""
