"""Status commands: status, deployments."""

from __future__ import annotations

import click
from rich.table import Table

from ..deployments import DeploymentRegistry
from ._common import console, load_home, open_session, run, session_options, status_panel


def register_status_commands(main: click.Group) -> None:
    """Register status and deployments."""

    @main.command()
    @session_options
    def status(home, account, verbose):
        """Show the session: contract, counts, and today's status."""
        home_path, config = load_home(home, verbose)
        engine = run(open_session(home_path, config, account))
        snapshot = engine.snapshot()

        console.print()
        console.print(status_panel(snapshot))
        if not snapshot.is_deployed:
            console.print(f"  [yellow]{snapshot.message}[/]")
            console.print("  Run [cyan]solartrack devnet deploy[/] to deploy locally.")
        console.print()

    @main.command()
    @session_options
    def deployments(home, account, verbose):
        """List known SolarTrackManager deployments."""
        _, config = load_home(home, verbose)
        registry = DeploymentRegistry(config.deployments_dir, config.contract_name)
        found = registry.load_all()

        if not found:
            console.print("\n  [yellow]No deployments found.[/]\n")
            return

        table = Table(title="Deployments", border_style="yellow")
        table.add_column("Network", style="cyan")
        table.add_column("Chain ID", justify="right")
        table.add_column("Address")
        table.add_column("Deployer", style="dim")
        table.add_column("Deployed At", style="dim")
        for d in found:
            address = d.address if d.is_deployed else "[red]zero address[/]"
            table.add_row(
                d.network, str(d.chain_id), address, d.deployer, d.deployed_at.isoformat()
            )
        console.print()
        console.print(table)
        console.print()
