"""Devnet commands: deploy, reset."""

from __future__ import annotations

import click
from rich.panel import Panel

from ..deployments import Deployment, DeploymentRegistry
from ..devnet import DEVNET_ABI, DEVNET_NETWORK, Devnet
from ..signer import LocalSigner
from ._common import console, load_home, session_options


def register_devnet_commands(main: click.Group) -> None:
    """Register the devnet command group."""

    @main.group()
    def devnet():
        """Local devnet -- a simulated chain for development."""

    @devnet.command("deploy")
    @session_options
    def devnet_deploy(home, account, verbose):
        """Deploy SolarTrackManager to the local devnet."""
        home_path, config = load_home(home, verbose)
        chain = Devnet.at_home(home_path)
        deployer = LocalSigner(account or config.account_seed).address
        address = chain.deploy(deployer)

        registry = DeploymentRegistry(config.deployments_dir, config.contract_name)
        artifact = registry.write(
            Deployment(
                address=address,
                abi=DEVNET_ABI,
                deployer=deployer,
                network=DEVNET_NETWORK,
                chain_id=chain.chain_id,
            )
        )

        console.print()
        console.print(
            Panel(
                f"Contract Address: [green]{address}[/]\n"
                f"Deployer: [cyan]{deployer}[/]\n"
                f"Network: {DEVNET_NETWORK} (Chain ID: {chain.chain_id})\n"
                f"Artifact: [dim]{artifact}[/]",
                title="SolarTrackManager deployed",
                border_style="green",
            )
        )
        console.print()

    @devnet.command("reset")
    @session_options
    @click.confirmation_option(prompt="Wipe all devnet state?")
    def devnet_reset(home, account, verbose):
        """Delete the local devnet state."""
        home_path, _ = load_home(home, verbose)
        chain = Devnet.at_home(home_path)
        if chain.path is not None and chain.path.exists():
            chain.path.unlink()
            console.print("\n  [green]Devnet state wiped.[/] Deploy again before logging.\n")
        else:
            console.print("\n  [dim]No devnet state to wipe.[/]\n")
