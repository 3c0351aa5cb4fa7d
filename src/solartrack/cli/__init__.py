"""
SolarTrack CLI -- confidential solar logging from the command line.

This package organizes the CLI into modular command groups. The main
Click group is defined here and every subcommand is registered via a
register function.

Entry point: solartrack.cli:main
"""

from __future__ import annotations

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="solartrack")
def main():
    """SolarTrack -- log solar usage on-chain, encrypted.

    Your kWh stay yours. Reveal them when you choose.
    """


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .status import register_status_commands
from .usage import register_usage_commands
from .board import register_board_commands
from .devnet_cmd import register_devnet_commands

register_status_commands(main)
register_usage_commands(main)
register_board_commands(main)
register_devnet_commands(main)
