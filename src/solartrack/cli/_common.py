"""Shared utilities for all CLI command modules.

Provides the Rich console, the common session options, logging setup,
and the helper that opens a devnet session for a command.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel

from .. import SOLARTRACK_HOME
from ..config import SolarTrackConfig, load_config
from ..engine import SyncEngine
from ..errors import UnavailableError
from ..models import EngineSnapshot, HandleSlot
from ..session import devnet_session_manager, devnet_signer

console = Console()
logger = logging.getLogger("solartrack.cli")


def session_options(func):
    """Add --home, --account and --verbose to a command."""

    @click.option("--home", default=SOLARTRACK_HOME, type=click.Path(), help="SolarTrack home.")
    @click.option("--account", "-a", default=None, help="Devnet account seed.")
    @click.option("--verbose", "-v", is_flag=True, help="Debug logging.")
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        return func(*args, **kwargs)

    return wrapper


def setup_logging(config: SolarTrackConfig, verbose: bool = False) -> None:
    """Configure root logging for a CLI run."""
    level = logging.DEBUG if verbose else getattr(logging, config.log_level.upper(), logging.WARNING)
    logging.basicConfig(level=level, format="%(name)s: %(message)s")


def load_home(home: str, verbose: bool = False) -> tuple[Path, SolarTrackConfig]:
    """Resolve the home directory and load its config."""
    home_path = Path(home).expanduser()
    config = load_config(home_path)
    setup_logging(config, verbose)
    return home_path, config


async def open_session(
    home_path: Path,
    config: SolarTrackConfig,
    account: Optional[str] = None,
    start: bool = True,
    require_deployment: bool = False,
) -> SyncEngine:
    """Activate a devnet session for ``account`` and return its engine.

    Raises:
        UnavailableError: ``require_deployment`` is set and the chain has no contract.
    """
    manager = devnet_session_manager(home_path, config)
    signer = devnet_signer(config, account)
    engine = await manager.activate(signer, config.chain_id, start=start)
    if require_deployment and not engine.is_deployed:
        raise UnavailableError(engine.snapshot().message)
    return engine


def run(coro):
    """Run a coroutine to completion from a synchronous click command."""
    return asyncio.run(coro)


def short(address: Optional[str]) -> str:
    if not address:
        return "[dim]none[/]"
    return f"{address[:10]}...{address[-8:]}"


def clear_text(snapshot: EngineSnapshot, slot: HandleSlot) -> str:
    """Revealed value for a slot, or a placeholder while it is hidden."""
    value = snapshot.displayed_clear(slot)
    if value is None:
        return "[dim]***[/]"
    return f"[bold green]{value.clear}[/] kWh"


def status_panel(snapshot: EngineSnapshot) -> Panel:
    """Render the engine snapshot as a Rich panel."""
    deployed = (
        f"[green]{snapshot.contract_address}[/]"
        if snapshot.is_deployed
        else "[bold red]not deployed[/]"
    )
    logged = "[green]yes[/]" if snapshot.has_logged_today else "[yellow]not yet[/]"
    user_handle = snapshot.handle(HandleSlot.USER_TOTAL)
    return Panel(
        f"Account: [cyan]{snapshot.account or 'none'}[/]\n"
        f"Chain: [cyan]{snapshot.chain_id}[/]\n"
        f"Contract: {deployed}\n"
        f"Contributors: [bold]{snapshot.total_users}[/]\n"
        f"Logged today: {logged}\n"
        f"Your total handle: [dim]{short(user_handle)}[/]\n"
        f"Your total: {clear_text(snapshot, HandleSlot.USER_TOTAL)}\n"
        f"Global total: {clear_text(snapshot, HandleSlot.GLOBAL_TOTAL)}",
        title="SolarTrack",
        border_style="yellow",
    )


def print_message(snapshot: EngineSnapshot, ok: bool = True) -> None:
    if not snapshot.message:
        return
    style = "green" if ok else "bold red"
    console.print(f"  [{style}]{snapshot.message}[/]")
