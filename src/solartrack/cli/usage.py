"""Usage commands: log, reveal."""

from __future__ import annotations

import sys

import click

from ..errors import SolarTrackError
from ..models import EngineSnapshot, HandleSlot, SubmissionStage
from ._common import (
    clear_text,
    console,
    load_home,
    open_session,
    print_message,
    run,
    session_options,
)


def _fail(message: str) -> None:
    console.print(f"\n  [bold red]{message}[/]\n")
    sys.exit(1)


def register_usage_commands(main: click.Group) -> None:
    """Register log and reveal."""

    @main.command("log")
    @click.argument("kwh", type=int)
    @click.option("--note", "-n", default="", help="Note reference, e.g. an IPFS CID.")
    @session_options
    def log_usage(kwh, note, home, account, verbose):
        """Encrypt today's KWH and submit it on-chain."""
        home_path, config = load_home(home, verbose)

        async def _submit():
            engine = await open_session(home_path, config, account, require_deployment=True)
            seen: list[SubmissionStage] = []

            def progress(snapshot: EngineSnapshot) -> None:
                stage = snapshot.submission_stage
                if stage is not SubmissionStage.IDLE and stage not in seen:
                    seen.append(stage)
                    console.print(f"  [dim]{stage.value}...[/]")

            engine.subscribe(progress)
            ok = await engine.submit_usage(kwh, note)
            return ok, engine.snapshot()

        console.print()
        try:
            ok, snapshot = run(_submit())
        except SolarTrackError as exc:
            _fail(str(exc))
        print_message(snapshot, ok)
        console.print()
        if not ok:
            sys.exit(1)

    @main.command()
    @click.option("--global", "global_total", is_flag=True, help="Reveal the global total instead.")
    @session_options
    def reveal(global_total, home, account, verbose):
        """Decrypt your running total (asks to sign once per validity window)."""
        home_path, config = load_home(home, verbose)
        slot = HandleSlot.GLOBAL_TOTAL if global_total else HandleSlot.USER_TOTAL

        async def _reveal():
            engine = await open_session(home_path, config, account, require_deployment=True)
            if slot is HandleSlot.GLOBAL_TOTAL:
                value = await engine.decrypt_global_total()
            else:
                value = await engine.decrypt_user_total()
            return value, engine.snapshot()

        try:
            value, snapshot = run(_reveal())
        except SolarTrackError as exc:
            _fail(str(exc))
        console.print()
        print_message(snapshot, value is not None)
        if value is None:
            console.print()
            sys.exit(1)
        label = "Global total" if global_total else "Your total"
        console.print(f"  {label}: {clear_text(snapshot, slot)}\n")
