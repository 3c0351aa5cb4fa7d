"""Aggregation commands: leaderboard, calendar, badges."""

from __future__ import annotations

import sys

import click
from rich.table import Table

from ..errors import SolarTrackError
from ..models import Badge
from ..views import calendar_streak, co2_saved_kg, current_streak, environmental_score
from ._common import console, load_home, open_session, print_message, run, session_options, short


def register_board_commands(main: click.Group) -> None:
    """Register leaderboard, calendar, and badges."""

    @main.command()
    @click.option("--reveal", is_flag=True, help="Decrypt your own total for your row.")
    @session_options
    def leaderboard(reveal, home, account, verbose):
        """Rank contributors by number of logged days."""
        home_path, config = load_home(home, verbose)

        async def _load():
            engine = await open_session(home_path, config, account, require_deployment=True)
            if reveal:
                await engine.decrypt_user_total()
            return await engine.leaderboard(), engine.snapshot()

        try:
            entries, snapshot = run(_load())
        except SolarTrackError as exc:
            console.print(f"\n  [bold red]Could not load leaderboard:[/] {exc}\n")
            sys.exit(1)

        if not entries:
            console.print("\n  [yellow]No contributors yet.[/]\n")
            return

        table = Table(title=f"Leaderboard ({snapshot.total_users} contributors)", border_style="yellow")
        table.add_column("Rank", justify="right")
        table.add_column("Address")
        table.add_column("Days Logged", justify="right")
        table.add_column("Total kWh", justify="right")
        for e in entries:
            address = f"[bold cyan]{short(e.address)} (you)[/]" if e.is_current_user else short(e.address)
            total = str(e.revealed_total) if e.revealed_total is not None else "[dim]***[/]"
            table.add_row(str(e.rank), address, str(e.log_count), total)
        console.print()
        console.print(table)
        console.print()

    @main.command()
    @click.option("--reveal", is_flag=True, help="Decrypt your total for score and CO2 figures.")
    @session_options
    def calendar(reveal, home, account, verbose):
        """Show the activity calendar and streaks."""
        home_path, config = load_home(home, verbose)

        async def _load():
            engine = await open_session(home_path, config, account, start=False)
            days = await engine.activity_calendar()
            total = None
            if reveal:
                await engine.refresh_user_total_handle()
                total = await engine.decrypt_user_total()
            return days, total

        days, total = run(_load())
        if not days:
            console.print("\n  [yellow]No calendar available (no deployment or account).[/]\n")
            return

        cells = []
        for d in days:
            mark = "[green]#[/]" if d.has_record else "[dim].[/]"
            cells.append(f"[bold]{mark}[/]" if d.is_today else mark)
        rows = [" ".join(cells[i:i + 7]) for i in range(0, len(cells), 7)]

        console.print()
        console.print(f"  {days[0].date} .. {days[-1].date}")
        for row in rows:
            console.print(f"  {row}")
        console.print()
        console.print(f"  Longest streak: [bold]{calendar_streak(days)}[/] days")
        console.print(f"  Current streak: [bold]{current_streak(days)}[/] days")
        if total is not None:
            kwh = int(total.clear)
            console.print(f"  Environmental score: [bold]{environmental_score(kwh)}[/]")
            console.print(f"  CO2 saved: [bold]{co2_saved_kg(kwh)}[/] kg")
        elif not reveal:
            console.print("  [dim]Run with --reveal to include your environmental score.[/]")
        console.print()

    @main.group(invoke_without_command=True)
    @click.pass_context
    @session_options
    def badges(ctx, home, account, verbose):
        """Show achievement badges."""
        ctx.obj = {"home": home, "account": account, "verbose": verbose}
        if ctx.invoked_subcommand is not None:
            return

        home_path, config = load_home(home, verbose)

        async def _load():
            engine = await open_session(home_path, config, account, start=False)
            return await engine.badges()

        statuses = run(_load())
        table = Table(title="Badges", border_style="yellow")
        table.add_column("Badge", style="cyan")
        table.add_column("Description")
        table.add_column("Status")
        for s in statuses:
            state = "[green]claimed[/]" if s.claimed else (
                "[yellow]claimable[/]" if s.claimable else "[dim]locked[/]"
            )
            table.add_row(s.name, s.description, state)
        console.print()
        console.print(table)
        console.print()

    @badges.command("claim")
    @click.argument("badge", type=click.Choice([b.name.lower() for b in Badge]))
    @click.pass_context
    def badges_claim(ctx, badge):
        """Claim a BADGE you are eligible for."""
        opts = ctx.obj
        home_path, config = load_home(opts["home"], opts["verbose"])

        async def _claim():
            engine = await open_session(home_path, config, opts["account"], start=False)
            ok = await engine.claim_badge(Badge[badge.upper()])
            return ok, engine.snapshot()

        ok, snapshot = run(_claim())
        console.print()
        print_message(snapshot, ok)
        console.print()
        if not ok:
            sys.exit(1)
