"""CLI entry point for unisonui."""

from __future__ import annotations

import asyncio
import logging

import typer
from rich.console import Console
from rich.markup import escape
from rich.text import Text

from unisonui import __version__
from unisonui.config import AppConfig

app = typer.Typer(
    name="unisonui",
    help="A front-end for the Unison file synchronizer.",
    no_args_is_help=True,
)

# Unison's own options look like "-batch", "-path foo"; pass them through.
_PASSTHROUGH = {"allow_extra_args": True, "ignore_unknown_options": True}

_FAILED_STATUSES = ("Unison exited unexpectedly", "Failed to start Unison")


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _load_config(config_file: str | None) -> AppConfig:
    try:
        return AppConfig.load(config_file)
    except (OSError, ValueError) as e:
        typer.echo(f"Error: Invalid config {config_file}: {e}", err=True)
        raise typer.Exit(1)


@app.command(context_settings=_PASSTHROUGH)
def tui(
    unison_args: list[str] = typer.Argument(
        None, help="Arguments for Unison (profile, roots, options)."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Path to a JSON config file."
    ),
) -> None:
    """Review Unison's plan and synchronize interactively."""
    # No setup_logging() here: a stderr handler would corrupt the display.
    # The app routes log records to its status bar.
    logging.getLogger().setLevel(logging.DEBUG if verbose else logging.INFO)
    for h in logging.getLogger().handlers[:]:
        logging.getLogger().removeHandler(h)

    config = _load_config(config_file)

    from unisonui.session.driver import UnisonSession
    from unisonui.tui.app import UnisonApp

    session = UnisonSession(config, unison_args or [])
    tui_app = UnisonApp(session)
    tui_app.run()

    status = session.engine.status
    typer.echo(status)
    if status in _FAILED_STATUSES:
        raise typer.Exit(1)


async def _run_plan(config: AppConfig, unison_args: list[str], yes: bool) -> str:
    """Run Unison until its plan is known, print it, then quit."""
    from unisonui.core.model import Message, Operation
    from unisonui.session.driver import UnisonSession
    from unisonui.session.wire import EventType
    from unisonui.tui.render import message_text, plan_tree

    console = Console()
    session = UnisonSession(config, unison_args)
    queue = session.wire.subscribe()
    await session.start()
    try:
        while True:
            event = await queue.get()
            if event is None:
                break
            d = event.data

            if event.type == EventType.MESSAGE:
                console.print(message_text(Message(d["text"], d["importance"])))

            elif event.type == EventType.ALERT:
                alert = d["alert"]
                console.print(Text(alert.text, style="yellow"))
                console.print("[bold]Proceeding[/bold]" if yes else "[bold]Aborting[/bold]")
                session.answer(alert, yes)

            elif event.type == EventType.PLAN_READY:
                engine = session.engine
                title = f"{engine.left} — {engine.right}"
                console.print(plan_tree(d["items"] or (), engine.plan, title=title))
                if engine.enabled(Operation.QUIT):
                    session.perform(Operation.QUIT)

            elif event.type == EventType.ERROR:
                console.print(Text(d["error"], style="bold red"))

            elif event.type == EventType.EXIT:
                break
    finally:
        session.wire.unsubscribe(queue)
        session.shutdown()
    return session.engine.status


@app.command(context_settings=_PASSTHROUGH)
def plan(
    unison_args: list[str] = typer.Argument(
        None, help="Arguments for Unison (profile, roots, options)."
    ),
    yes: bool = typer.Option(
        False, "--yes", "-y", help="Proceed through Unison's confirmation prompts."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Path to a JSON config file."
    ),
) -> None:
    """Print Unison's plan without synchronizing anything."""
    setup_logging(verbose)
    config = _load_config(config_file)

    status = asyncio.run(_run_plan(config, unison_args or [], yes))
    typer.echo(status)
    if status in _FAILED_STATUSES:
        raise typer.Exit(1)


@app.command()
def replay(
    trace: str = typer.Argument(help="Transcript recorded with UNISONUI_TRACE."),
    chunk: int | None = typer.Option(
        None, "--chunk", "-n", min=1, help="Re-split Unison's output into N-byte reads."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
) -> None:
    """Feed a recorded transcript through a fresh engine and show what it does."""
    setup_logging(verbose)

    from unisonui.core.engine import Engine
    from unisonui.session.trace import read_trace
    from unisonui.session.trace import replay as replay_trace
    from unisonui.tui.render import message_text

    try:
        events = read_trace(trace)
    except (OSError, ValueError) as e:
        typer.echo(f"Error: Cannot read transcript: {e}", err=True)
        raise typer.Exit(1)

    console = Console()
    engine = Engine()
    for event, upd in replay_trace(events, chunk=chunk, engine=engine):
        if event.kind != "out":
            code = f" code={event.code}" if event.code is not None else ""
            console.print(f"[dim]{event.kind}[/dim] {escape(repr(event.data))}{code}")
        if upd.input:
            console.print(f"  [cyan]send[/cyan] {escape(repr(upd.input))}")
        if upd.interrupt:
            console.print("  [cyan]interrupt[/cyan]")
        if upd.kill:
            console.print("  [cyan]kill[/cyan]")
        if upd.plan_ready:
            console.print(f"  [green]plan ready[/green] ({len(engine.items or ())} items)")
        if upd.diff is not None:
            console.print(f"  [green]diff[/green] ({len(upd.diff)} bytes)")
        for message in upd.messages:
            console.print(Text("  ").append_text(message_text(message)))
        if upd.alert is not None:
            console.print(Text(f"  alert: {upd.alert.text}", style="yellow"))
    console.print(f"[bold]{engine.status}[/bold] ({engine.phase.value})")


@app.command()
def version() -> None:
    """Show the version."""
    typer.echo(f"unisonui v{__version__}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
