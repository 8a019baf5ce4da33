"""mdview command line.

Usage:
    mdview FILE          [--port PORT] [--no-open]   (foreground)
    mdview view FILE     [--port PORT] [--no-open]   (same, explicit)
    mdview serve FILE    [--port PORT] [--no-open]   (background)
    mdview list          [--json]
    mdview stop FILE
"""

from __future__ import annotations

import json
import sys
from datetime import timedelta
from pathlib import Path

import typer
from rich.console import Console

from mdview import __version__
from mdview.ports import DEFAULT_PORT

app = typer.Typer(
    name="mdview",
    help="Preview a markdown file in the browser with live reload.",
    no_args_is_help=True,
)
console = Console()

_COMMANDS = {"view", "serve", "list", "stop"}


def _info(msg: str) -> None:
    console.print(f"[dim]>[/dim] {msg}")


def _success(msg: str) -> None:
    console.print(f"[green]✓[/green] {msg}")


def _error(msg: str) -> None:
    console.print(f"[red]✗[/red] {msg}")


def _fail(exc: Exception, code: int = 1) -> typer.Exit:
    _error(str(exc))
    return typer.Exit(code)


def _format_uptime(delta: timedelta) -> str:
    seconds = int(delta.total_seconds())
    days, seconds = divmod(seconds, 86400)
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)
    if days:
        return f"{days}d {hours}h"
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"mdview {__version__}")
        raise typer.Exit()


@app.callback()
def _main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    """Preview a markdown file in the browser with live reload."""


@app.command()
def view(
    file: Path = typer.Argument(help="Markdown file to preview."),
    port: int = typer.Option(DEFAULT_PORT, "--port", "-p", help="First port to try."),
    no_open: bool = typer.Option(False, "--no-open", help="Don't open browser."),
) -> None:
    """Preview FILE in the foreground until interrupted (Ctrl+C)."""
    from mdview._types import AlreadyRegistered, Instance, MdviewError
    from mdview.supervisor import run_foreground

    def _ready(instance: Instance) -> None:
        _success(f"Serving '{instance.file_path.name}' at {instance.url}")
        _info("Press Ctrl+C to stop the server")

    try:
        run_foreground(file, base_port=port, open_browser=not no_open, on_ready=_ready)
    except AlreadyRegistered as e:
        _info(f"Already serving '{e.existing.file_path}' at {e.existing.url}")
        return
    except MdviewError as e:
        raise _fail(e, e.exit_code)
    except OSError as e:
        raise _fail(e)
    _info("Server stopped.")


@app.command()
def serve(
    file: Path = typer.Argument(help="Markdown file to preview."),
    port: int = typer.Option(DEFAULT_PORT, "--port", "-p", help="First port to try."),
    no_open: bool = typer.Option(False, "--no-open", help="Don't open browser."),
) -> None:
    """Preview FILE from a background process and return immediately."""
    from mdview._types import MdviewError
    from mdview.supervisor import serve as do_serve

    try:
        result = do_serve(file, base_port=port, open_browser=not no_open)
    except MdviewError as e:
        raise _fail(e, e.exit_code)
    except OSError as e:
        raise _fail(e)

    inst = result.instance
    if not result.started:
        _info(f"Already serving '{inst.file_path}' at {inst.url}")
        console.print(f"  [bold]PID:[/bold]  {inst.pid}")
        return
    _success(f"Serving '{inst.file_path.name}' at {inst.url}")
    console.print(f"  [bold]PID:[/bold]  {inst.pid}")
    if inst.log_path:
        console.print(f"  [bold]Log:[/bold]  {inst.log_path}")


@app.command("list")
def list_cmd(
    as_json: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """List running mdview instances."""
    from mdview.supervisor import list_instances

    instances = list_instances()
    if as_json:
        console.print_json(json.dumps([inst.to_dict() for inst in instances]))
        return
    if not instances:
        _info("No running mdview instances.")
        return

    console.print()
    console.print(f"[bold]Instances ({len(instances)}):[/bold]")
    console.print()
    for inst in instances:
        console.print(
            f"  [green]{inst.url:<24s}[/green] {inst.pid:>7d}  "
            f"{_format_uptime(inst.uptime()):>8s}   {inst.file_path}",
            soft_wrap=True,
        )


@app.command()
def stop(
    file: Path = typer.Argument(help="Markdown file whose instance to stop."),
) -> None:
    """Stop the background instance serving FILE."""
    from mdview._types import MdviewError
    from mdview.supervisor import stop as do_stop

    try:
        inst = do_stop(file)
    except MdviewError as e:
        raise _fail(e, e.exit_code)
    _success(f"Stopped serving '{inst.file_path}' (pid={inst.pid})")


def main(argv: list[str] | None = None) -> None:
    """Console entry point.

    A bare ``mdview FILE`` is shorthand for ``mdview view FILE``.
    """
    args = list(sys.argv[1:] if argv is None else argv)
    if args and not args[0].startswith("-") and args[0] not in _COMMANDS:
        args.insert(0, "view")
    app(args=args, prog_name="mdview")


if __name__ == "__main__":
    main()
