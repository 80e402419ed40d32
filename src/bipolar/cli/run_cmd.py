# Copyright (c) Syntropy Systems
"""bipolar run command."""

import typer
from rich.console import Console

from bipolar.config import get_build_dir, load_config, require_project_root
from bipolar.errors import BipolarError
from bipolar.supervisor import CancellationToken, Supervisor, install_signal_handlers

console = Console()
err_console = Console(stderr=True)


def run() -> None:
    """Start the run hook in every local shard until Ctrl-C.

    Processes are started 500ms apart and all killed on SIGINT/SIGTERM.
    Output of each shard goes to .bipolar/logs/shard_<id>.log.
    """
    try:
        root = require_project_root()
        config = load_config(root)
        token = CancellationToken()
        supervisor = Supervisor(config, get_build_dir(root), token=token)
    except BipolarError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    install_signal_handlers(token)
    console.print(f"[green]Starting {len(config.shard_ids)} shard(s)[/green]")
    console.print("[dim]Press Ctrl-C to stop[/dim]")

    try:
        supervisor.run()
    except BipolarError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    console.print(f"[dim]Stopped {len(supervisor.processes)} shard process(es)[/dim]")
