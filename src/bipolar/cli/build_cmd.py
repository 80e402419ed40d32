# Copyright (c) Syntropy Systems
"""bipolar build command."""

import typer
from rich.console import Console
from rich.table import Table

from bipolar.build import build as run_build
from bipolar.config import load_config, require_project_root
from bipolar.errors import BipolarError

console = Console()
err_console = Console(stderr=True)


def build(
    nuclear: bool = typer.Option(
        False,
        "--nuclear",
        help="Discard all build state and rebuild every shard from scratch",
    ),
) -> None:
    """Build the control clone and every local shard.

    Incremental by default: only shards newly covered by a treatment's
    split are treated. Incompatible config changes trigger a full rebuild.
    """
    try:
        root = require_project_root()
        config = load_config(root)
        report = run_build(config, root, nuclear=nuclear)
    except (BipolarError, OSError) as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    mode = "full rebuild" if report.nuked else "incremental"
    console.print(f"[green]Built {len(report.shards)} shard(s)[/green] ({mode})")

    if report.newly_applied:
        table = Table(title="Treatments applied this build")
        table.add_column("Treatment", style="cyan")
        table.add_column("Shards")
        for name, shard_ids in report.newly_applied.items():
            table.add_row(name, ", ".join(str(i) for i in shard_ids) or "[dim]-[/dim]")
        console.print(table)

    for name in report.skipped_treatments:
        console.print(f"[yellow]Warning:[/yellow] no split for treatment {name}, skipped")
