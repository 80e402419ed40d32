# Copyright (c) Syntropy Systems
"""bipolar status command."""

import typer
from rich.console import Console
from rich.table import Table

from bipolar.assignment import treatment_plan
from bipolar.config import get_build_dir, load_config, require_project_root
from bipolar.errors import BipolarError
from bipolar.lockfile import compatible, get_lockfile_path, load_lockfile
from bipolar.models.config import describe_treatment
from bipolar.models.lockfile import LockFile

console = Console()
err_console = Console(stderr=True)


def _format_ids(shard_ids: list[int]) -> str:
    if not shard_ids:
        return "-"
    return ", ".join(str(i) for i in shard_ids)


def status() -> None:
    """Show the assignment plan and what the last build applied.

    Also reports whether the next build will be incremental or a full
    rebuild.
    """
    try:
        root = require_project_root()
        config = load_config(root)
    except BipolarError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    lockfile = load_lockfile(get_lockfile_path(get_build_dir(root)))
    lo, hi = config.minmax

    console.print(f"[bold]{config.name}[/bold]  [dim]{config.repo} @ {config.base}[/dim]")
    console.print(f"  [dim]shards:[/dim] {lo}..{hi} of {config.shard_count}")

    if lockfile is None:
        console.print("  [dim]next build:[/dim] full (no lockfile)")
    elif compatible(lockfile, LockFile.from_config(config)):
        console.print("  [dim]next build:[/dim] incremental")
    else:
        console.print("  [yellow]next build:[/yellow] full rebuild (config changed)")

    if not config.treatments:
        console.print("\n[dim]No treatments configured[/dim]")
        return

    table = Table(title="Treatments")
    table.add_column("Name", style="cyan")
    table.add_column("Applies")
    table.add_column("Split", justify="right")
    table.add_column("Assigned (local)")
    table.add_column("Applied")

    for treatment in config.treatments:
        plan = treatment_plan(
            config.assignment, treatment.name, config.shard_count, config.minmax
        )
        applied = lockfile.applied.get(treatment.name, []) if lockfile else []
        if plan is None:
            split = "[yellow]none[/yellow]"
            local: list[int] = []
        else:
            split = f"{config.assignment.split[treatment.name]}%"
            local = [i for i in plan if lo <= i < hi]

        table.add_row(
            treatment.name,
            describe_treatment(treatment),
            split,
            _format_ids(local),
            _format_ids(applied),
        )

    console.print(table)
