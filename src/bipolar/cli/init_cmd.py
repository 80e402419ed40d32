# Copyright (c) Syntropy Systems
"""bipolar init command."""

from typing import Optional

import typer
from rich.console import Console

from bipolar.config import default_config, get_config_path, save_config
from bipolar.errors import BipolarError
from bipolar.git import GitRepo

console = Console()
err_console = Console(stderr=True)


def init(
    name: Optional[str] = typer.Option(
        None,
        "--name", "-n",
        help="Experiment name (default: the repository name)",
    ),
) -> None:
    """Create bipolar.yaml for the current git repository.

    The control revision defaults to the current HEAD commit and the
    source repo to the 'origin' remote.
    """
    repo = GitRepo.discover()
    if repo is None:
        err_console.print("[red]Error:[/red] Not inside a git repository")
        raise typer.Exit(1)

    config_path = get_config_path(repo.path)
    if config_path.exists():
        console.print(f"[yellow]Already initialized:[/yellow] {config_path}")
        return

    try:
        config = default_config(repo, name)
    except BipolarError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    _ = save_config(config, repo.path)

    console.print(f"[green]Initialized experiment:[/green] {config.name}")
    console.print(f"  [dim]config:[/dim] {config_path}")
    console.print(f"  [dim]repo:[/dim] {config.repo}")
    console.print(f"  [dim]base:[/dim] {config.base}")
    console.print("\nNext steps:")
    console.print("  1. Add treatments and splits to bipolar.yaml")
    console.print("  2. Build shards: [cyan]bipolar build[/cyan]")
    console.print("  3. Run them:     [cyan]bipolar run[/cyan]")
