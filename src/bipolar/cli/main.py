# Copyright (c) Syntropy Systems
"""Main CLI entry point for bipolar."""

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from bipolar.cli.build_cmd import build
from bipolar.cli.init_cmd import init
from bipolar.cli.run_cmd import run
from bipolar.cli.status import status

app = typer.Typer(
    name="bipolar",
    help="A/B experiments over a git codebase: build treated shards, run them.",
    no_args_is_help=True,
    add_completion=False,
)


@app.callback()
def main(
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Show debug output, including every git command",
    ),
) -> None:
    """Configure logging for every command."""
    logger = logging.getLogger("bipolar")
    logger.handlers.clear()
    logger.addHandler(
        RichHandler(
            console=Console(stderr=True),
            show_path=False,
            show_time=False,
        )
    )
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False


# Register commands
_ = app.command()(init)
_ = app.command()(build)
_ = app.command()(run)
_ = app.command()(status)


if __name__ == "__main__":
    app()
