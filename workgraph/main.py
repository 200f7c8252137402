#!/usr/bin/env python3
"""
Main CLI entry point for workgraph
"""

import typer

from workgraph import __version__
from workgraph.commands import doctor, graph
from workgraph.utils.logging import setup_logging


# Version command
def version():
    """Show workgraph version"""
    typer.echo(f"workgraph version {__version__}")


# Callback for global options
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """
    workgraph - task and epic dependency graph

    [bold]Examples:[/bold]

    Check the graph for corrupted dependencies:
        [cyan]workgraph doctor --dry-run[/cyan]

    See what completing an item would unblock:
        [cyan]workgraph impact ts-a1b2c3[/cyan]
    """
    setup_logging(verbose=verbose)


def create_app() -> typer.Typer:
    """Create and configure the main CLI application"""
    app = typer.Typer(help="workgraph - task and epic dependency graph", rich_markup_mode="rich")
    app.callback()(main)
    app.command("doctor")(doctor.doctor)
    app.command("impact")(graph.impact)
    app.command("deps")(graph.deps)
    app.command("version")(version)
    return app


# Create the app instance
app = create_app()


def run():
    """Entry point for the CLI"""
    app()


if __name__ == "__main__":
    run()
