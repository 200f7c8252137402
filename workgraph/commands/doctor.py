"""
Maintenance command: audit the dependency graph and repair what is safe to repair.
"""

import typer
from rich.console import Console
from rich.table import Table

from ..config.settings import validate_all_env_vars
from ..exceptions import WorkgraphError
from ..work import WorkService

console = Console()


def doctor(
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Report problems without fixing them"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Fix without asking for confirmation"),
):
    """
    Check the graph for corrupted dependencies.

    Dependencies between a parent and its own child are removed. General
    dependency cycles are only reported; remove one edge of each by hand.

    Examples:
        workgraph doctor
        workgraph doctor --dry-run
        workgraph doctor --yes
    """
    for error in validate_all_env_vars():
        console.print(f"[yellow]Warning:[/yellow] {error}")

    try:
        service = WorkService()
        conflicts = service.find_parent_child_circular_deps()
        cycles = service.find_circular_deps()
    except WorkgraphError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if not conflicts and not cycles:
        console.print("[green]✓[/green] No dependency problems found")
        return

    if conflicts:
        table = Table(title=f"Parent-child dependency conflicts ({len(conflicts)})")
        table.add_column("Item", style="cyan")
        table.add_column("Depends on", style="cyan")
        for conflict in conflicts:
            table.add_row(conflict.item_id, conflict.depends_on)
        console.print(table)

        if dry_run:
            console.print("[dim]Dry run: no changes made[/dim]")
        elif yes or typer.confirm(f"Remove {len(conflicts)} conflicting dependenc(ies)?"):
            try:
                fixed = service.fix_all_parent_child_circular_deps()
            except WorkgraphError as e:
                console.print(f"[red]Error:[/red] {e}")
                raise typer.Exit(1)
            console.print(f"[green]✓[/green] Removed {fixed} conflicting dependenc(ies)")
        else:
            console.print("[yellow]Skipped[/yellow]")

    if cycles:
        console.print(f"\n[bold red]Dependency cycles[/bold red] ({len(cycles)})")
        for cycle in cycles:
            console.print("  " + " → ".join(cycle.cycle_path))
        console.print("[dim]Cycles are not fixed automatically.[/dim]")
