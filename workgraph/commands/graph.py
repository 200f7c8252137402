"""
Read-only graph commands: impact and dependency listings.
"""

import typer
from rich.console import Console
from rich.table import Table

from ..exceptions import WorkgraphError
from ..work import DepStatus, Status, WorkService

console = Console()

_STATUS_STYLES = {
    Status.OPEN: "white",
    Status.IN_PROGRESS: "yellow",
    Status.BLOCKED: "red",
    Status.DONE: "green",
    Status.CANCELED: "dim",
}


def _status_text(dep: DepStatus) -> str:
    style = _STATUS_STYLES.get(dep.status, "white")
    return f"[{style}]{dep.status.value}[/{style}]"


def impact(
    item_id: str = typer.Argument(..., help="Item to evaluate"),
):
    """
    Show which open items would become ready if ITEM_ID were completed.

    Examples:
        workgraph impact ts-a1b2c3
    """
    try:
        items = WorkService().get_impact(item_id)
    except WorkgraphError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if not items:
        console.print(f"[yellow]Completing {item_id} would not unblock anything.[/yellow]")
        return

    table = Table(title=f"Impact of completing {item_id}")
    table.add_column("Depth", justify="right")
    table.add_column("ID", style="cyan")
    table.add_column("Priority", justify="right")
    table.add_column("Title")
    for item in items:
        table.add_row(str(item.depth), item.id, str(item.priority), item.title)
    console.print(table)


def deps(
    item_id: str = typer.Argument(..., help="Item to inspect"),
):
    """
    Show what ITEM_ID depends on (including inherited epic dependencies) and what depends on it.

    Examples:
        workgraph deps ts-a1b2c3
    """
    try:
        service = WorkService()
        item = service.get_item(item_id)
        dependencies = service.get_all_dependencies(item_id)
        dependents = service.get_blocked_by(item_id)
    except WorkgraphError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    console.print(f"\n[bold]{item.id}[/bold]: {item.title} ({item.status.value})\n")

    if dependencies:
        table = Table(title="Depends on")
        table.add_column("ID", style="cyan")
        table.add_column("Status")
        table.add_column("Title")
        table.add_column("Via")
        for dep in dependencies:
            via = f"inherited from {dep.inherited_from}" if dep.is_inherited else ""
            table.add_row(dep.id, _status_text(dep), dep.title, via)
        console.print(table)
    else:
        console.print("[dim]No dependencies[/dim]")

    if dependents:
        table = Table(title="Blocks")
        table.add_column("ID", style="cyan")
        table.add_column("Status")
        table.add_column("Title")
        for dep in dependents:
            table.add_row(dep.id, _status_text(dep), dep.title)
        console.print(table)
    else:
        console.print("[dim]Nothing depends on this item[/dim]")
