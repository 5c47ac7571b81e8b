"""Rich output formatting for the RDE CLI.

All functions write to a :class:`rich.console.Console` instance (typically
bound to *stderr*) so that ``--json`` output on *stdout* is never polluted
with human-readable decoration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from rde_engine.changes import HistoryOutcome, UpdateHistory, format_change
from rde_engine.inspection import InspectResource
from rde_engine.models.snapshot import DELETED_RETENTION_DAYS

if TYPE_CHECKING:
    from rde_engine.errors import Failure
    from rde_engine.models.artifact import Artifact, ArtifactInventory, GroupedArtifacts
    from rde_engine.models.change import Change
    from rde_engine.models.snapshot import Snapshot, SnapshotResult


# ---------------------------------------------------------------------------
# Status colour mapping
# ---------------------------------------------------------------------------

_STATUS_COLOURS: dict[str, str] = {
    "Ready": "green",
    "completed": "green",
    "AVAILABLE": "green",
    "failed": "red",
    "Reset Failed": "red",
    "staged": "yellow",
    "processing": "yellow",
    "waiting": "dim",
    "DELETED": "dim red",
}


def _coloured_status(status: str | None) -> str:
    """Return a Rich markup string with the status colour-coded."""
    text = status or "unknown"
    colour = _STATUS_COLOURS.get(text, "white")
    return f"[{colour}]{text}[/{colour}]"


def _human_size(size: int | None) -> str:
    if size is None:
        return "-"
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


def display_failure(console: Console, failure: Failure) -> None:
    """Render a failure as one line; staged deployments get a warning style."""
    if failure.is_warning:
        console.print(f"[yellow]Warning: {failure.message}[/yellow]")
    else:
        console.print(f"[red]Error: {failure.message}[/red]")


# ---------------------------------------------------------------------------
# Status / artifacts
# ---------------------------------------------------------------------------


def _artifact_rows(table: Table, artifacts: list[Artifact]) -> None:
    for artifact in artifacts:
        table.add_row(artifact.service, artifact.type, artifact.display_name, artifact.id)


def display_status(
    console: Console,
    environment: str,
    inventory: ArtifactInventory,
    grouped: GroupedArtifacts,
) -> None:
    """Render the environment status and its deployed bundles and configs."""
    console.print(
        Panel(
            f"[bold]Environment:[/bold] {environment}\n[bold]Status:[/bold]      {_coloured_status(inventory.status)}",
            title="RDE Status",
            border_style="blue",
        )
    )

    table = Table(title="Deployed Artifacts", show_lines=False)
    table.add_column("Service", style="cyan")
    table.add_column("Type")
    table.add_column("Name", style="bold")
    table.add_column("ID", style="dim")
    for service in ("author", "publish"):
        for artifact_type in ("osgi-bundle", "osgi-config"):
            _artifact_rows(table, grouped.bucket(service, artifact_type))

    if table.row_count == 0:
        console.print("[dim]No bundles or configurations deployed.[/dim]")
    else:
        console.print(table)

    if grouped.unmatched_count:
        console.print(
            f"[yellow]{grouped.unmatched_count} artifact(s) of an unrecognised service or type are not shown.[/yellow]"
        )


# ---------------------------------------------------------------------------
# Updates
# ---------------------------------------------------------------------------


def display_changes(console: Console, changes: list[Change]) -> None:
    if not changes:
        console.print("[dim]There are no updates yet.[/dim]")
        return
    for change in changes:
        console.print(format_change(change), highlight=False)


def display_history(console: Console, history: UpdateHistory) -> None:
    """Render the outcome of an update history lookup."""
    if history.outcome is HistoryOutcome.NOT_FOUND:
        console.print(f"[yellow]An update with ID {history.update_id} does not exist.[/yellow]")
        return
    if history.outcome is HistoryOutcome.ERROR:
        console.print(f"[red]Error: {history.status_code} - {history.reason}[/red]")
        return
    if history.outcome is HistoryOutcome.LOGS_UNAVAILABLE:
        console.print(f"No logs have become available within the retry period of {history.retry_seconds:.0f} seconds.")
        console.print(f'Please run "rde history {history.update_id}" to check for progress manually.')
        return

    if history.change is not None:
        console.print(format_change(history.change), highlight=False)
    if history.lines:
        console.print("Logs:")
        for line in history.lines:
            console.print(f"> {line}", highlight=False, markup=False)
    else:
        console.print("[dim]No logs available for this update.[/dim]")


# ---------------------------------------------------------------------------
# Runtime inspection
# ---------------------------------------------------------------------------

_INSPECT_COLUMNS: dict[InspectResource, tuple[str, ...]] = {
    InspectResource.INVENTORY: ("format", "id"),
    InspectResource.OSGI_BUNDLES: ("id", "name", "version", "state", "stateString", "startLevel"),
    InspectResource.OSGI_COMPONENTS: ("name", "bundleId", "scope", "immediate", "implementationClass"),
    InspectResource.OSGI_CONFIGURATIONS: ("pid",),
    InspectResource.OSGI_SERVICES: ("id", "scope", "bundleId", "types"),
    InspectResource.SLING_REQUESTS: ("id", "userId", "method", "path"),
}


def _cell(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, list):
        return ", ".join(str(v) for v in value)
    return str(value)


def display_runtime_items(
    console: Console,
    resource: InspectResource,
    items: list[dict[str, Any]],
    target: str,
) -> None:
    """Render the items of one inspected resource with its known columns."""
    if not items:
        console.print(f"[dim]No {resource.value} found on {target}.[/dim]")
        return

    columns = _INSPECT_COLUMNS[resource]
    table = Table(title=f"{resource.value} ({target})", show_lines=False)
    for column in columns:
        table.add_column(column, style="bold" if column == columns[0] else None)
    for item in items:
        table.add_row(*(_cell(item.get(column)) for column in columns))
    console.print(table)


def display_runtime_item(console: Console, item: dict[str, Any]) -> None:
    console.print_json(data=item)


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


def display_snapshots(console: Console, snapshots: list[Snapshot]) -> None:
    """Render the snapshots of the organisation as a table."""
    if not snapshots:
        console.print("[dim]There are no snapshots yet.[/dim]")
        return

    table = Table(title="Snapshots", show_lines=False)
    table.add_column("Name", style="bold")
    table.add_column("Description")
    table.add_column("State")
    table.add_column("Size", justify="right")
    table.add_column("Usage", justify="right")
    table.add_column("Created", style="dim")
    table.add_column("Last Used", style="dim")

    for snap in snapshots:
        table.add_row(
            snap.name,
            snap.description or "",
            _coloured_status(snap.state),
            _human_size(snap.size),
            str(snap.usage) if snap.usage is not None else "-",
            snap.created.strftime("%Y-%m-%d %H:%M") if snap.created else "-",
            snap.last_used.strftime("%Y-%m-%d %H:%M") if snap.last_used else "-",
        )

    console.print(table)
    if any(snap.is_deleted for snap in snapshots):
        console.print(
            f"[dim]Deleted snapshots can be undeleted for {DELETED_RETENTION_DAYS} days before they are purged.[/dim]"
        )


def display_snapshot_result(console: Console, result: SnapshotResult) -> None:
    verb = "Created" if result.action.value == "create-snapshot" else "Applied"
    seconds = f"{result.total_seconds:.1f}s" if result.total_seconds is not None else "-"
    console.print(f"[green]✓ {verb} snapshot [bold]{result.snapshot_name}[/bold] in {seconds}[/green]")
