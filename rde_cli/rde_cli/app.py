"""RDE CLI application -- Typer-based interface to Rapid Development Environments.

Provides commands to inspect an environment, install and delete artifacts,
reset or restart it, and manage snapshots.  Human-readable output goes to
*stderr* via Rich; ``--json`` results go to *stdout* so that scripts can
compose cleanly.  Every classified failure ends the process with the exit
code of its category.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import typer
from rich.console import Console

from rde_cli.cloud import clear_config, load_cache, load_config, load_settings_overrides, save_cache, save_config
from rde_cli.display import (
    display_changes,
    display_failure,
    display_history,
    display_runtime_item,
    display_runtime_items,
    display_snapshot_result,
    display_snapshots,
    display_status,
)
from rde_cli.logging_config import configure_logging
from rde_engine.api import CloudSdkAPI
from rde_engine.artifacts import group_artifacts, load_all_artifacts
from rde_engine.changes import ChangeTracker, UpdateHistory, validate_update_id
from rde_engine.config import Settings, load_settings
from rde_engine.discovery import DevConsoleCache, build_api
from rde_engine.environment import (
    DEPLOYMENT_TYPES,
    delete_artifacts,
    deploy_file,
    deploy_url,
    is_remote_location,
    reset_environment,
    restart_environment,
)
from rde_engine.errors import ErrorKind, ExitCode, Failure, RDEError, fail
from rde_engine.inspection import SCOPES, InspectResource, get_runtime_item, list_runtime_items
from rde_engine.models.artifact import ARTIFACT_TYPES, SERVICES
from rde_engine.snapshots import SnapshotCoordinator, SnapshotPhase

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# App & global state
# ---------------------------------------------------------------------------

app = typer.Typer(
    name="rde",
    help="Operate AEM Rapid Development Environments.",
    no_args_is_help=True,
)
console = Console(stderr=True)

snapshot_app = typer.Typer(
    name="snapshot",
    help="Create, apply and manage snapshots of the environment.",
    no_args_is_help=True,
)
app.add_typer(snapshot_app, name="snapshot")

inspect_app = typer.Typer(
    name="inspect",
    help="Inspect the OSGi framework, requests and inventories of an instance.",
    no_args_is_help=True,
)
app.add_typer(inspect_app, name="inspect")

# Mutable global options populated by the Typer callback.
_json_output: bool = False
_quiet: bool = False
_cli_overrides: dict[str, str] = {}


# ---------------------------------------------------------------------------
# Callback -- global options
# ---------------------------------------------------------------------------


@app.callback()
def _global_options(
    json_mode: bool = typer.Option(
        False,
        "--json/--no-json",
        help="Emit structured JSON to stdout instead of human-readable output.",
    ),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only print errors."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    program_id: str | None = typer.Option(None, "--program-id", help="Program to operate on."),
    environment_id: str | None = typer.Option(None, "--environment-id", help="Environment to operate on."),
    org_id: str | None = typer.Option(None, "--org-id", help="IMS organisation id."),
) -> None:
    """Global options applied to every command."""
    global _json_output, _quiet, _cli_overrides  # noqa: PLW0603
    _json_output = json_mode
    _quiet = quiet
    _cli_overrides = {
        key: value
        for key, value in (
            ("program_id", program_id),
            ("environment_id", environment_id),
            ("org_id", org_id),
        )
        if value
    }
    with _handle_errors("rde"):
        structured = load_settings().structured_logging
    configure_logging(verbose=verbose, structured=structured)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_settings() -> Settings:
    """Settings from CLI options, then ``RDE_*`` variables, then the config file."""
    values: dict[str, Any] = {
        key: value for key, value in load_settings_overrides().items() if f"RDE_{key.upper()}" not in os.environ
    }
    values.update(_cli_overrides)
    return load_settings(**values)


def _write_json(data: Any) -> None:
    sys.stdout.write(json.dumps(data, indent=2, default=str) + "\n")


def _say(message: str) -> None:
    if not (_quiet or _json_output):
        console.print(message)


def _exit_with(failure: Failure) -> None:
    if _json_output:
        _write_json({"error": {"kind": failure.kind.value, "message": failure.message, "code": int(failure.exit_code)}})
    display_failure(console, failure)
    raise typer.Exit(code=int(failure.exit_code))


@contextmanager
def _handle_errors(command: str) -> Iterator[None]:
    """Turn classified failures into a message and the matching exit code."""
    try:
        yield
    except typer.Exit:
        raise
    except RDEError as exc:
        logger.debug("%s failed: %r", command, exc)
        _exit_with(exc.failure)
    except Exception as exc:
        logger.debug("%s failed unexpectedly", command, exc_info=True)
        _exit_with(fail(ErrorKind.INTERNAL_ERROR, command, exc).failure)


@contextmanager
def _api_session(settings: Settings) -> Iterator[CloudSdkAPI]:
    """Open a control-plane session and persist any refreshed endpoint cache."""
    cache = DevConsoleCache(load_cache())
    before = dict(cache.store)
    cache.prune()
    api = build_api(settings, cache)
    if cache.store != before:
        save_cache(dict(cache.store))
    with api:
        yield api


@contextmanager
def _spinner(message: str) -> Iterator[Callable[[str], None]]:
    """Show a status spinner; yields a callback that updates its text."""
    if _quiet or _json_output:
        yield lambda _text: None
        return
    with console.status(message) as status:
        yield lambda text: status.update(text)


def _history_json(history: UpdateHistory) -> dict[str, Any]:
    return {
        "updateId": history.update_id,
        "outcome": history.outcome.value,
        "change": history.change.model_dump(by_alias=True) if history.change else None,
        "logs": history.lines,
        "retrySeconds": history.retry_seconds,
        "status": history.status_code,
    }


def _environment_label(settings: Settings) -> str:
    return f"cm-p{settings.program_id}-e{settings.environment_id}"


# ---------------------------------------------------------------------------
# Environment commands
# ---------------------------------------------------------------------------


@app.command()
def status() -> None:
    """Show the environment status and its deployed bundles and configs."""
    with _handle_errors("status"):
        settings = _load_settings()
        with _api_session(settings) as api, _spinner("retrieving environment status"):
            inventory = load_all_artifacts(api)
        grouped = group_artifacts(inventory.items)

        if _json_output:
            _write_json(
                {
                    "programId": settings.program_id,
                    "environmentId": settings.environment_id,
                    "status": inventory.status,
                    "items": [item.model_dump() for item in inventory.items],
                    "unmatched": grouped.unmatched_count,
                }
            )
            return
        if not _quiet:
            display_status(console, _environment_label(settings), inventory, grouped)


@app.command()
def history(
    update_id: str | None = typer.Argument(None, help="Show the logs of this update."),
) -> None:
    """List the updates of the environment, or show one update with its logs."""
    with _handle_errors("history"):
        if update_id is not None:
            update_id = validate_update_id(update_id)
        settings = _load_settings()
        with _api_session(settings) as api:
            tracker = ChangeTracker(api, settings)
            if update_id is None:
                with _spinner("retrieving updates"):
                    changes = tracker.list_changes()
                if _json_output:
                    _write_json([change.model_dump(by_alias=True) for change in changes])
                elif not _quiet:
                    display_changes(console, changes)
                return

            with _spinner("retrieving update status") as update:
                result = tracker.load_update_history(update_id, on_progress=update)

        if _json_output:
            _write_json(_history_json(result))
        elif not _quiet:
            display_history(console, result)


@app.command()
def install(
    location: str = typer.Argument(
        ...,
        help="Bundle, config, content package or dispatcher configuration; a local path or an http(s) URL.",
    ),
    deployment_type: str | None = typer.Option(
        None,
        "--type",
        "-t",
        help=f"Deployment type, one of: {', '.join(DEPLOYMENT_TYPES)}.",
    ),
    target: str | None = typer.Option(
        None,
        "--target",
        "-s",
        help="Instance to deploy to, author or publish. Both when omitted.",
    ),
    content_path: str | None = typer.Option(None, "--path", "-p", help="Repository path of a content file."),
    force: bool = typer.Option(False, "--force", "-f", help="Ignore a pending upload of an earlier install."),
) -> None:
    """Install or update a bundle, config, content package or dispatcher configuration."""
    with _handle_errors("install"):
        remote = is_remote_location(location)
        if not remote and not Path(location).exists():
            console.print(f"[red]File not found: {location}[/red]")
            raise typer.Exit(code=3)
        if target is not None and target not in SERVICES:
            console.print(f"[red]Invalid target '{target}'. Choose author or publish.[/red]")
            raise typer.Exit(code=3)

        settings = _load_settings()
        with _api_session(settings) as api:
            with _spinner(f"installing {location}") as update:

                def _in_progress() -> None:
                    update("update is in progress")

                if remote:
                    change = deploy_url(
                        api,
                        location,
                        deployment_type,
                        target,
                        content_path,
                        force,
                        _in_progress,
                        timeout=settings.request_timeout,
                    )
                else:
                    change = deploy_file(
                        api,
                        Path(location),
                        deployment_type,
                        target,
                        content_path,
                        force,
                        _in_progress,
                    )

            tracker = ChangeTracker(api, settings)
            with _spinner("retrieving update status") as update:
                history_result = tracker.load_update_history(change.update_id, on_progress=update)
            if not (_quiet or _json_output):
                display_history(console, history_result)

            change = tracker.track_change(change.update_id)

        if _json_output:
            _write_json(_history_json(history_result) | {"change": change.model_dump(by_alias=True)})
        else:
            _say(f"[green]✓ Update #{change.update_id} {change.status}[/green]")


@app.command()
def delete(
    identifier: str = typer.Argument(..., help="Bundle symbolic name or config PID to delete."),
    target: str | None = typer.Option(None, "--target", "-s", help="Only delete from author or publish."),
    artifact_type: str | None = typer.Option(None, "--type", "-t", help="Only delete osgi-bundle or osgi-config."),
    force: bool = typer.Option(False, "--force", "-f"),
) -> None:
    """Delete bundles and configs from the environment."""
    with _handle_errors("delete"):
        if target is not None and target not in SERVICES:
            console.print(f"[red]Invalid target '{target}'. Choose author or publish.[/red]")
            raise typer.Exit(code=3)
        if artifact_type is not None and artifact_type not in ARTIFACT_TYPES:
            console.print(f"[red]Invalid type '{artifact_type}'. Choose osgi-bundle or osgi-config.[/red]")
            raise typer.Exit(code=3)

        services = [target] if target else list(SERVICES)
        types = [artifact_type] if artifact_type else list(ARTIFACT_TYPES)
        settings = _load_settings()
        with _api_session(settings) as api, _spinner(f"deleting {identifier}"):
            histories = delete_artifacts(api, ChangeTracker(api, settings), identifier, services, types, force)

        if _json_output:
            _write_json([_history_json(h) for h in histories])
        elif not _quiet:
            for entry in histories:
                display_history(console, entry)


@app.command()
def reset(
    keep_mutable_content: bool = typer.Option(
        False,
        "--keep-mutable-content",
        help="Reset the RDE but keep mutable content.",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Do not re-use a previously generated base repository. Slower.",
    ),
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Wait until the reset has finished."),
) -> None:
    """Reset the environment."""
    with _handle_errors("reset"):
        settings = _load_settings()
        _say(f"Reset {_environment_label(settings)}")
        with _api_session(settings) as api, _spinner("resetting environment"):
            outcome = reset_environment(api, settings, keep_mutable_content, force, wait)

        if _json_output:
            _write_json(
                {"programId": settings.program_id, "environmentId": settings.environment_id, "status": outcome}
            )
        elif outcome == "ready":
            _say("[green]✓ Environment reset.[/green]")
        elif outcome == "reset_failed":
            console.print("[red]Failed to reset the environment.[/red]")
        else:
            _say("Not waiting to finish reset. Check using the status command for progress.")
        if outcome == "reset_failed":
            raise typer.Exit(code=int(ExitCode.DEPLOYMENT_ERROR))


@app.command()
def restart(
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Wait until the instances are back."),
) -> None:
    """Restart the author and publish instances."""
    with _handle_errors("restart"):
        settings = _load_settings()
        with _api_session(settings) as api, _spinner("restarting environment"):
            outcome = restart_environment(api, settings, wait)

        if _json_output:
            _write_json(
                {"programId": settings.program_id, "environmentId": settings.environment_id, "status": outcome}
            )
        elif outcome == "ready":
            _say("[green]✓ Environment restarted.[/green]")
        else:
            _say("Not waiting to finish restart. Check using the status command for progress.")


# ---------------------------------------------------------------------------
# Snapshot commands
# ---------------------------------------------------------------------------


def _print_event(phase: SnapshotPhase, message: str, elapsed: float) -> None:
    _say(f"[green]✓[/green] {message} [dim]({elapsed:.1f}s)[/dim]")


@snapshot_app.command("list")
def snapshot_list() -> None:
    """List the snapshots of the organisation."""
    with _handle_errors("snapshot list"):
        settings = _load_settings()
        with _api_session(settings) as api, _spinner("retrieving snapshots"):
            snapshots = SnapshotCoordinator(api, settings).list_snapshots()

        if _json_output:
            _write_json([snap.model_dump(mode="json", by_alias=True) for snap in snapshots])
        elif not _quiet:
            display_snapshots(console, snapshots)


@snapshot_app.command("create")
def snapshot_create(
    name: str = typer.Argument(..., help="Name of the new snapshot."),
    description: str | None = typer.Option(None, "--description", "-d", help="Free-text description."),
) -> None:
    """Create a snapshot of the environment's content and deployments."""
    with _handle_errors("snapshot create"):
        settings = _load_settings()
        with _api_session(settings) as api, _spinner(f"creating snapshot {name}"):
            result = SnapshotCoordinator(api, settings, on_event=_print_event).create(name, description)

        if _json_output:
            _write_json(result.model_dump(mode="json"))
        elif not _quiet:
            display_snapshot_result(console, result)


@snapshot_app.command("apply")
def snapshot_apply(
    name: str = typer.Argument(..., help="Name of the snapshot to apply."),
    keep_deployment: bool = typer.Option(
        False,
        "--keep-deployment",
        help="Keep the currently deployed code and only restore content.",
    ),
    status_only: bool = typer.Option(
        False,
        "--status",
        help="Follow an apply started earlier instead of starting a new one.",
    ),
) -> None:
    """Apply a snapshot to the environment."""
    with _handle_errors("snapshot apply"):
        settings = _load_settings()
        with _api_session(settings) as api, _spinner(f"applying snapshot {name}"):
            result = SnapshotCoordinator(api, settings, on_event=_print_event).apply(
                name,
                keep_deployment=keep_deployment,
                status_only=status_only,
            )

        if _json_output:
            _write_json(result.model_dump(mode="json"))
        elif not _quiet:
            display_snapshot_result(console, result)


@snapshot_app.command("delete")
def snapshot_delete(
    name: str = typer.Argument(..., help="Name of the snapshot to delete."),
    wipe: bool = typer.Option(
        False,
        "--wipe",
        help="Permanently remove an already deleted snapshot.",
    ),
) -> None:
    """Mark a snapshot as deleted. It can be undeleted for 7 days."""
    with _handle_errors("snapshot delete"):
        settings = _load_settings()
        with _api_session(settings) as api:
            SnapshotCoordinator(api, settings).delete(name, wipe)
        if _json_output:
            _write_json({"snapshot": name, "status": "wiped" if wipe else "deleted"})
        else:
            _say(f"[green]✓ Snapshot {name} {'wiped' if wipe else 'deleted'}.[/green]")


@snapshot_app.command("undelete")
def snapshot_undelete(name: str = typer.Argument(..., help="Name of the deleted snapshot.")) -> None:
    """Bring back a snapshot that was deleted less than 7 days ago."""
    with _handle_errors("snapshot undelete"):
        settings = _load_settings()
        with _api_session(settings) as api:
            SnapshotCoordinator(api, settings).undelete(name)
        if _json_output:
            _write_json({"snapshot": name, "status": "available"})
        else:
            _say(f"[green]✓ Snapshot {name} undeleted.[/green]")


@snapshot_app.command("restore")
def snapshot_restore(name: str = typer.Argument(..., help="Name of the snapshot to restore.")) -> None:
    """Restore an archived snapshot so that it can be applied again."""
    with _handle_errors("snapshot restore"):
        settings = _load_settings()
        with _api_session(settings) as api:
            SnapshotCoordinator(api, settings).restore(name)
        if _json_output:
            _write_json({"snapshot": name, "status": "restored"})
        else:
            _say(f"[green]✓ Snapshot {name} restored.[/green]")


# ---------------------------------------------------------------------------
# Inspect commands
# ---------------------------------------------------------------------------


def _target_option() -> Any:
    return typer.Option("author", "--target", "-s", help="Instance to inspect: author or publish.")


def _scope_option() -> Any:
    return typer.Option("custom", "--scope", help="Only custom or only product items.")


def _include_option() -> Any:
    return typer.Option(None, "--include", "-i", help="Only items matching this filter.")


def _inspect(
    resource: InspectResource,
    item_id: str | None,
    target: str,
    scope: str = "custom",
    include: str | None = None,
) -> None:
    with _handle_errors(f"inspect {resource.value}"):
        if target not in SERVICES:
            console.print(f"[red]Invalid target '{target}'. Choose author or publish.[/red]")
            raise typer.Exit(code=3)
        if scope not in SCOPES:
            console.print(f"[red]Invalid scope '{scope}'. Choose custom or product.[/red]")
            raise typer.Exit(code=3)

        settings = _load_settings()
        with _api_session(settings) as api, _spinner(f"retrieving {resource.value}"):
            if item_id is not None:
                item = get_runtime_item(api, target, resource, item_id)
            else:
                items = list_runtime_items(api, target, resource, scope=scope, include=include)

        if item_id is not None:
            if _json_output:
                _write_json(item)
            elif not _quiet:
                display_runtime_item(console, item)
        elif _json_output:
            _write_json(items)
        elif not _quiet:
            display_runtime_items(console, resource, items, target)


@inspect_app.command("osgi-bundles")
def inspect_bundles(
    bundle_id: str | None = typer.Argument(None, help="Show this bundle only."),
    target: str = _target_option(),
    scope: str = _scope_option(),
    include: str | None = _include_option(),
) -> None:
    """List the OSGi bundles of an instance."""
    _inspect(InspectResource.OSGI_BUNDLES, bundle_id, target, scope, include)


@inspect_app.command("osgi-components")
def inspect_components(
    name: str | None = typer.Argument(None, help="Show this component only."),
    target: str = _target_option(),
    scope: str = _scope_option(),
    include: str | None = _include_option(),
) -> None:
    """List the OSGi components of an instance."""
    _inspect(InspectResource.OSGI_COMPONENTS, name, target, scope, include)


@inspect_app.command("osgi-configurations")
def inspect_configurations(
    pid: str | None = typer.Argument(None, help="Show this configuration only."),
    target: str = _target_option(),
    scope: str = _scope_option(),
    include: str | None = _include_option(),
) -> None:
    """List the OSGi configurations of an instance."""
    _inspect(InspectResource.OSGI_CONFIGURATIONS, pid, target, scope, include)


@inspect_app.command("osgi-services")
def inspect_services(
    service_id: str | None = typer.Argument(None, help="Show this service only."),
    target: str = _target_option(),
    scope: str = _scope_option(),
    include: str | None = _include_option(),
) -> None:
    """List the OSGi services of an instance."""
    _inspect(InspectResource.OSGI_SERVICES, service_id, target, scope, include)


@inspect_app.command("sling-requests")
def inspect_requests(
    request_id: str | None = typer.Argument(None, help="Show this request only."),
    target: str = _target_option(),
    include: str | None = _include_option(),
) -> None:
    """List the recent Sling requests of an instance."""
    _inspect(InspectResource.SLING_REQUESTS, request_id, target, include=include)


@inspect_app.command("inventory")
def inspect_inventory(
    inventory_id: str | None = typer.Argument(None, help="Show this inventory only."),
    target: str = _target_option(),
    include: str | None = _include_option(),
) -> None:
    """List the status inventories of an instance."""
    _inspect(InspectResource.INVENTORY, inventory_id, target, include=include)


# Older top-level spellings of the same commands.
app.command("osgi-bundles", hidden=True)(inspect_bundles)
app.command("osgi-configurations", hidden=True)(inspect_configurations)
app.command("inventory", hidden=True)(inspect_inventory)


# ---------------------------------------------------------------------------
# Local configuration
# ---------------------------------------------------------------------------


@app.command()
def configure(
    program_id: str | None = typer.Option(None, "--program-id", help="Default program."),
    environment_id: str | None = typer.Option(None, "--environment-id", help="Default environment."),
    org_id: str | None = typer.Option(None, "--org-id", help="IMS organisation id."),
    access_token: str | None = typer.Option(None, "--access-token", help="IMS access token."),
    api_key: str | None = typer.Option(None, "--api-key", help="API key (client id)."),
    cloud_manager_url: str | None = typer.Option(None, "--cloud-manager-url", help="Cloud Manager base URL."),
    show: bool = typer.Option(False, "--show", help="Print the stored configuration."),
    clear: bool = typer.Option(False, "--clear", help="Remove the stored configuration and cache."),
) -> None:
    """Store defaults in ~/.rde/config.toml."""
    if clear:
        clear_config()
        console.print("[green]✓ Configuration removed.[/green]")
        return

    values = {
        "program_id": program_id,
        "environment_id": environment_id,
        "org_id": org_id,
        "access_token": access_token,
        "api_key": api_key,
        "cloud_manager_url": cloud_manager_url,
    }
    if any(value is not None for value in values.values()):
        path = save_config(**values)
        console.print(f"[green]✓ Configuration saved to {path}[/green]")

    if show or all(value is None for value in values.values()):
        section = dict(load_config().get("rde", {}))
        if section.get("access_token"):
            section["access_token"] = "****"
        if _json_output:
            _write_json(section)
        elif not section:
            console.print("[dim]No configuration stored.[/dim]")
        else:
            for key, value in section.items():
                console.print(f"[dim]{key:<18}[/dim] {value}")
