"""Mutating operations on an environment: install, delete, reset and restart."""

from __future__ import annotations

import io
import logging
import zipfile
from collections.abc import Callable, Sequence
from pathlib import Path, PurePosixPath
from urllib.parse import urlsplit

import httpx

from rde_engine.api import CloudSdkAPI
from rde_engine.artifacts import find_artifacts, group_artifacts, load_all_artifacts, wait_until_ready
from rde_engine.changes import ChangeTracker, UpdateHistory
from rde_engine.config import Settings
from rde_engine.errors import ErrorKind, fail, unexpected_api_error
from rde_engine.models.artifact import ARTIFACT_TYPES, READY_STATUS, SERVICES
from rde_engine.models.change import Change
from rde_engine.request import FormData

logger = logging.getLogger(__name__)

DEPLOYMENT_TYPES: tuple[str, ...] = (
    "osgi-bundle",
    "osgi-config",
    "content-package",
    "content-file",
    "content-xml",
    "dispatcher-config",
)

RESET_FAILED_STATUS = "Reset Failed"


# ---------------------------------------------------------------------------
# Install
# ---------------------------------------------------------------------------


def _zip_entries(source: Path | bytes) -> list[str]:
    """Names inside a zip archive; empty when *source* is not a readable archive."""
    try:
        with zipfile.ZipFile(source if isinstance(source, Path) else io.BytesIO(source)) as archive:
            return archive.namelist()
    except zipfile.BadZipFile:
        return []


def _guess_from_name(name: str, content_path: str | None, entries: list[str] | None) -> list[str]:
    suffix = PurePosixPath(name).suffix.lower()
    if suffix == ".jar":
        return ["osgi-bundle"]
    if suffix == ".json":
        return ["osgi-config"]
    if suffix == ".zip":
        if entries is not None:
            if any(entry.startswith("jcr_root/") for entry in entries):
                return ["content-package"]
            if any(entry.startswith("conf.dispatcher.d/") for entry in entries):
                return ["dispatcher-config"]
        return ["content-package", "dispatcher-config"]
    if suffix == ".xml":
        return ["content-xml"] if content_path is not None else list(DEPLOYMENT_TYPES)
    return ["content-file"] if content_path is not None else list(DEPLOYMENT_TYPES)


def guess_deployment_type(path: Path, content_path: str | None = None) -> list[str]:
    """Return the deployment types *path* could be, most specific first.

    A single entry means the type is unambiguous.  Zip archives are opened
    to tell content packages (``jcr_root/``) from dispatcher configurations
    (``conf.dispatcher.d/``).
    """
    if path.is_dir():
        return ["dispatcher-config"]
    entries = _zip_entries(path) if path.suffix.lower() == ".zip" and path.is_file() else None
    return _guess_from_name(path.name, content_path, entries)


def is_remote_location(location: str) -> bool:
    return urlsplit(location).scheme in ("http", "https")


def download_artifact(
    url: str,
    timeout: float = 30.0,
    transport: httpx.BaseTransport | None = None,
) -> tuple[str, str, bytes]:
    """Fetch a remote artifact, following redirects.

    Returns ``(effective_name, requested_name, payload)``: the file names
    taken from the last path segment of the final and of the requested URL.
    """
    with httpx.Client(timeout=httpx.Timeout(timeout), follow_redirects=True, transport=transport) as client:
        try:
            response = client.get(url)
        except httpx.TransportError as exc:
            logger.warning("Download of %s failed: %s", url, exc)
            raise fail(ErrorKind.NETWORK_ERROR, url) from exc
    if response.status_code != 200:
        raise unexpected_api_error(response)

    requested = PurePosixPath(urlsplit(url).path).name
    effective = PurePosixPath(response.url.path).name or requested
    logger.info("Downloaded %s (%d bytes)", response.url, len(response.content))
    return effective, requested, response.content


def _zip_directory(path: Path) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        for file in sorted(path.rglob("*")):
            if file.is_file():
                archive.write(file, file.relative_to(path).as_posix())
    return buffer.getvalue()


def _resolve_type(guesses: list[str], deployment_type: str | None) -> str:
    if deployment_type is None:
        if len(guesses) != 1:
            raise fail(ErrorKind.INVALID_DEPLOYMENT_TYPE, ", ".join(guesses))
        return guesses[0]
    if deployment_type not in DEPLOYMENT_TYPES:
        raise fail(ErrorKind.INVALID_DEPLOYMENT_TYPE, ", ".join(DEPLOYMENT_TYPES))
    return deployment_type


def _upload(
    api: CloudSdkAPI,
    name: str,
    payload: bytes,
    deployment_type: str,
    target: str | None,
    content_path: str | None,
    force: bool,
    on_progress: Callable[[], None] | None,
) -> Change:
    fields = {"type": deployment_type, "name": name, "force": "true" if force else "false"}
    if target:
        fields["service"] = target
    if content_path:
        fields["contentPath"] = content_path
    form = FormData(fields=fields, files={"file": (name, payload, "application/octet-stream")})

    logger.info("Installing %s as %s (%d bytes)", name, deployment_type, len(payload))
    return Change.model_validate(api.deploy(form, on_progress))


def deploy_file(
    api: CloudSdkAPI,
    path: Path,
    deployment_type: str | None = None,
    target: str | None = None,
    content_path: str | None = None,
    force: bool = False,
    on_progress: Callable[[], None] | None = None,
) -> Change:
    """Install the artifact at *path* and return the update once the server settles.

    The type is inferred from the file when not given.  A dispatcher
    configuration directory is zipped before upload.  The returned change is
    not classified; follow it with :meth:`ChangeTracker.track_change`.
    """
    deployment_type = _resolve_type(
        guess_deployment_type(path, content_path) if deployment_type is None else [],
        deployment_type,
    )

    if path.is_dir():
        if deployment_type != "dispatcher-config":
            raise fail(ErrorKind.INVALID_DEPLOYMENT_TYPE, "dispatcher-config")
        name = f"{path.name}.zip"
        payload = _zip_directory(path)
    else:
        name = path.name
        payload = path.read_bytes()

    return _upload(api, name, payload, deployment_type, target, content_path, force, on_progress)


def deploy_url(
    api: CloudSdkAPI,
    url: str,
    deployment_type: str | None = None,
    target: str | None = None,
    content_path: str | None = None,
    force: bool = False,
    on_progress: Callable[[], None] | None = None,
    *,
    timeout: float = 30.0,
    transport: httpx.BaseTransport | None = None,
) -> Change:
    """Download the artifact at *url* and install it like a local file.

    When the name of the redirect target gives no hint of the type, the
    name in the requested URL is tried instead.
    """
    name, requested, payload = download_artifact(url, timeout, transport)
    guesses: list[str] = []
    if deployment_type is None:
        guesses = _guess_from_name(name, content_path, _zip_entries(payload))
        if guesses == list(DEPLOYMENT_TYPES) and requested and requested != name:
            name = requested
            guesses = _guess_from_name(name, content_path, _zip_entries(payload))
    deployment_type = _resolve_type(guesses, deployment_type)
    return _upload(api, name, payload, deployment_type, target, content_path, force, on_progress)


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------


def delete_artifacts(
    api: CloudSdkAPI,
    tracker: ChangeTracker,
    identifier: str,
    services: Sequence[str] = SERVICES,
    types: Sequence[str] = ARTIFACT_TYPES,
    force: bool = False,
) -> list[UpdateHistory]:
    """Delete every artifact named *identifier* and return the history of each delete."""
    inventory = load_all_artifacts(api)
    matches = find_artifacts(group_artifacts(inventory.items), identifier, services, types)
    if not matches:
        type_info = types[0] if len(types) == 1 else "artifact"
        service_info = f"the {services[0]} of " if len(services) == 1 else ""
        raise fail(ErrorKind.DELETE_NOT_FOUND, type_info, identifier, service_info)

    histories: list[UpdateHistory] = []
    for artifact in matches:
        logger.info("Deleting %s %s from %s", artifact.type, artifact.display_name, artifact.service)
        change = api.delete_artifact(artifact.id, force)
        histories.append(tracker.load_update_history(str(change["updateId"])))
    return histories


# ---------------------------------------------------------------------------
# Reset / restart
# ---------------------------------------------------------------------------


def _check_accepted(response: httpx.Response) -> None:
    if response.status_code == 503:
        raise fail(ErrorKind.DEPLOYMENT_IN_PROGRESS, status_code=503)
    if not response.is_success:
        raise unexpected_api_error(response)


def reset_environment(
    api: CloudSdkAPI,
    settings: Settings,
    keep_mutable_content: bool = False,
    force: bool = False,
    wait: bool = True,
) -> str:
    """Reset the environment.

    Returns ``"ready"`` or ``"reset_failed"`` when waiting, ``"resetting"``
    otherwise.
    """
    _check_accepted(api.reset_env(keep_mutable_content, force))
    if not wait:
        return "resetting"

    inventory = wait_until_ready(
        api,
        settings.readiness_interval,
        settings.readiness_max_attempts,
        ready=lambda inv: inv.status in (READY_STATUS, RESET_FAILED_STATUS),
    )
    if inventory.status == RESET_FAILED_STATUS:
        logger.warning("Environment reset failed")
        return "reset_failed"
    return "ready"


def restart_environment(api: CloudSdkAPI, settings: Settings, wait: bool = True) -> str:
    """Restart the AEM instances; returns ``"ready"`` or ``"restarting"``."""
    _check_accepted(api.restart_env())
    if not wait:
        return "restarting"
    wait_until_ready(api, settings.readiness_interval, settings.readiness_max_attempts)
    return "ready"
