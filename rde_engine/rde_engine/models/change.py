"""Update (change) records returned by the RDE control plane.

An update is one asynchronous mutation of an environment: the deployment or
deletion of an artifact.  The server assigns the ``updateId`` and drives the
status forward through ``waiting -> processing -> completed|failed|staged``;
this client only ever reads it.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class UpdateStatus(str, Enum):
    """Lifecycle state of an update."""

    WAITING = "waiting"
    PROCESSING = "processing"
    STAGED = "staged"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES: frozenset[UpdateStatus] = frozenset(
    {UpdateStatus.STAGED, UpdateStatus.COMPLETED, UpdateStatus.FAILED}
)


class DeletedArtifact(BaseModel):
    """The artifact removed by a delete update."""

    model_config = ConfigDict(extra="ignore")

    type: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def display_name(self) -> str:
        if self.type == "osgi-bundle":
            return str(self.metadata.get("bundleSymbolicName", ""))
        return str(self.metadata.get("configPid", ""))


class Change(BaseModel):
    """A single update as reported by ``GET /runtime/updates/{id}``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)

    update_id: str = Field(
        ...,
        alias="updateId",
        description="Opaque identifier assigned by the server.",
    )
    action: str = Field(default="", description="What the update does, e.g. install or delete.")
    status: str = Field(
        default=UpdateStatus.WAITING.value,
        description="Current lifecycle state; unknown values are kept verbatim.",
    )
    type: str | None = Field(
        default=None,
        description="Artifact type, e.g. osgi-bundle, dispatcher-config, frontend.",
    )
    service: str | None = None
    services: list[str] | str | None = None
    user: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamps: dict[str, Any] = Field(default_factory=dict)
    deleted_artifact: DeletedArtifact | None = Field(default=None, alias="deletedArtifact")

    @property
    def is_failed(self) -> bool:
        return self.status == UpdateStatus.FAILED

    @property
    def is_staged(self) -> bool:
        return self.status == UpdateStatus.STAGED

    @property
    def lifecycle(self) -> UpdateStatus | None:
        try:
            return UpdateStatus(self.status)
        except ValueError:
            return None

    @property
    def target_label(self) -> str:
        """Where the update was applied, for one-line summaries."""
        if self.type == "dispatcher-config":
            return "dispatcher"
        if isinstance(self.services, list):
            return ",".join(self.services)
        return self.services or self.service or ""
