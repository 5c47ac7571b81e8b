"""Snapshot models: stored snapshots, progress polls and operation results.

A snapshot is a named, organisation-scoped capture of an environment's
content and deployment state.  Its name is unique while it is not
``DELETED``; a deleted snapshot can be undeleted for seven days before the
server purges it.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

DELETED_RETENTION_DAYS = 7


class SnapshotAction(str, Enum):
    """Long-running snapshot operations with a progress resource."""

    CREATE = "create-snapshot"
    APPLY = "apply-snapshot"


class Snapshot(BaseModel):
    """A stored snapshot as listed by ``GET /snapshots``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(..., min_length=1)
    description: str | None = None
    state: str = Field(default="AVAILABLE", description="AVAILABLE, DELETED, ...")
    size: int | None = Field(
        default=None,
        description="Total size in bytes, taken from ``size.total_size``.",
    )
    usage: int | None = None
    created: datetime | None = None
    last_used: datetime | None = Field(default=None, alias="lastUsed")

    @field_validator("size", mode="before")
    @classmethod
    def _unwrap_total_size(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return v.get("total_size")
        return v

    @property
    def is_deleted(self) -> bool:
        return self.state == "DELETED"


class SnapshotProgress(BaseModel):
    """One poll of ``GET /snapshots/{name}/progress/{action}``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    FAILED_SENTINEL: ClassVar[int] = -2

    progress_percentage: int = Field(default=0, alias="progressPercentage")
    snapshot_name: str | None = Field(default=None, alias="snapshotName")
    action: str | None = None

    @property
    def failed(self) -> bool:
        return self.progress_percentage == self.FAILED_SENTINEL

    @property
    def done(self) -> bool:
        return self.progress_percentage >= 100


class SnapshotResult(BaseModel):
    """Timing of a completed create or apply operation.

    Each timestamp marks a phase boundary and is never earlier than the one
    before it.  The values are for display only.
    """

    snapshot_name: str
    action: SnapshotAction
    start_time: datetime
    request_accepted_at: datetime | None = None
    processing_started_at: datetime | None = None
    processing_ended_at: datetime | None = None
    ready_at: datetime | None = None
    total_seconds: float | None = None
