"""Domain models for the RDE engine."""

from rde_engine.models.artifact import (
    ARTIFACT_TYPES,
    READY_STATUS,
    SERVICES,
    Artifact,
    ArtifactInventory,
    GroupedArtifacts,
)
from rde_engine.models.change import Change, DeletedArtifact, UpdateStatus
from rde_engine.models.snapshot import (
    DELETED_RETENTION_DAYS,
    Snapshot,
    SnapshotAction,
    SnapshotProgress,
    SnapshotResult,
)

__all__ = [
    "ARTIFACT_TYPES",
    "Artifact",
    "ArtifactInventory",
    "Change",
    "DELETED_RETENTION_DAYS",
    "DeletedArtifact",
    "GroupedArtifacts",
    "READY_STATUS",
    "SERVICES",
    "Snapshot",
    "SnapshotAction",
    "SnapshotProgress",
    "SnapshotResult",
    "UpdateStatus",
]
