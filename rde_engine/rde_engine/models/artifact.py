"""Deployed artifact records and the inventory that groups them.

An artifact is one OSGi bundle or OSGi configuration living on one instance
role.  It is uniquely identified by ``(service, type, id)``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

SERVICES: tuple[str, ...] = ("author", "publish")
ARTIFACT_TYPES: tuple[str, ...] = ("osgi-bundle", "osgi-config")

READY_STATUS = "Ready"


class Artifact(BaseModel):
    """One deployed bundle or configuration."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str = Field(..., description="Server-assigned artifact identifier.")
    service: str = Field(default="", description="Instance role: author or publish.")
    type: str = Field(default="", description="osgi-bundle or osgi-config.")
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.service, self.type, self.id)

    @property
    def bundle_symbolic_name(self) -> str | None:
        return self.metadata.get("bundleSymbolicName")

    @property
    def bundle_version(self) -> str | None:
        return self.metadata.get("bundleVersion")

    @property
    def config_pid(self) -> str | None:
        return self.metadata.get("configPid")

    @property
    def display_name(self) -> str:
        if self.type == "osgi-bundle":
            return f"{self.bundle_symbolic_name}-{self.bundle_version}"
        if self.type == "osgi-config":
            return str(self.config_pid)
        return self.id

    def matches(self, identifier: str) -> bool:
        """Return ``True`` if *identifier* names this artifact.

        Bundles match by symbolic name or ``name-version``; configurations
        match by PID.
        """
        if self.type == "osgi-bundle":
            return identifier in (self.bundle_symbolic_name, self.display_name)
        if self.type == "osgi-config":
            return identifier == self.config_pid
        return False


class ArtifactInventory(BaseModel):
    """All artifacts of an environment plus its overall status."""

    status: str | None = Field(
        default=None,
        description="Environment status reported with the last page, e.g. 'Ready'.",
    )
    items: list[Artifact] = Field(default_factory=list)

    @property
    def is_ready(self) -> bool:
        return self.status == READY_STATUS


class GroupedArtifacts(BaseModel):
    """Artifacts partitioned by ``service x type``.

    The four named buckets hold every artifact with a known service and type.
    Anything else is kept in ``unmatched`` so that callers can detect drift.
    """

    author_bundles: list[Artifact] = Field(default_factory=list)
    author_configs: list[Artifact] = Field(default_factory=list)
    publish_bundles: list[Artifact] = Field(default_factory=list)
    publish_configs: list[Artifact] = Field(default_factory=list)
    unmatched: list[Artifact] = Field(default_factory=list)

    def bucket(self, service: str, artifact_type: str) -> list[Artifact]:
        """Return the named bucket for *service* and *artifact_type*.

        Raises ``KeyError`` for an unknown pair.
        """
        buckets = {
            ("author", "osgi-bundle"): self.author_bundles,
            ("author", "osgi-config"): self.author_configs,
            ("publish", "osgi-bundle"): self.publish_bundles,
            ("publish", "osgi-config"): self.publish_configs,
        }
        return buckets[(service, artifact_type)]

    @property
    def unmatched_count(self) -> int:
        return len(self.unmatched)

    @property
    def total(self) -> int:
        return (
            len(self.author_bundles)
            + len(self.author_configs)
            + len(self.publish_bundles)
            + len(self.publish_configs)
            + len(self.unmatched)
        )
