"""Models for hosted cluster aggregates."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Self

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .kubernetes import Condition, KubernetesObjectMetadata

__all__ = [
    "ClusterAggregate",
    "ClusterSpec",
    "ClusterStatus",
    "ConditionType",
    "CredentialReference",
    "HistoryEntry",
    "Release",
    "UpdateState",
    "VersionStatus",
    "VersionUpdate",
    "control_plane_namespace",
]


def control_plane_namespace(namespace: str, name: str) -> str:
    """Return the namespace holding the control plane for a cluster.

    Parameters
    ----------
    namespace
        Namespace of the cluster aggregate.
    name
        Name of the cluster aggregate.

    Returns
    -------
    str
        Namespace in which the control plane workloads run. Deleting it
        deletes every control plane object for that cluster.
    """
    return f"{namespace}-{name}"


class ConditionType(str, Enum):
    """Condition types that must all be true for a cluster to be healthy.

    This set is closed. Adding a type here changes what overall health means
    for every cluster.
    """

    AVAILABLE = "Available"
    ETCD_AVAILABLE = "EtcdAvailable"
    KUBE_API_SERVER_AVAILABLE = "KubeAPIServerAvailable"
    INFRASTRUCTURE_READY = "InfrastructureReady"
    VALID_CONFIGURATION = "ValidConfiguration"


class UpdateState(str, Enum):
    """State of a single entry in the version history."""

    PARTIAL = "Partial"
    COMPLETED = "Completed"


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, extra="ignore", populate_by_name=True
    )


class Release(_CamelModel):
    """A control plane release, identified by its image reference."""

    image: Annotated[
        str,
        Field(
            title="Release image",
            description="Opaque image reference. Empty means unset.",
            examples=["quay.io/openshift-release-dev/ocp-release:4.9.0"],
        ),
    ] = ""


class HistoryEntry(_CamelModel):
    """One rollout recorded in the version history."""

    image: Annotated[str, Field(title="Release image rolled out")]

    state: Annotated[
        UpdateState,
        Field(
            title="Rollout state",
            description="``Partial`` until the rollout has been confirmed",
        ),
    ] = UpdateState.PARTIAL

    version: Annotated[
        str | None, Field(title="Version string of the release, if known")
    ] = None

    started_time: Annotated[
        datetime | None, Field(title="When the rollout started")
    ] = None

    completion_time: Annotated[
        datetime | None, Field(title="When the rollout completed")
    ] = None


class VersionStatus(_CamelModel):
    """Desired version and rollout history of a cluster.

    The history is ordered most recent first, so the first entry is the
    latest rollout.
    """

    desired: Annotated[Release, Field(title="Desired release")] = Release()

    history: Annotated[
        list[HistoryEntry], Field(title="Rollout history, most recent first")
    ] = []

    @property
    def latest(self) -> HistoryEntry | None:
        """Most recent history entry, if any."""
        return self.history[0] if self.history else None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the form stored in the object status."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class CredentialReference(_CamelModel):
    """Reference to the secret holding a published guest credential."""

    name: Annotated[str, Field(title="Name of secret in cluster namespace")]


class ClusterSpec(_CamelModel):
    """Fields of the cluster specification read during convergence."""

    release: Annotated[Release, Field(title="Desired release")] = Release()


class ClusterStatus(_CamelModel):
    """Observed status of a hosted cluster."""

    conditions: Annotated[list[Condition], Field(title="Conditions")] = []

    version: Annotated[
        VersionStatus | None, Field(title="Version and rollout history")
    ] = None

    kubeconfig: Annotated[
        CredentialReference | None,
        Field(
            title="Published guest credential",
            description="Absent until the control plane publishes it",
        ),
    ] = None


class ClusterAggregate(_CamelModel):
    """Snapshot of one hosted control plane.

    This is a point-in-time read of the cluster object. It is never cached
    between convergence passes.
    """

    metadata: Annotated[KubernetesObjectMetadata, Field(title="Metadata")]

    spec: Annotated[ClusterSpec, Field(title="Specification")] = ClusterSpec()

    status: Annotated[ClusterStatus, Field(title="Status")] = ClusterStatus()

    @classmethod
    def from_object(cls, obj: dict[str, Any]) -> Self:
        """Parse a cluster from a Kubernetes custom object.

        Parameters
        ----------
        obj
            Custom object as returned by the Kubernetes API.

        Returns
        -------
        ClusterAggregate
            Parsed cluster.
        """
        return cls.model_validate(obj)

    @property
    def identity(self) -> str:
        """Namespace-qualified name of the cluster."""
        return f"{self.metadata.namespace}/{self.metadata.name}"

    @property
    def control_plane_namespace(self) -> str:
        """Namespace holding the control plane workloads."""
        return control_plane_namespace(
            self.metadata.namespace, self.metadata.name
        )

    @property
    def version(self) -> VersionStatus:
        """Version status, empty if the cluster has not reported one."""
        return self.status.version or VersionStatus()


@dataclass
class VersionUpdate:
    """Result of updating the version status of a cluster."""

    cluster: ClusterAggregate
    """Snapshot of the cluster the new version status was computed from."""

    version: VersionStatus
    """Version status of the cluster after the update."""

    @property
    def changed(self) -> bool:
        """Whether the version status was written."""
        return self.version != self.cluster.version
