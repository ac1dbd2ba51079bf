"""Models for node pool aggregates."""

from __future__ import annotations

from typing import Annotated, Any, Self

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .kubernetes import KubernetesObjectMetadata

__all__ = ["NodePoolAggregate", "NodePoolSpec"]


class NodePoolSpec(BaseModel):
    """Fields of the node pool specification read during convergence."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="ignore", populate_by_name=True
    )

    replicas: Annotated[
        int | None,
        Field(
            title="Desired number of worker nodes",
            description=(
                "Absent means the pool is unmanaged and is treated as zero."
                " Older versions of the API called this ``nodeCount``."
            ),
            ge=0,
            validation_alias=AliasChoices("replicas", "nodeCount"),
        ),
    ] = None


class NodePoolAggregate(BaseModel):
    """Declared worker capacity for one segment of a guest cluster.

    Observed node counts are deliberately not part of this model. They are
    read live from the guest cluster whenever convergence is checked.
    """

    model_config = ConfigDict(extra="ignore")

    metadata: Annotated[KubernetesObjectMetadata, Field(title="Metadata")]

    spec: Annotated[NodePoolSpec, Field(title="Specification")] = (
        NodePoolSpec()
    )

    @classmethod
    def from_object(cls, obj: dict[str, Any]) -> Self:
        """Parse a node pool from a Kubernetes custom object."""
        return cls.model_validate(obj)

    @property
    def desired_replicas(self) -> int:
        """Desired node count, zero if unset."""
        return self.spec.replicas or 0
