"""Data types for interacting with Kubernetes."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

__all__ = [
    "Condition",
    "ConditionStatus",
    "KubernetesObjectMetadata",
    "NodeConditionType",
]


class ConditionStatus(str, Enum):
    """Possible values of the ``status`` field of a condition."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class NodeConditionType(str, Enum):
    """Node condition types consulted by convergence checks."""

    READY = "Ready"


class Condition(BaseModel):
    """A single condition from the status of a Kubernetes object.

    Only one condition of a given type is meaningful for an object. The type
    is kept as a string since objects may carry condition types that nothing
    here knows about.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, extra="ignore", populate_by_name=True
    )

    type: Annotated[str, Field(title="Condition type")]

    status: Annotated[
        ConditionStatus,
        Field(
            title="Condition status",
            description="Anything other than ``True`` is treated as false",
        ),
    ] = ConditionStatus.UNKNOWN

    reason: Annotated[
        str | None,
        Field(title="Reason", description="Machine-readable reason code"),
    ] = None

    message: Annotated[
        str | None,
        Field(title="Message", description="Human-readable explanation"),
    ] = None

    last_transition_time: Annotated[
        datetime | None,
        Field(title="When the condition last changed status"),
    ] = None

    @property
    def is_true(self) -> bool:
        """Whether the condition is known to be true."""
        return self.status == ConditionStatus.TRUE


class KubernetesObjectMetadata(BaseModel):
    """The subset of object metadata used to identify an object."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="ignore", populate_by_name=True
    )

    name: Annotated[str, Field(title="Name of the object")]

    namespace: Annotated[str, Field(title="Namespace of the object")]

    resource_version: Annotated[
        str | None, Field(title="Resource version of the object")
    ] = None
