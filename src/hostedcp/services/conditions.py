"""Aggregation of cluster conditions into overall health."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from ..models.domain.cluster import ConditionType
from ..models.domain.kubernetes import Condition

__all__ = [
    "REQUIRED_CONDITIONS",
    "HealthReport",
    "aggregate_conditions",
    "is_condition_true",
]

REQUIRED_CONDITIONS = tuple(ConditionType)
"""Condition types that must all be true for a cluster to be healthy."""


@dataclass(frozen=True, slots=True)
class HealthReport:
    """Overall health of a cluster derived from its conditions."""

    ready: bool
    """Whether every required condition is true."""

    conditions: dict[ConditionType, bool]
    """Truth of each required condition."""

    def failing(self) -> list[ConditionType]:
        """Required conditions that are not true."""
        return [t for t, v in self.conditions.items() if not v]

    def describe(self) -> str:
        """Summarize the report for logging and error messages."""
        if self.ready:
            return "all required conditions true"
        failing = ", ".join(t.value for t in self.failing())
        return f"conditions not true: {failing}"


def is_condition_true(
    conditions: Iterable[Condition], condition_type: ConditionType | str
) -> bool:
    """Determine whether a condition is present and true.

    Parameters
    ----------
    conditions
        Conditions from the status of an object.
    condition_type
        Type of condition to check.

    Returns
    -------
    bool
        `True` if a condition of that type exists with status ``True``.
        Missing and ``Unknown`` conditions are false.
    """
    if isinstance(condition_type, ConditionType):
        condition_type = condition_type.value
    return any(c.type == condition_type and c.is_true for c in conditions)


def aggregate_conditions(conditions: Iterable[Condition]) -> HealthReport:
    """Compute overall health from the current conditions of a cluster.

    Overall health is the logical AND of every required condition. There is
    no partial credit, and a missing condition counts as false. Nothing is
    remembered between calls, so pass the full current condition set each
    time.

    Parameters
    ----------
    conditions
        Current conditions from the status of the cluster.

    Returns
    -------
    HealthReport
        Overall readiness and the truth of each required condition.
    """
    conditions = list(conditions)
    truth = {t: is_condition_true(conditions, t) for t in REQUIRED_CONDITIONS}
    return HealthReport(ready=all(truth.values()), conditions=truth)
