"""Rollout state machine for the control plane release of a cluster.

A cluster records every rollout in its version history, most recent first.
Each entry starts out ``Partial`` and is flipped to ``Completed`` once the
provisioning pipeline confirms the release is running. At most one entry is
ever ``Partial``, so rollouts for a single cluster are serialized.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from safir.datetime import current_datetime

from ..exceptions import RolloutConflictError
from ..models.domain.cluster import (
    ClusterAggregate,
    ConditionType,
    HistoryEntry,
    Release,
    UpdateState,
    VersionStatus,
)
from .conditions import is_condition_true

__all__ = [
    "RolloutReport",
    "RolloutState",
    "begin_rollout",
    "complete_rollout",
    "is_rollout_complete",
    "rollout_report",
    "rollout_state",
]


class RolloutState(Enum):
    """Where a cluster is in converging on its desired release."""

    NOT_APPLICABLE = "not_applicable"
    """No desired release is set, so there is nothing to roll out."""

    NO_ROLLOUT = "no_rollout"
    """A desired release is set but nothing has been recorded yet."""

    IN_PROGRESS = "in_progress"
    """The latest rollout is not for the desired release or not complete."""

    COMPLETE = "complete"
    """The desired release has been rolled out."""


_COMPLETE_STATES = (RolloutState.COMPLETE, RolloutState.NOT_APPLICABLE)


@dataclass(frozen=True, slots=True)
class RolloutReport:
    """Rollout progress reported together with cluster availability.

    The two are independent. A cluster may be available in the middle of a
    rollout or unavailable after one has completed, so callers must check
    both rather than infer one from the other.
    """

    state: RolloutState
    """Rollout state of the cluster."""

    available: bool
    """Whether the cluster ``Available`` condition is true."""

    @property
    def complete(self) -> bool:
        """Whether the rollout is complete or not applicable."""
        return self.state in _COMPLETE_STATES

    def describe(self) -> str:
        """Summarize the report for logging and error messages."""
        return f"rollout {self.state.value}, available {self.available}"


def rollout_state(version: VersionStatus) -> RolloutState:
    """Determine the rollout state from the version status of a cluster.

    Parameters
    ----------
    version
        Version status of the cluster.

    Returns
    -------
    RolloutState
        Current state of the rollout.
    """
    desired = version.desired.image
    if not desired:
        return RolloutState.NOT_APPLICABLE
    latest = version.latest
    if not latest:
        return RolloutState.NO_ROLLOUT
    if latest.image == desired and latest.state == UpdateState.COMPLETED:
        return RolloutState.COMPLETE
    return RolloutState.IN_PROGRESS


def is_rollout_complete(version: VersionStatus) -> bool:
    """Whether the rollout is complete, for gating purposes.

    A rollout is complete if the history is not empty and its most recent
    entry is a completed rollout of the desired image. If no desired image is
    set, the rollout is not applicable and is treated as complete.
    """
    return rollout_state(version) in _COMPLETE_STATES


def rollout_report(cluster: ClusterAggregate) -> RolloutReport:
    """Report rollout progress and availability of a cluster snapshot."""
    available = is_condition_true(
        cluster.status.conditions, ConditionType.AVAILABLE
    )
    return RolloutReport(
        state=rollout_state(cluster.version), available=available
    )


def begin_rollout(
    version: VersionStatus, image: str, *, now: datetime | None = None
) -> VersionStatus:
    """Start a rollout of a new desired image.

    Any change of image starts a new rollout, whether or not it is older than
    the current release. Requesting the image of the most recent rollout is a
    no-op apart from updating the desired image.

    Parameters
    ----------
    version
        Current version status. Not modified.
    image
        Newly desired image.
    now
        Start time to record, defaulting to the current time.

    Returns
    -------
    VersionStatus
        New version status with a ``Partial`` history entry for the image
        added as the most recent entry.

    Raises
    ------
    RolloutConflictError
        Raised if a rollout of a different image has not yet completed.
    ValueError
        Raised if the image is empty.
    """
    if not image:
        raise ValueError("Cannot roll out an empty image")
    history = [e.model_copy() for e in version.history]
    latest = version.latest
    if latest and latest.image == image:
        return VersionStatus(desired=Release(image=image), history=history)
    for entry in history:
        if entry.state != UpdateState.COMPLETED:
            raise RolloutConflictError(entry.image, image)
    entry = HistoryEntry(
        image=image,
        state=UpdateState.PARTIAL,
        started_time=now or current_datetime(),
    )
    desired = Release(image=image)
    return VersionStatus(desired=desired, history=[entry, *history])


def complete_rollout(
    version: VersionStatus, image: str, *, now: datetime | None = None
) -> VersionStatus:
    """Mark the in-flight rollout of an image as completed.

    Only the state of the entry changes, never its image. Completing a
    rollout that is already complete is a no-op.

    Parameters
    ----------
    version
        Current version status. Not modified.
    image
        Image whose rollout has been confirmed.
    now
        Completion time to record, defaulting to the current time.

    Returns
    -------
    VersionStatus
        New version status with the most recent entry completed.

    Raises
    ------
    ValueError
        Raised if the most recent rollout is not for that image.
    """
    latest = version.latest
    if not latest or latest.image != image:
        raise ValueError(f"No rollout of {image} to complete")
    history = [e.model_copy() for e in version.history]
    if latest.state != UpdateState.COMPLETED:
        history[0] = latest.model_copy(
            update={
                "state": UpdateState.COMPLETED,
                "completion_time": now or current_datetime(),
            }
        )
    return VersionStatus(desired=version.desired.model_copy(), history=history)
