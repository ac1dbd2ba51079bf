"""Timeout class for convergence operations."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Self

from safir.datetime import current_datetime

from .exceptions import ControllerTimeoutError

__all__ = ["Timeout"]


class Timeout:
    """Track a cumulative timeout on a series of operations.

    Every blocking operation on a hosted cluster, such as waiting for its
    credential to be published or for its namespace to be finalized, is a
    sequence of individual Kubernetes calls that must all complete within a
    total bound. This class encapsulates that bound and hands out timeouts
    for the individual calls. Nested bounds created with `partial` never
    outlive their parent, so the tighter bound always wins.

    Parameters
    ----------
    operation
        Human-readable name of operation, for error reporting.
    timeout
        Duration of the timeout.
    cluster
        If given, identity of the cluster associated with the timeout, for
        error reporting.
    """

    def __init__(
        self, operation: str, timeout: timedelta, cluster: str | None = None
    ) -> None:
        self._operation = operation
        self._timeout = timeout
        self._cluster = cluster
        self._start = current_datetime(microseconds=True)

    @property
    def cluster(self) -> str | None:
        """Cluster associated with the timeout, if any."""
        return self._cluster

    @property
    def operation(self) -> str:
        """Human-readable name of the operation."""
        return self._operation

    @property
    def started_at(self) -> datetime:
        """When the timeout started."""
        return self._start

    def elapsed(self) -> float:
        """Elapsed time since the timeout started.

        Returns
        -------
        float
            Seconds elapsed since the object was created.
        """
        now = current_datetime(microseconds=True)
        return (now - self._start).total_seconds()

    @asynccontextmanager
    async def enforce(self) -> AsyncIterator[None]:
        """Enforce the timeout and translate `TimeoutError`.

        Used to wrap a block of code in `asyncio.timeout` and catch any
        `TimeoutError`, translating it into
        `~hostedcp.exceptions.ControllerTimeoutError` with additional context.

        Raises
        ------
        ControllerTimeoutError
            Raised if `TimeoutError` was raised inside the enclosed operation.
        """
        try:
            async with asyncio.timeout(self.left()):
                yield
        except (ControllerTimeoutError, TimeoutError) as e:
            now = current_datetime(microseconds=True)
            raise ControllerTimeoutError(
                self._operation,
                self._cluster,
                started_at=self._start,
                failed_at=now,
            ) from e

    def left(self) -> float:
        """Return the amount of time remaining in seconds.

        Returns
        -------
        float
            Time remaining in the timeout in seconds.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout has expired.
        """
        now = current_datetime(microseconds=True)
        left = (self._timeout - (now - self._start)).total_seconds()
        if left <= 0.0:
            raise ControllerTimeoutError(
                self._operation,
                self._cluster,
                started_at=self._start,
                failed_at=now,
            )
        return left

    def partial(
        self, timeout: timedelta, operation: str | None = None
    ) -> Self:
        """Create a timeout that is an extension of this timeout.

        Used for sub-operations, such as a single existence check inside a
        longer wait for finalization, that should have their own shorter
        bound but must not extend past the overall timeout.

        Parameters
        ----------
        timeout
            Maximum duration of timeout. The newly-created timeout will be
            capped at the remaining duration of the parent timeout.
        operation
            Name of the sub-operation, if different from the parent.

        Returns
        -------
        Timeout
            Child timeout.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout parameter is less than 0, which may happen
            if it is constructed by subtracting some time from the remaining
            time in the timeout.
        """
        now = current_datetime(microseconds=True)
        if timeout < timedelta(seconds=0):
            raise ControllerTimeoutError(
                self._operation,
                self._cluster,
                started_at=self._start,
                failed_at=now,
            )
        left = self._timeout - (now - self._start)
        timeout = min(left, timeout)
        return type(self)(operation or self._operation, timeout, self._cluster)
