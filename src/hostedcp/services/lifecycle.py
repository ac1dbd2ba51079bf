"""Deletion of resources and waits for their finalization."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any, Self

from structlog.stdlib import BoundLogger

from ..constants import FINAL_READ_TIMEOUT
from ..exceptions import DeletionTimeoutError, FinalizationTimeoutError
from ..poller import Poller, PollOutcome
from ..storage.kubernetes.namespace import NamespaceStorage
from ..timeout import Timeout

__all__ = [
    "DeleteMethod",
    "ReadMethod",
    "ResourceLifecycleWaiter",
]

type ReadMethod = Callable[[str, Timeout], Awaitable[Any | None]]
"""Reads a resource by name, returning `None` if it does not exist."""

type DeleteMethod = Callable[[str, Timeout], Awaitable[None]]
"""Deletes a resource by name, treating a missing resource as success."""


class ResourceLifecycleWaiter:
    """Delete a named resource and wait until it no longer exists.

    Kubernetes deletion is asynchronous. The delete call only marks the
    object for deletion, and it lingers until its finalizers run. For a
    namespace, that includes deleting everything in it, so once a namespace
    is finalized every object it contained is gone as well.

    Failures are reported distinctly. A delete call that keeps failing ends
    in `~hostedcp.exceptions.DeletionTimeoutError`, while a resource that was
    deleted but never disappeared ends in
    `~hostedcp.exceptions.FinalizationTimeoutError`.

    Parameters
    ----------
    kind
        Kind of resource, for logging and error reporting.
    read
        Method to read the resource.
    delete
        Method to delete the resource.
    interval
        Interval between delete retries and between existence checks.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        kind: str,
        read: ReadMethod,
        delete: DeleteMethod,
        interval: timedelta,
        logger: BoundLogger,
    ) -> None:
        self._kind = kind
        self._read = read
        self._delete = delete
        self._interval = interval
        self._logger = logger

    @classmethod
    def for_namespaces(
        cls,
        storage: NamespaceStorage,
        interval: timedelta,
        logger: BoundLogger,
    ) -> Self:
        """Create a waiter for namespaces."""
        return cls(
            kind="Namespace",
            read=storage.read,
            delete=storage.delete,
            interval=interval,
            logger=logger,
        )

    async def delete(self, name: str, timeout: Timeout) -> None:
        """Delete the resource, retrying failures until the timeout.

        The first attempt is made immediately. A resource that is already
        gone counts as successfully deleted.

        Parameters
        ----------
        name
            Name of the resource.
        timeout
            Bound on the retries.

        Raises
        ------
        DeletionTimeoutError
            Raised if no delete call succeeded before the timeout.
        """
        logger = self._logger.bind(kind=self._kind, name=name)

        async def attempt() -> PollOutcome[None]:
            await self._delete(name, timeout)
            return PollOutcome.done()

        poller = Poller(
            f"deletion of {self._kind} {name}",
            self._interval,
            immediate=True,
            error_class=DeletionTimeoutError,
            logger=logger,
        )
        await poller.poll(attempt, timeout)
        logger.debug(f"Deleted {self._kind}")

    async def wait_for_finalization(self, name: str, timeout: Timeout) -> None:
        """Wait until the resource no longer exists.

        Errors checking for the resource are logged and retried. Only
        observing that the resource does not exist ends the wait.

        Parameters
        ----------
        name
            Name of the resource.
        timeout
            Bound on the wait.

        Raises
        ------
        FinalizationTimeoutError
            Raised if the resource still existed, or its existence could not
            be checked, when the timeout expired.
        """
        logger = self._logger.bind(kind=self._kind, name=name)

        async def check() -> PollOutcome[None]:
            read_timeout = timeout.partial(FINAL_READ_TIMEOUT)
            if await self._read(name, read_timeout) is None:
                return PollOutcome.done()
            return PollOutcome.not_done(f"{self._kind} {name} still exists")

        poller = Poller(
            f"finalization of {self._kind} {name}",
            self._interval,
            error_class=FinalizationTimeoutError,
            logger=logger,
        )
        await poller.poll(check, timeout)
        logger.debug(f"{self._kind} was finalized")

    async def delete_and_finalize(self, name: str, timeout: Timeout) -> None:
        """Delete the resource and then wait for it to be finalized.

        The wait for finalization starts only after the delete succeeded.
        Both steps share the same overall timeout.

        Parameters
        ----------
        name
            Name of the resource.
        timeout
            Bound on both steps together.

        Raises
        ------
        DeletionTimeoutError
            Raised if no delete call succeeded before the timeout.
        FinalizationTimeoutError
            Raised if the resource was not finalized before the timeout.
        """
        await self.delete(name, timeout)
        await self.wait_for_finalization(name, timeout)
