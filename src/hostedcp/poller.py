"""Bounded polling of a check until it succeeds or a deadline expires."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Self

from safir.datetime import current_datetime
from structlog.stdlib import BoundLogger

from .exceptions import ControllerTimeoutError, PollTimeoutError
from .timeout import Timeout

__all__ = [
    "PollAction",
    "PollOutcome",
    "PollStatus",
    "Poller",
]


class PollStatus(Enum):
    """Result of a single invocation of a polled action."""

    DONE = "done"
    NOT_DONE = "not_done"
    FATAL = "fatal"


@dataclass(frozen=True, slots=True)
class PollOutcome[T]:
    """Outcome of a single invocation of a polled action.

    Actions return one of these rather than signalling retry or abort through
    exceptions. Use the class methods to construct them.
    """

    status: PollStatus
    """Whether the action is done, should be retried, or failed for good."""

    value: T | None = None
    """Result of the action when it is done."""

    error: Exception | None = None
    """Error that caused a fatal or transient failure, if any."""

    observed: str | None = None
    """Human-readable description of the state seen by this attempt."""

    @classmethod
    def done(cls, value: T | None = None) -> Self:
        """Report that the condition being waited for has been met."""
        return cls(status=PollStatus.DONE, value=value)

    @classmethod
    def not_done(
        cls, observed: str | None = None, error: Exception | None = None
    ) -> Self:
        """Report that the condition is not met yet and should be retried."""
        return cls(status=PollStatus.NOT_DONE, observed=observed, error=error)

    @classmethod
    def fatal(cls, error: Exception) -> Self:
        """Report a failure that retrying cannot fix."""
        return cls(status=PollStatus.FATAL, error=error, observed=str(error))

    def describe(self) -> str | None:
        """Describe what this outcome observed, for error reporting."""
        if not self.error:
            return self.observed
        error = f"{type(self.error).__name__}: {self.error}"
        return f"{self.observed} ({error})" if self.observed else error


type PollAction[T] = Callable[[], Awaitable[PollOutcome[T]]]
"""An action to poll, invoked with no arguments."""


class Poller:
    """Repeatedly invoke an action until it is done or a deadline expires.

    This is the blocking-wait primitive under every wait for a hosted cluster
    to reach some state. The action is invoked no more often than once per
    interval. An exception raised by the action is treated as a transient
    failure and retried; only a `PollStatus.FATAL` outcome stops the poll
    early. When the deadline expires, the error raised records how many
    attempts were made and what the last attempt saw.

    Two interval semantics are supported and the distinction matters to
    callers, since it changes worst-case latency by one interval. With
    ``immediate`` set, the action is invoked once right away and the interval
    is waited between attempts. Otherwise, one interval is waited before
    every attempt, including the first.

    The poller never starts an attempt after the deadline has passed, and an
    attempt in progress when the deadline expires is cancelled. Cancelling
    the task running the poll stops it immediately.

    Parameters
    ----------
    operation
        Human-readable description of what is being waited for.
    interval
        Minimum time between invocations of the action.
    immediate
        Whether to invoke the action before waiting the first interval.
    error_class
        Exception raised when the deadline expires.
    logger
        Logger to use.
    """

    def __init__(
        self,
        operation: str,
        interval: timedelta,
        *,
        immediate: bool = False,
        error_class: type[PollTimeoutError] = PollTimeoutError,
        logger: BoundLogger,
    ) -> None:
        if interval <= timedelta(seconds=0):
            raise ValueError("Poll interval must be positive")
        self._operation = operation
        self._interval = interval.total_seconds()
        self._immediate = immediate
        self._error_class = error_class
        self._logger = logger

    async def poll[T](self, action: PollAction[T], timeout: Timeout) -> T:
        """Poll the action until it reports done.

        Parameters
        ----------
        action
            Check to invoke. It returns a `PollOutcome` saying whether the
            condition has been met.
        timeout
            Overall bound on the poll.

        Returns
        -------
        typing.Any
            Value of the `PollOutcome` that reported done.

        Raises
        ------
        Exception
            The error carried by a `PollStatus.FATAL` outcome.
        PollTimeoutError
            Raised (as ``error_class``) if the deadline expired first.
        """
        attempts = 0
        last: PollOutcome[T] | None = None
        while True:
            if attempts > 0 or not self._immediate:
                remaining = self._remaining(timeout, attempts, last)
                await asyncio.sleep(min(self._interval, remaining))
            remaining = self._remaining(timeout, attempts, last)

            attempts += 1
            deadline = asyncio.timeout(remaining)
            try:
                async with deadline:
                    outcome = await action()
            except TimeoutError as e:
                if deadline.expired():
                    raise self._expired(timeout, attempts, last) from e
                outcome = PollOutcome.not_done(error=e)
            except Exception as e:
                outcome = PollOutcome.not_done(error=e)

            match outcome.status:
                case PollStatus.DONE:
                    self._logger.debug(
                        f"Finished waiting for {self._operation}",
                        attempts=attempts,
                        elapsed=timeout.elapsed(),
                    )
                    return outcome.value  # type: ignore[return-value]
                case PollStatus.FATAL:
                    self._logger.debug(
                        f"Giving up waiting for {self._operation}",
                        attempts=attempts,
                        error=outcome.describe(),
                    )
                    if outcome.error:
                        raise outcome.error
                    raise RuntimeError(f"{self._operation} failed")
                case PollStatus.NOT_DONE:
                    if outcome.error:
                        self._logger.debug(
                            f"Attempt to check {self._operation} failed,"
                            " will retry",
                            attempts=attempts,
                            error=outcome.describe(),
                        )
                    last = outcome

    def _expired[T](
        self,
        timeout: Timeout,
        attempts: int,
        last: PollOutcome[T] | None,
    ) -> PollTimeoutError:
        return self._error_class(
            self._operation,
            timeout.cluster,
            attempts=attempts,
            observed=last.describe() if last else None,
            started_at=timeout.started_at,
            failed_at=current_datetime(microseconds=True),
        )

    def _remaining[T](
        self,
        timeout: Timeout,
        attempts: int,
        last: PollOutcome[T] | None,
    ) -> float:
        """Return the time left, raising the poll error if there is none."""
        try:
            return timeout.left()
        except ControllerTimeoutError as e:
            raise self._expired(timeout, attempts, last) from e
