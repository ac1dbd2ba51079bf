"""Exceptions for hosted control plane convergence."""

from __future__ import annotations

from datetime import datetime
from typing import Self, override

from kubernetes_asyncio.client import ApiException
from safir.datetime import format_datetime_for_logging
from safir.slack.blockkit import (
    SlackBaseField,
    SlackCodeBlock,
    SlackException,
    SlackMessage,
    SlackTextBlock,
    SlackTextField,
)
from safir.slack.sentry import SentryEventInfo

__all__ = [
    "ConnectivityFailedError",
    "ControllerTimeoutError",
    "CredentialUnavailableError",
    "DeletionTimeoutError",
    "FinalizationTimeoutError",
    "InvalidCredentialError",
    "KubernetesError",
    "MissingObjectError",
    "PollTimeoutError",
    "RolloutConflictError",
]


class ControllerTimeoutError(SlackException):
    """Wraps `TimeoutError` with additional context and Slack support.

    Parameters
    ----------
    operation
        Operation that timed out.
    cluster
        Identity (``namespace/name``) of the cluster being acted on, if any.
    started_at
        Start time of the operation.
    failed_at
        Time at which the operation timed out.
    """

    def __init__(
        self,
        operation: str,
        cluster: str | None = None,
        *,
        started_at: datetime,
        failed_at: datetime,
    ) -> None:
        self.operation = operation
        self.cluster = cluster
        self.started_at = started_at
        elapsed = failed_at - started_at
        seconds = elapsed.total_seconds()
        self.message = f"{operation} timed out after {seconds}s"
        super().__init__(self.message, failed_at=failed_at)

    @override
    def to_slack(self) -> SlackMessage:
        """Format the exception as a Slack message.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting with
            `~safir.slack.webhook.SlackWebhookClient`.
        """
        started_at = format_datetime_for_logging(self.started_at)
        failed_at = format_datetime_for_logging(self.failed_at)
        fields: list[SlackBaseField] = [
            SlackTextField(heading="Started at", text=started_at),
            SlackTextField(heading="Failed at", text=failed_at),
        ]
        if self.cluster:
            fields.append(SlackTextField(heading="Cluster", text=self.cluster))
        return SlackMessage(message=str(self), fields=fields)

    @override
    def to_sentry(self) -> SentryEventInfo:
        """Return a collection of Sentry event metadata about the exception.

        Returns
        -------
        safir.slack.sentry.SentryEventInfo
            Sentry event metadata for use with \
            `~safir.sentry.before_send_handler`
        """
        info = super().to_sentry()
        started_at = format_datetime_for_logging(self.started_at)
        info.contexts.setdefault("info", {})["started_at"] = started_at
        if self.cluster:
            info.tags["cluster"] = self.cluster
        return info


class PollTimeoutError(ControllerTimeoutError):
    """A bounded poll reached its deadline without the condition being met.

    Parameters
    ----------
    operation
        Operation that timed out.
    cluster
        Identity of the cluster being acted on, if any.
    attempts
        Number of times the polled action was invoked.
    observed
        Last state observed by the polled action, if it reported one.
    started_at
        Start time of the operation.
    failed_at
        Time at which the operation timed out.
    """

    def __init__(
        self,
        operation: str,
        cluster: str | None = None,
        *,
        attempts: int,
        observed: str | None = None,
        started_at: datetime,
        failed_at: datetime,
    ) -> None:
        super().__init__(
            operation, cluster, started_at=started_at, failed_at=failed_at
        )
        self.attempts = attempts
        self.observed = observed

    @override
    def __str__(self) -> str:
        result = f"{self.message} ({self.attempts} attempts)"
        if self.observed:
            result += f": {self.observed}"
        return result

    @override
    def to_slack(self) -> SlackMessage:
        message = super().to_slack()
        field = SlackTextField(heading="Attempts", text=str(self.attempts))
        message.fields.append(field)
        if self.observed:
            block = SlackCodeBlock(heading="Last observed", code=self.observed)
            message.blocks.append(block)
        return message

    @override
    def to_sentry(self) -> SentryEventInfo:
        info = super().to_sentry()
        info.contexts["info"]["attempts"] = self.attempts
        if self.observed:
            info.attachments["observed"] = self.observed
        return info


class CredentialUnavailableError(PollTimeoutError):
    """The guest credential was not published before the deadline."""


class ConnectivityFailedError(PollTimeoutError):
    """No connection to the guest API server succeeded before the deadline."""


class DeletionTimeoutError(PollTimeoutError):
    """Deleting a resource kept failing until the deadline."""


class FinalizationTimeoutError(PollTimeoutError):
    """A deleted resource still existed when the deadline expired."""


class InvalidCredentialError(SlackException):
    """The published guest credential is structurally unusable.

    Retrying cannot fix this, so it is reported immediately rather than
    absorbed by polling.

    Parameters
    ----------
    message
        Summary of the problem.
    cluster
        Identity of the cluster whose credential is invalid.
    secret
        Name of the secret holding the credential, if known.
    """

    def __init__(
        self,
        message: str,
        *,
        cluster: str | None = None,
        secret: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.cluster = cluster
        self.secret = secret

    @override
    def to_slack(self) -> SlackMessage:
        message = super().to_slack()
        if self.cluster:
            field = SlackTextField(heading="Cluster", text=self.cluster)
            message.fields.append(field)
        if self.secret:
            block = SlackTextBlock(heading="Secret", text=self.secret)
            message.blocks.append(block)
        return message


class KubernetesError(SlackException):
    """An API call to Kubernetes failed.

    Parameters
    ----------
    message
        Summary of error.
    kind
        Kind of object being acted on.
    namespace
        Namespace of object being acted on.
    name
        Name of object being acted on.
    status
        Status code of failure, if any.
    body
        Body of failure message, if any.
    """

    @classmethod
    def from_exception(
        cls,
        message: str,
        exc: ApiException,
        *,
        kind: str | None = None,
        namespace: str | None = None,
        name: str | None = None,
    ) -> Self:
        """Create an exception from a Kubernetes API exception.

        Parameters
        ----------
        message
            Brief explanation of what was being attempted.
        exc
            Kubernetes API exception.
        kind
            Kind of object being acted on.
        namespace
            Namespace of object being acted on.
        name
            Name of object being acted on.

        Returns
        -------
        KubernetesError
            Newly-created exception.
        """
        return cls(
            message,
            kind=kind,
            namespace=namespace,
            name=name,
            status=exc.status,
            body=exc.body if exc.body else exc.reason,
        )

    def __init__(
        self,
        message: str,
        *,
        kind: str | None = None,
        namespace: str | None = None,
        name: str | None = None,
        status: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.namespace = namespace
        self.name = name
        self.status = status
        self.body = body

    @override
    def __str__(self) -> str:
        result = self._summary()
        if self.body:
            result += f": {self.body}"
        return result

    @override
    def to_slack(self) -> SlackMessage:
        """Convert to a Slack message for Slack alerting.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting as an alert.
        """
        message = super().to_slack()
        message.message = self._summary()
        if self.status:
            field = SlackTextField(heading="Status", text=str(self.status))
            message.fields.append(field)
        if self.name or self.kind:
            obj = self._object()
            message.blocks.append(SlackTextBlock(heading="Object", text=obj))
        if self.body:
            code = SlackCodeBlock(heading="Error", code=self.body)
            message.blocks.append(code)
        return message

    @override
    def to_sentry(self) -> SentryEventInfo:
        """Return a collection of Sentry event metadata about the exception.

        Returns
        -------
        safir.slack.sentry.SentryEventInfo
            Sentry event metadata for use with \
            `~safir.sentry.before_send_handler`
        """
        info = super().to_sentry()
        if self.status:
            info.tags["status"] = str(self.status)
        if self.name:
            info.tags["name"] = self.name
        if self.kind:
            info.tags["kind"] = self.kind
        if self.namespace:
            info.tags["namespace"] = self.namespace
        if self.body:
            info.attachments["body"] = self.body
        return info

    def _object(self) -> str:
        kind = f"{self.kind} " if self.kind else ""
        if self.name:
            if self.namespace:
                return f"{kind}{self.namespace}/{self.name}"
            return f"{kind}{self.name}"
        if self.namespace:
            return f"{self.kind} in namespace {self.namespace}"
        return self.kind or ""

    def _summary(self) -> str:
        """Summarize the exception.

        Produces a single-line summary, used for the main part of the Slack
        message and part of the stringification.
        """
        result = self.message
        details = []
        if self.name:
            details.append(self._object())
        elif self.kind:
            details.append(self.kind)
        if self.status:
            details.append(f"status {self.status}")
        if details:
            result += " (" + ", ".join(details) + ")"
        return result


class MissingObjectError(SlackException):
    """An expected Kubernetes object is missing.

    Parameters
    ----------
    message
        Summary of error.
    kind
        Kind of Kubernetes object that is missing.
    namespace
        Namespace of object being acted on.
    name
        Name of object being acted on.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: str,
        namespace: str | None = None,
        name: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.namespace = namespace
        self.name = name

    @override
    def to_slack(self) -> SlackMessage:
        message = super().to_slack()
        if self.name and self.namespace:
            obj = f"{self.kind} {self.namespace}/{self.name}"
        elif self.name:
            obj = f"{self.kind} {self.name}"
        else:
            obj = self.kind
        message.blocks.append(SlackTextBlock(heading="Object", text=obj))
        return message

    @override
    def to_sentry(self) -> SentryEventInfo:
        info = super().to_sentry()
        info.tags["kind"] = self.kind
        if self.name:
            info.tags["name"] = self.name
        if self.namespace:
            info.tags["namespace"] = self.namespace
        return info


class RolloutConflictError(SlackException):
    """A new rollout was requested while another is still in flight.

    Parameters
    ----------
    in_flight
        Image of the rollout that has not yet completed.
    requested
        Newly requested image.
    """

    def __init__(self, in_flight: str, requested: str) -> None:
        msg = (
            f"Cannot start rollout of {requested} while rollout of"
            f" {in_flight} is in progress"
        )
        super().__init__(msg)
        self.in_flight = in_flight
        self.requested = requested
