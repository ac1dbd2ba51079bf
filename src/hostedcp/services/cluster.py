"""Convergence checks and waits against live hosted clusters."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import sentry_sdk
from safir.slack.blockkit import SlackException
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from ..config import Config
from ..constants import KUBERNETES_REQUEST_TIMEOUT
from ..exceptions import MissingObjectError
from ..models.domain.cluster import (
    ClusterAggregate,
    VersionStatus,
    control_plane_namespace,
)
from ..poller import PollAction, Poller, PollOutcome
from ..storage.kubernetes.custom import ClusterStorage
from ..storage.kubernetes.namespace import NamespaceStorage
from ..timeout import Timeout
from . import rollout as rollouts
from .conditions import HealthReport, aggregate_conditions
from .lifecycle import ResourceLifecycleWaiter
from .rollout import RolloutReport, rollout_report

__all__ = ["ClusterMonitor"]


class ClusterMonitor:
    """Check and wait for the state of hosted clusters.

    Every check reads a fresh snapshot of the cluster. Nothing observed is
    kept between calls. Waits that fail are reported to Sentry and, if
    configured, Slack before the exception is raised to the caller.

    Parameters
    ----------
    cluster_storage
        Storage for hosted clusters.
    namespace_storage
        Storage for namespaces.
    config
        Global configuration.
    slack_client
        If given, Slack client used to report failures.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        cluster_storage: ClusterStorage,
        namespace_storage: NamespaceStorage,
        config: Config,
        slack_client: SlackWebhookClient | None,
        logger: BoundLogger,
    ) -> None:
        self._clusters = cluster_storage
        self._config = config
        self._slack = slack_client
        self._logger = logger
        self._namespaces = ResourceLifecycleWaiter.for_namespaces(
            namespace_storage, config.deletion_interval, logger
        )

    async def get(
        self, namespace: str, name: str, timeout: Timeout | None = None
    ) -> ClusterAggregate:
        """Read a fresh snapshot of a hosted cluster.

        Parameters
        ----------
        namespace
            Namespace of the hosted cluster.
        name
            Name of the hosted cluster.
        timeout
            Timeout on the read, defaulting to a generic request timeout.

        Returns
        -------
        ClusterAggregate
            Snapshot of the cluster.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout expired.
        KubernetesError
            Raised if reading the cluster failed.
        MissingObjectError
            Raised if the cluster does not exist.
        """
        if not timeout:
            timeout = Timeout(
                "Reading hosted cluster",
                KUBERNETES_REQUEST_TIMEOUT,
                f"{namespace}/{name}",
            )
        cluster = await self._clusters.get(name, namespace, timeout)
        if not cluster:
            raise MissingObjectError(
                "Hosted cluster does not exist",
                kind=self._clusters.kind,
                namespace=namespace,
                name=name,
            )
        return cluster

    async def health(self, namespace: str, name: str) -> HealthReport:
        """Report whether all required conditions of a cluster are true."""
        cluster = await self.get(namespace, name)
        return aggregate_conditions(cluster.status.conditions)

    async def rollout(self, namespace: str, name: str) -> RolloutReport:
        """Report rollout progress and availability of a cluster."""
        cluster = await self.get(namespace, name)
        return rollout_report(cluster)

    async def begin_rollout(self, namespace: str, name: str) -> VersionStatus:
        """Start a rollout of the release in the cluster specification.

        The version status is only written if it changed, and only if the
        cluster was not modified since the snapshot the rollout was computed
        from. If the cluster specification does not name a release image,
        nothing is done.

        Parameters
        ----------
        namespace
            Namespace of the hosted cluster.
        name
            Name of the hosted cluster.

        Returns
        -------
        VersionStatus
            Version status of the cluster after the call.

        Raises
        ------
        KubernetesError
            Raised if reading or updating the cluster failed.
        MissingObjectError
            Raised if the cluster does not exist.
        RolloutConflictError
            Raised if a rollout of a different image is still in progress.
        """
        timeout = Timeout(
            "Starting rollout",
            KUBERNETES_REQUEST_TIMEOUT,
            f"{namespace}/{name}",
        )
        result = await self._clusters.update_version(
            name, namespace, _start_rollout, timeout
        )
        if result.changed:
            self._logger.info(
                "Started rollout",
                namespace=namespace,
                name=name,
                image=result.version.desired.image,
            )
        return result.version

    async def complete_rollout(
        self, namespace: str, name: str, image: str
    ) -> VersionStatus:
        """Record that the rollout of an image has completed.

        Parameters
        ----------
        namespace
            Namespace of the hosted cluster.
        name
            Name of the hosted cluster.
        image
            Image whose rollout was confirmed.

        Returns
        -------
        VersionStatus
            Version status of the cluster after the call.

        Raises
        ------
        KubernetesError
            Raised if reading or updating the cluster failed.
        MissingObjectError
            Raised if the cluster does not exist.
        ValueError
            Raised if the most recent rollout is not for that image.
        """
        timeout = Timeout(
            "Completing rollout",
            KUBERNETES_REQUEST_TIMEOUT,
            f"{namespace}/{name}",
        )
        result = await self._clusters.update_version(
            name,
            namespace,
            lambda c: rollouts.complete_rollout(c.version, image),
            timeout,
        )
        if result.changed:
            self._logger.info(
                "Completed rollout",
                namespace=namespace,
                name=name,
                image=image,
            )
        return result.version

    async def wait_for_rollout(
        self, namespace: str, name: str, image: str
    ) -> ClusterAggregate:
        """Wait for a cluster to finish rolling out an image.

        The rollout is finished when the image is the desired release, the
        most recent rollout is a completed rollout of it, and the cluster is
        available.

        Parameters
        ----------
        namespace
            Namespace of the hosted cluster.
        name
            Name of the hosted cluster.
        image
            Image whose rollout to wait for.

        Returns
        -------
        ClusterAggregate
            Snapshot of the cluster once the rollout finished.

        Raises
        ------
        MissingObjectError
            Raised if the cluster does not exist.
        PollTimeoutError
            Raised if the rollout did not finish before the rollout timeout.
        """
        cluster = f"{namespace}/{name}"
        timeout = Timeout(
            f"Waiting for rollout of {image}",
            self._config.rollout_timeout,
            cluster,
        )

        async def check() -> PollOutcome[ClusterAggregate]:
            obj = await self._clusters.get(name, namespace, timeout)
            if not obj:
                return self._missing(namespace, name)
            desired = obj.version.desired.image
            if desired != image:
                return PollOutcome.not_done(f"desired image is {desired}")
            report = rollout_report(obj)
            if report.complete and report.available:
                return PollOutcome.done(obj)
            return PollOutcome.not_done(report.describe())

        async with self._report_failures(cluster):
            return await self._poll(check, timeout, f"rollout of {image}")

    async def wait_for_conditions(
        self, namespace: str, name: str
    ) -> ClusterAggregate:
        """Wait for all required conditions of a cluster to be true.

        Parameters
        ----------
        namespace
            Namespace of the hosted cluster.
        name
            Name of the hosted cluster.

        Returns
        -------
        ClusterAggregate
            Snapshot of the cluster once it was healthy.

        Raises
        ------
        MissingObjectError
            Raised if the cluster does not exist.
        PollTimeoutError
            Raised if the cluster was not healthy before the rollout timeout.
        """
        cluster = f"{namespace}/{name}"
        timeout = Timeout(
            "Waiting for cluster conditions",
            self._config.rollout_timeout,
            cluster,
        )

        async def check() -> PollOutcome[ClusterAggregate]:
            obj = await self._clusters.get(name, namespace, timeout)
            if not obj:
                return self._missing(namespace, name)
            report = aggregate_conditions(obj.status.conditions)
            if report.ready:
                return PollOutcome.done(obj)
            return PollOutcome.not_done(report.describe())

        async with self._report_failures(cluster):
            return await self._poll(check, timeout, "cluster conditions")

    async def delete_cluster(self, namespace: str, name: str) -> None:
        """Delete a hosted cluster and wait for it to be finalized.

        The control plane namespace of the cluster must be finalized before
        the cluster itself disappears.

        Parameters
        ----------
        namespace
            Namespace of the hosted cluster.
        name
            Name of the hosted cluster.

        Raises
        ------
        DeletionTimeoutError
            Raised if deleting the cluster kept failing.
        FinalizationTimeoutError
            Raised if the control plane namespace or the cluster still
            existed when the finalization timeout expired.
        """
        cluster = f"{namespace}/{name}"
        timeout = Timeout(
            "Deleting hosted cluster",
            self._config.finalization_timeout,
            cluster,
        )
        waiter = ResourceLifecycleWaiter(
            kind=self._clusters.kind,
            read=lambda n, t: self._clusters.read(n, namespace, t),
            delete=lambda n, t: self._clusters.delete(n, namespace, t),
            interval=self._config.deletion_interval,
            logger=self._logger,
        )
        cp_namespace = control_plane_namespace(namespace, name)
        async with self._report_failures(cluster):
            await waiter.delete(name, timeout)
            await self._namespaces.wait_for_finalization(
                cp_namespace, timeout
            )
            await waiter.wait_for_finalization(name, timeout)
        self._logger.info(
            "Deleted hosted cluster", namespace=namespace, name=name
        )

    async def delete_namespace(self, name: str) -> None:
        """Delete a namespace and wait for it to be finalized.

        Parameters
        ----------
        name
            Name of the namespace.

        Raises
        ------
        DeletionTimeoutError
            Raised if deleting the namespace kept failing.
        FinalizationTimeoutError
            Raised if the namespace still existed when the finalization
            timeout expired.
        """
        timeout = Timeout(
            f"Deleting namespace {name}", self._config.finalization_timeout
        )
        async with self._report_failures():
            await self._namespaces.delete_and_finalize(name, timeout)

    def _missing(
        self, namespace: str, name: str
    ) -> PollOutcome[ClusterAggregate]:
        error = MissingObjectError(
            "Hosted cluster does not exist",
            kind=self._clusters.kind,
            namespace=namespace,
            name=name,
        )
        return PollOutcome.fatal(error)

    async def _poll(
        self,
        check: PollAction[ClusterAggregate],
        timeout: Timeout,
        operation: str,
    ) -> ClusterAggregate:
        poller = Poller(
            operation,
            self._config.rollout_interval,
            logger=self._logger.bind(cluster=timeout.cluster),
        )
        return await poller.poll(check, timeout)

    @asynccontextmanager
    async def _report_failures(
        self, cluster: str | None = None
    ) -> AsyncIterator[None]:
        try:
            yield
        except Exception as e:
            msg = "Waiting for hosted cluster failed"
            self._logger.exception(msg, cluster=cluster)
            await self._maybe_post_exception(e)
            raise

    async def _maybe_post_exception(self, exc: Exception) -> None:
        """Post an exception to an external service.

        This will post the exception to Slack if Slack reporting is configured
        and Sentry if Sentry is enabled.

        Parameters
        ----------
        exc
            Exception to report.
        """
        sentry_sdk.capture_exception(exc)

        if not self._slack:
            return
        if isinstance(exc, SlackException):
            await self._slack.post_exception(exc)
        else:
            await self._slack.post_uncaught_exception(exc)


def _start_rollout(cluster: ClusterAggregate) -> VersionStatus:
    image = cluster.spec.release.image
    if not image:
        return cluster.version
    return rollouts.begin_rollout(cluster.version, image)
