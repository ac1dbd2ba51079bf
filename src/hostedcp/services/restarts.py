"""Audit of container restarts in a hosted control plane."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from kubernetes_asyncio.client import V1Pod
from structlog.stdlib import BoundLogger

from ..models.domain.cluster import control_plane_namespace
from ..storage.kubernetes.reader import PodStorage
from ..timeout import Timeout

__all__ = [
    "ContainerRestart",
    "RestartAuditor",
    "find_restarted_containers",
]


@dataclass(frozen=True, slots=True)
class ContainerRestart:
    """A control plane container that has restarted."""

    pod: str
    """Name of the pod."""

    container: str
    """Name of the container."""

    restart_count: int
    """Number of times the container restarted."""


def find_restarted_containers(
    pods: Iterable[V1Pod], ignore_prefixes: Iterable[str] = ()
) -> list[ContainerRestart]:
    """Find containers that have restarted at least once.

    Parameters
    ----------
    pods
        Pods to check.
    ignore_prefixes
        Pods whose names start with any of these prefixes are skipped.

    Returns
    -------
    list of ContainerRestart
        Containers with a nonzero restart count.
    """
    prefixes = tuple(ignore_prefixes)
    restarts = []
    for pod in pods:
        name = pod.metadata.name
        if prefixes and name.startswith(prefixes):
            continue
        if not pod.status or not pod.status.container_statuses:
            continue
        for status in pod.status.container_statuses:
            if status.restart_count and status.restart_count > 0:
                restart = ContainerRestart(
                    pod=name,
                    container=status.name,
                    restart_count=status.restart_count,
                )
                restarts.append(restart)
    return restarts


class RestartAuditor:
    """Report restarted containers in the control plane of a cluster.

    Parameters
    ----------
    pod_storage
        Storage for pods in the management cluster.
    ignore_prefixes
        Pods whose names start with any of these prefixes are expected to
        restart and are not reported.
    logger
        Logger to use.
    """

    def __init__(
        self,
        pod_storage: PodStorage,
        ignore_prefixes: Iterable[str],
        logger: BoundLogger,
    ) -> None:
        self._pods = pod_storage
        self._ignore = tuple(ignore_prefixes)
        self._logger = logger

    async def audit(
        self, namespace: str, name: str, timeout: Timeout
    ) -> list[ContainerRestart]:
        """List the control plane pods of a cluster once and check them.

        Parameters
        ----------
        namespace
            Namespace of the hosted cluster.
        name
            Name of the hosted cluster.
        timeout
            Timeout on the pod listing.

        Returns
        -------
        list of ContainerRestart
            Restarted containers, empty if there were none.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout expired.
        KubernetesError
            Raised if listing pods failed.
        """
        pod_namespace = control_plane_namespace(namespace, name)
        pods = await self._pods.list(pod_namespace, timeout)
        restarts = find_restarted_containers(pods, self._ignore)
        for restart in restarts:
            self._logger.warning(
                "Control plane container restarted",
                namespace=pod_namespace,
                pod=restart.pod,
                container=restart.container,
                restart_count=restart.restart_count,
            )
        return restarts
