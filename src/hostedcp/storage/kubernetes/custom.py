"""Storage layer for hosted cluster custom objects."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException
from structlog.stdlib import BoundLogger

from ...constants import STATUS_UPDATE_ATTEMPTS
from ...exceptions import KubernetesError, MissingObjectError
from ...models.domain.cluster import (
    ClusterAggregate,
    VersionStatus,
    VersionUpdate,
)
from ...models.domain.nodepool import NodePoolAggregate
from ...timeout import Timeout

__all__ = [
    "ClusterStorage",
    "CustomStorage",
    "NodePoolStorage",
]


class CustomStorage:
    """Storage layer for Kubernetes custom objects.

    Normally, this class should be subclassed to specialize it for a specific
    custom object type, which provides a slightly nicer API, but it can be
    used as-is if desired.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    group
        API group for the custom objects to handle.
    version
        API version for the custom objects to handle.
    plural
        API plural under which those custom objects are managed.
    kind
        Name of the custom object kind, used for error reporting.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        api_client: ApiClient,
        group: str,
        version: str,
        plural: str,
        kind: str,
        logger: BoundLogger,
    ) -> None:
        self._api = client.CustomObjectsApi(api_client)
        self._group = group
        self._version = version
        self._plural = plural
        self._kind = kind
        self._logger = logger

    @property
    def kind(self) -> str:
        """Kind of custom object managed by this storage."""
        return self._kind

    async def delete(
        self, name: str, namespace: str, timeout: Timeout
    ) -> None:
        """Delete a custom object.

        If the object does not exist, this is silently treated as success.

        Parameters
        ----------
        name
            Name of the object.
        namespace
            Namespace of the object.
        timeout
            Timeout on operation.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout expired.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        msg = f"Deleting {self._kind}"
        self._logger.debug(msg, name=name, namespace=namespace)
        try:
            async with timeout.enforce():
                await self._api.delete_namespaced_custom_object(
                    self._group, self._version, namespace, self._plural, name
                )
        except ApiException as e:
            if e.status == 404:
                return
            raise KubernetesError.from_exception(
                "Error deleting object",
                e,
                kind=self._kind,
                namespace=namespace,
                name=name,
            ) from e

    async def list(
        self, namespace: str, timeout: Timeout
    ) -> list[dict[str, Any]]:
        """List the custom objects in a namespace.

        Parameters
        ----------
        namespace
            Namespace in which to list custom objects.
        timeout
            Timeout on operation.

        Returns
        -------
        list of dict
            List of custom objects found.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout expired.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        try:
            async with timeout.enforce():
                objs = await self._api.list_namespaced_custom_object(
                    self._group, self._version, namespace, self._plural
                )
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error listing objects",
                e,
                kind=self._kind,
                namespace=namespace,
            ) from e
        return objs["items"]

    async def read(
        self, name: str, namespace: str, timeout: Timeout
    ) -> dict[str, Any] | None:
        """Read a custom object.

        Parameters
        ----------
        name
            Name of the custom object.
        namespace
            Namespace of the custom object.
        timeout
            Timeout on operation.

        Returns
        -------
        dict or None
            Custom object, or `None` if it does not exist.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout expired.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        try:
            async with timeout.enforce():
                return await self._api.get_namespaced_custom_object(
                    self._group, self._version, namespace, self._plural, name
                )
        except ApiException as e:
            if e.status == 404:
                return None
            raise KubernetesError.from_exception(
                "Error reading object",
                e,
                kind=self._kind,
                namespace=namespace,
                name=name,
            ) from e

    async def patch_status(
        self,
        name: str,
        namespace: str,
        patch: list[dict[str, Any]],
        timeout: Timeout,
    ) -> None:
        """Apply a JSON patch to the status of a custom object.

        Parameters
        ----------
        name
            Name of the custom object.
        namespace
            Namespace of the custom object.
        patch
            JSON patch operations to apply.
        timeout
            Timeout on operation.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout expired.
        KubernetesError
            Raised for exceptions from the Kubernetes API server, including
            if a ``test`` operation in the patch failed.
        """
        msg = f"Updating {self._kind} status"
        self._logger.debug(msg, name=name, namespace=namespace)
        try:
            async with timeout.enforce():
                await self._api.patch_namespaced_custom_object_status(
                    self._group,
                    self._version,
                    namespace,
                    self._plural,
                    name,
                    patch,
                )
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error updating object status",
                e,
                kind=self._kind,
                namespace=namespace,
                name=name,
            ) from e


class ClusterStorage(CustomStorage):
    """Storage layer for hosted cluster objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    group
        API group of the hosted cluster resource.
    version
        API version of the hosted cluster resource.
    plural
        API plural of the hosted cluster resource.
    logger
        Logger to use.
    """

    def __init__(
        self,
        api_client: ApiClient,
        *,
        group: str,
        version: str,
        plural: str,
        logger: BoundLogger,
    ) -> None:
        super().__init__(
            api_client=api_client,
            group=group,
            version=version,
            plural=plural,
            kind="HostedCluster",
            logger=logger,
        )

    async def get(
        self, name: str, namespace: str, timeout: Timeout
    ) -> ClusterAggregate | None:
        """Read and parse a hosted cluster.

        Returns
        -------
        ClusterAggregate or None
            Snapshot of the cluster, or `None` if it does not exist.
        """
        obj = await self.read(name, namespace, timeout)
        return ClusterAggregate.from_object(obj) if obj else None

    async def list_clusters(
        self, namespace: str, timeout: Timeout
    ) -> list[ClusterAggregate]:
        """List and parse all hosted clusters in a namespace."""
        objs = await self.list(namespace, timeout)
        return [ClusterAggregate.from_object(o) for o in objs]

    async def update_version(
        self,
        name: str,
        namespace: str,
        update: Callable[[ClusterAggregate], VersionStatus],
        timeout: Timeout,
    ) -> VersionUpdate:
        """Update the version status of a hosted cluster.

        The new version status is computed by ``update`` from a fresh
        snapshot of the cluster and written only if the cluster has not
        changed since that snapshot was read. If it has, the cluster is read
        again and ``update`` is called on the new snapshot. Only the version
        status is written, so conditions and any other status fields set by
        other writers are left alone.

        Parameters
        ----------
        name
            Name of the hosted cluster.
        namespace
            Namespace of the hosted cluster.
        update
            Computes the new version status from a cluster snapshot. It may
            be called more than once and may raise to abandon the update.
        timeout
            Timeout on the whole update.

        Returns
        -------
        VersionUpdate
            Snapshot used and the resulting version status. Nothing was
            written if the version status did not change.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout expired.
        KubernetesError
            Raised for exceptions from the Kubernetes API server, including
            if the cluster kept changing underneath the update.
        MissingObjectError
            Raised if the cluster does not exist.
        """
        attempts = 0
        while True:
            attempts += 1
            obj = await self.read(name, namespace, timeout)
            if not obj:
                raise MissingObjectError(
                    "Hosted cluster does not exist",
                    kind=self._kind,
                    namespace=namespace,
                    name=name,
                )
            cluster = ClusterAggregate.from_object(obj)
            result = VersionUpdate(cluster=cluster, version=update(cluster))
            if not result.changed:
                return result
            patch = self._build_version_patch(obj, result.version)
            try:
                await self.patch_status(name, namespace, patch, timeout)
            except KubernetesError as e:
                if e.status not in (409, 422):
                    raise
                if attempts >= STATUS_UPDATE_ATTEMPTS:
                    raise
                self._logger.debug(
                    "Hosted cluster changed during update, retrying",
                    name=name,
                    namespace=namespace,
                    attempts=attempts,
                )
                continue
            return result

    def _build_version_patch(
        self, obj: dict[str, Any], version: VersionStatus
    ) -> list[dict[str, Any]]:
        patch: list[dict[str, Any]] = []
        resource_version = obj["metadata"].get("resourceVersion")
        if resource_version:
            test = {
                "op": "test",
                "path": "/metadata/resourceVersion",
                "value": resource_version,
            }
            patch.append(test)
        value = version.to_dict()
        if obj.get("status") is None:
            patch.append(
                {"op": "add", "path": "/status", "value": {"version": value}}
            )
        else:
            patch.append(
                {"op": "add", "path": "/status/version", "value": value}
            )
        return patch


class NodePoolStorage(CustomStorage):
    """Storage layer for node pool objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    group
        API group of the node pool resource.
    version
        API version of the node pool resource.
    plural
        API plural of the node pool resource.
    logger
        Logger to use.
    """

    def __init__(
        self,
        api_client: ApiClient,
        *,
        group: str,
        version: str,
        plural: str,
        logger: BoundLogger,
    ) -> None:
        super().__init__(
            api_client=api_client,
            group=group,
            version=version,
            plural=plural,
            kind="NodePool",
            logger=logger,
        )

    async def get(
        self, name: str, namespace: str, timeout: Timeout
    ) -> NodePoolAggregate | None:
        """Read and parse a node pool, or `None` if it does not exist."""
        obj = await self.read(name, namespace, timeout)
        return NodePoolAggregate.from_object(obj) if obj else None

    async def list_nodepools(
        self, namespace: str, timeout: Timeout
    ) -> list[NodePoolAggregate]:
        """List and parse all node pools in a namespace."""
        objs = await self.list(namespace, timeout)
        return [NodePoolAggregate.from_object(o) for o in objs]
