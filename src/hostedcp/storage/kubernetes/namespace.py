"""Storage layer for ``Namespace`` objects."""

from __future__ import annotations

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException, V1Namespace
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError
from ...timeout import Timeout

__all__ = ["NamespaceStorage"]


class NamespaceStorage:
    """Storage layer for ``Namespace`` objects.

    Deleting a namespace only starts its deletion. Use
    `~hostedcp.services.lifecycle.ResourceLifecycleWaiter` to wait for the
    namespace and everything in it to be finalized.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        self._api = client.CoreV1Api(api_client)
        self._logger = logger

    async def create(self, body: V1Namespace, timeout: Timeout) -> None:
        """Create a new namespace.

        Parameters
        ----------
        body
            Namespace object to create.
        timeout
            Timeout on operation.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        ControllerTimeoutError
            Raised if the timeout expired.
        """
        self._logger.debug("Creating Namespace", name=body.metadata.name)
        try:
            await self._api.create_namespace(
                body, _request_timeout=timeout.left()
            )
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error creating namespace",
                e,
                kind="Namespace",
                name=body.metadata.name,
            ) from e

    async def delete(self, name: str, timeout: Timeout) -> None:
        """Start deletion of a namespace.

        If the namespace does not exist, this is silently treated as success.

        Parameters
        ----------
        name
            Name of the namespace.
        timeout
            Timeout on operation.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout expired.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        self._logger.debug("Deleting Namespace", name=name)
        try:
            await self._api.delete_namespace(
                name, _request_timeout=timeout.left()
            )
        except ApiException as e:
            if e.status == 404:
                return
            raise KubernetesError.from_exception(
                "Error deleting namespace", e, kind="Namespace", name=name
            ) from e

    async def list(self, timeout: Timeout) -> list[V1Namespace]:
        """List all namespaces.

        Parameters
        ----------
        timeout
            Timeout on operation.

        Returns
        -------
        list of kubernetes_asyncio.client.V1Namespace
            List of namespaces.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout expired.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        try:
            objs = await self._api.list_namespace(
                _request_timeout=timeout.left()
            )
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error listing namespaces", e, kind="Namespace"
            ) from e
        return objs.items

    async def read(self, name: str, timeout: Timeout) -> V1Namespace | None:
        """Read a namespace.

        Parameters
        ----------
        name
            Name of the namespace.
        timeout
            Timeout on operation.

        Returns
        -------
        kubernetes_asyncio.client.V1Namespace or None
            Namespace, or `None` if it does not exist.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout expired.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        try:
            return await self._api.read_namespace(
                name, _request_timeout=timeout.left()
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise KubernetesError.from_exception(
                "Error reading namespace", e, kind="Namespace", name=name
            ) from e
