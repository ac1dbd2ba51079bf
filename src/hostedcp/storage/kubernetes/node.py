"""Storage layer for Kubernetes node objects."""

from __future__ import annotations

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException, V1Node
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError
from ...timeout import Timeout

__all__ = ["NodeStorage"]


class NodeStorage:
    """Storage layer for Kubernetes node objects.

    Node storage is normally created for a guest cluster from a
    `~hostedcp.services.session.GuestSession`, not for the management
    cluster.

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

    async def list(
        self, timeout: Timeout, node_selector: dict[str, str] | None = None
    ) -> list[V1Node]:
        """Get data about Kubernetes nodes.

        Parameters
        ----------
        timeout
            Timeout for call.
        node_selector
            Node selector rules to restrict the list of nodes of interest.

        Returns
        -------
        list of kubernetes_asyncio.client.models.V1Node
            List of node metadata.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout expired.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        self._logger.debug("Getting node data", node_selector=node_selector)
        selector = None
        if node_selector:
            selector = ",".join(f"{k}={v}" for k, v in node_selector.items())
        try:
            nodes = await self._api.list_node(
                label_selector=selector, _request_timeout=timeout.left()
            )
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error reading node information", e, kind="Node"
            ) from e
        return nodes.items
