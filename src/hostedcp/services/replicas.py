"""Comparison of declared and observed worker capacity."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from kubernetes_asyncio.client import V1Node
from structlog.stdlib import BoundLogger

from ..config import Config
from ..models.domain.kubernetes import ConditionStatus, NodeConditionType
from ..models.domain.nodepool import NodePoolAggregate
from ..poller import Poller, PollOutcome
from ..timeout import Timeout
from .session import GuestSession

__all__ = [
    "ReplicaConvergenceController",
    "ReplicaReport",
    "count_ready_nodes",
    "is_node_ready",
]


@dataclass(frozen=True, slots=True)
class ReplicaReport:
    """Declared replica count compared with an observed node count.

    A deviation is a reported state, not an error. Deciding whether it is a
    problem is up to the caller.
    """

    desired: int
    """Declared number of replicas."""

    observed: int
    """Number of nodes counted in the guest cluster."""

    @property
    def deviation(self) -> int:
        """Signed difference, positive if there are too many nodes."""
        return self.observed - self.desired

    @property
    def converged(self) -> bool:
        """Whether the observed count equals the declared count."""
        return self.deviation == 0


def is_node_ready(node: V1Node) -> bool:
    """Whether a node has a ``Ready`` condition that is true."""
    if not node.status or not node.status.conditions:
        return False
    for condition in node.status.conditions:
        if condition.type == NodeConditionType.READY.value:
            return condition.status == ConditionStatus.TRUE.value
    return False


def count_ready_nodes(nodes: Iterable[V1Node]) -> int:
    """Count the nodes that are ready."""
    return sum(1 for n in nodes if is_node_ready(n))


class ReplicaConvergenceController:
    """Check whether a guest cluster has the nodes its node pool declares.

    Two different checks are offered: one against the total number of nodes
    and one against the number of ready nodes. Both list every node in the
    guest cluster rather than only those belonging to the node pool. Each
    check makes exactly one listing call and never retries. Wrap a check in
    `~hostedcp.poller.Poller` to wait for convergence.

    Parameters
    ----------
    config
        Global configuration.
    logger
        Logger to use.
    """

    def __init__(self, config: Config, logger: BoundLogger) -> None:
        self._config = config
        self._logger = logger

    async def check_total(
        self,
        nodepool: NodePoolAggregate,
        session: GuestSession,
        timeout: Timeout,
    ) -> ReplicaReport:
        """Compare declared replicas with the total node count.

        Parameters
        ----------
        nodepool
            Node pool whose declared replicas should be checked.
        session
            Session against the guest cluster.
        timeout
            Timeout on the node listing.

        Returns
        -------
        ReplicaReport
            Declared and observed counts.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout expired.
        KubernetesError
            Raised if listing nodes failed.
        """
        nodes = await session.node_storage(self._logger).list(timeout)
        return self._report(nodepool, len(nodes))

    async def check_ready(
        self,
        nodepool: NodePoolAggregate,
        session: GuestSession,
        timeout: Timeout,
    ) -> ReplicaReport:
        """Compare declared replicas with the ready node count.

        Parameters and exceptions are the same as `check_total`.
        """
        nodes = await session.node_storage(self._logger).list(timeout)
        return self._report(nodepool, count_ready_nodes(nodes))

    async def wait_for_ready_nodes(
        self,
        session: GuestSession,
        count: int,
        timeout: Timeout | None = None,
    ) -> list[V1Node]:
        """Wait until the guest cluster has exactly the given ready nodes.

        Parameters
        ----------
        session
            Session against the guest cluster.
        count
            Number of ready nodes to wait for.
        timeout
            Bound on the wait, defaulting to the configured node timeout.

        Returns
        -------
        list of kubernetes_asyncio.client.V1Node
            All nodes in the guest cluster once enough are ready.

        Raises
        ------
        PollTimeoutError
            Raised if the nodes were not ready before the timeout.
        """
        if not timeout:
            timeout = Timeout(
                f"Waiting for {count} ready nodes",
                self._config.node_timeout,
                session.cluster,
            )
        storage = session.node_storage(self._logger)

        async def check() -> PollOutcome[list[V1Node]]:
            nodes = await storage.list(timeout)
            ready = count_ready_nodes(nodes)
            if nodes and ready == count:
                return PollOutcome.done(nodes)
            observed = f"{len(nodes)} nodes, {ready} ready"
            return PollOutcome.not_done(observed)

        poller = Poller(
            f"{count} ready nodes",
            self._config.node_interval,
            logger=self._logger.bind(cluster=session.cluster),
        )
        return await poller.poll(check, timeout)

    def _report(
        self, nodepool: NodePoolAggregate, observed: int
    ) -> ReplicaReport:
        report = ReplicaReport(
            desired=nodepool.desired_replicas, observed=observed
        )
        if not report.converged:
            self._logger.debug(
                "Node count does not match node pool",
                nodepool=nodepool.metadata.name,
                desired=report.desired,
                observed=report.observed,
            )
        return report
