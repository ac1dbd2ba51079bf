"""Tests for replica convergence checks."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, Mock

import pytest
from kubernetes_asyncio.client import ApiClient
from safir.testing.kubernetes import MockKubernetesApi
from structlog.stdlib import BoundLogger

from hostedcp.config import Config
from hostedcp.exceptions import PollTimeoutError
from hostedcp.models.domain.nodepool import NodePoolAggregate
from hostedcp.services.replicas import (
    ReplicaConvergenceController,
    ReplicaReport,
    count_ready_nodes,
    is_node_ready,
)
from hostedcp.services.session import GuestSession
from hostedcp.timeout import Timeout

from ..support.data import make_kubeconfig, make_node, make_nodepool


def build_session() -> GuestSession:
    api_client = Mock(spec=ApiClient)
    api_client.close = AsyncMock()
    return GuestSession(
        cluster="clusters/example",
        kubeconfig={},
        credential=make_kubeconfig(),
        api_client=api_client,
    )


def build_nodepool(replicas: int | None) -> NodePoolAggregate:
    spec = {} if replicas is None else {"replicas": replicas}
    obj = make_nodepool("example", "clusters", spec)
    return NodePoolAggregate.from_object(obj)


def test_report() -> None:
    report = ReplicaReport(desired=3, observed=3)
    assert report.converged
    assert report.deviation == 0

    report = ReplicaReport(desired=3, observed=2)
    assert not report.converged
    assert report.deviation == -1

    report = ReplicaReport(desired=1, observed=4)
    assert report.deviation == 3


def test_node_ready() -> None:
    assert is_node_ready(make_node("a", ready=True))
    assert not is_node_ready(make_node("a", ready=False))
    assert not is_node_ready(make_node("a", ready=None))
    nodes = [
        make_node("a", ready=True),
        make_node("b", ready=False),
        make_node("c", ready=True),
        make_node("d", ready=None),
    ]
    assert count_ready_nodes(nodes) == 2


def test_nodepool_replicas() -> None:
    assert build_nodepool(3).desired_replicas == 3
    assert build_nodepool(None).desired_replicas == 0
    obj = make_nodepool("example", "clusters", {"nodeCount": 2})
    assert NodePoolAggregate.from_object(obj).desired_replicas == 2


@pytest.mark.asyncio
async def test_check(
    config: Config, logger: BoundLogger, mock_kubernetes: MockKubernetesApi
) -> None:
    mock_kubernetes.set_nodes_for_test(
        [
            make_node("node1", ready=True),
            make_node("node2", ready=True),
            make_node("node3", ready=False),
        ]
    )
    controller = ReplicaConvergenceController(config, logger)
    session = build_session()
    nodepool = build_nodepool(3)
    timeout = Timeout("Checking nodes", timedelta(seconds=5))

    report = await controller.check_total(nodepool, session, timeout)
    assert report == ReplicaReport(desired=3, observed=3)
    assert report.converged

    report = await controller.check_ready(nodepool, session, timeout)
    assert report == ReplicaReport(desired=3, observed=2)
    assert report.deviation == -1

    unmanaged = build_nodepool(None)
    report = await controller.check_total(unmanaged, session, timeout)
    assert report.deviation == 3


@pytest.mark.asyncio
async def test_wait_for_ready_nodes(
    config: Config, logger: BoundLogger, mock_kubernetes: MockKubernetesApi
) -> None:
    nodes = [make_node("node1", ready=True), make_node("node2", ready=True)]
    mock_kubernetes.set_nodes_for_test(nodes)
    controller = ReplicaConvergenceController(config, logger)

    result = await controller.wait_for_ready_nodes(build_session(), 2)
    assert sorted(n.metadata.name for n in result) == ["node1", "node2"]


@pytest.mark.asyncio
async def test_wait_for_ready_nodes_timeout(
    config: Config, logger: BoundLogger, mock_kubernetes: MockKubernetesApi
) -> None:
    nodes = [make_node("node1", ready=True), make_node("node2", ready=False)]
    mock_kubernetes.set_nodes_for_test(nodes)
    controller = ReplicaConvergenceController(config, logger)
    timeout = Timeout("Waiting for nodes", timedelta(milliseconds=100))

    with pytest.raises(PollTimeoutError) as excinfo:
        await controller.wait_for_ready_nodes(build_session(), 2, timeout)
    assert excinfo.value.observed == "2 nodes, 1 ready"


@pytest.mark.asyncio
async def test_wait_for_no_nodes(
    config: Config, logger: BoundLogger, mock_kubernetes: MockKubernetesApi
) -> None:
    mock_kubernetes.set_nodes_for_test([])
    controller = ReplicaConvergenceController(config, logger)
    timeout = Timeout("Waiting for nodes", timedelta(milliseconds=100))

    # An empty node list never counts as converged, even for zero nodes.
    with pytest.raises(PollTimeoutError):
        await controller.wait_for_ready_nodes(build_session(), 0, timeout)
