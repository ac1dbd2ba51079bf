"""Tests for control plane restart audits."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, Mock

import pytest
from structlog.stdlib import BoundLogger

from hostedcp.services.restarts import (
    ContainerRestart,
    RestartAuditor,
    find_restarted_containers,
)
from hostedcp.storage.kubernetes.reader import PodStorage
from hostedcp.timeout import Timeout

from ..support.data import make_pod

NAMESPACE = "clusters-example"


def test_find_restarted_containers() -> None:
    pods = [
        make_pod("kube-apiserver-1", NAMESPACE, {"apiserver": 0, "audit": 2}),
        make_pod("etcd-0", NAMESPACE, {"etcd": 1}),
        make_pod("cluster-autoscaler-1", NAMESPACE, {"autoscaler": 7}),
        make_pod("ignition-server-1", NAMESPACE, {}),
    ]
    assert find_restarted_containers(pods) == [
        ContainerRestart("kube-apiserver-1", "audit", 2),
        ContainerRestart("etcd-0", "etcd", 1),
        ContainerRestart("cluster-autoscaler-1", "autoscaler", 7),
    ]

    restarts = find_restarted_containers(pods, ["cluster-autoscaler", "etcd"])
    assert restarts == [ContainerRestart("kube-apiserver-1", "audit", 2)]
    assert find_restarted_containers([]) == []


@pytest.mark.asyncio
async def test_audit(logger: BoundLogger) -> None:
    pods = [
        make_pod("kube-apiserver-1", NAMESPACE, {"apiserver": 3}),
        make_pod("capa-controller-manager-1", NAMESPACE, {"manager": 5}),
    ]
    storage = Mock(spec=PodStorage)
    storage.list = AsyncMock(return_value=pods)
    auditor = RestartAuditor(storage, ["capa-controller-manager"], logger)
    timeout = Timeout("Auditing restarts", timedelta(seconds=5))

    restarts = await auditor.audit("clusters", "example", timeout)
    assert restarts == [ContainerRestart("kube-apiserver-1", "apiserver", 3)]
    storage.list.assert_awaited_once_with(NAMESPACE, timeout)

    storage.list.return_value = []
    assert await auditor.audit("clusters", "example", timeout) == []
