"""Construct test Kubernetes objects."""

from __future__ import annotations

import base64
from typing import Any

import yaml
from kubernetes_asyncio.client import (
    V1ContainerStatus,
    V1Namespace,
    V1Node,
    V1NodeCondition,
    V1NodeStatus,
    V1ObjectMeta,
    V1Pod,
    V1PodStatus,
    V1Secret,
)

from hostedcp.models.domain.cluster import ConditionType

__all__ = [
    "make_cluster",
    "make_conditions",
    "make_credential_secret",
    "make_kubeconfig",
    "make_namespace",
    "make_node",
    "make_nodepool",
    "make_pod",
]


def make_cluster(
    name: str,
    namespace: str,
    *,
    image: str = "",
    conditions: list[dict[str, Any]] | None = None,
    version: dict[str, Any] | None = None,
    kubeconfig: str | None = None,
) -> dict[str, Any]:
    """Construct a hosted cluster custom object."""
    status: dict[str, Any] = {"conditions": conditions or []}
    if version is not None:
        status["version"] = version
    if kubeconfig:
        status["kubeconfig"] = {"name": kubeconfig}
    return {
        "apiVersion": "hypershift.openshift.io/v1alpha1",
        "kind": "HostedCluster",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {"release": {"image": image}},
        "status": status,
    }


def make_conditions(
    false: tuple[ConditionType, ...] = (),
    missing: tuple[ConditionType, ...] = (),
) -> list[dict[str, Any]]:
    """Construct the required conditions, all true unless listed."""
    return [
        {
            "type": t.value,
            "status": "False" if t in false else "True",
            "reason": "AsExpected",
        }
        for t in ConditionType
        if t not in missing
    ]


def make_credential_secret(
    name: str,
    namespace: str,
    credential: bytes | None,
    key: str = "kubeconfig",
) -> V1Secret:
    """Construct a secret holding a guest credential."""
    data = {}
    if credential is not None:
        data[key] = base64.b64encode(credential).decode()
    return V1Secret(
        metadata=V1ObjectMeta(name=name, namespace=namespace), data=data
    )


def make_kubeconfig(server: str = "https://api.example.com:6443") -> bytes:
    """Construct a minimal guest kubeconfig."""
    kubeconfig = {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [{"name": "guest", "cluster": {"server": server}}],
        "contexts": [
            {
                "name": "admin",
                "context": {"cluster": "guest", "user": "admin"},
            }
        ],
        "current-context": "admin",
        "users": [{"name": "admin", "user": {"token": "some-token"}}],
    }
    return yaml.safe_dump(kubeconfig).encode()


def make_namespace(name: str) -> V1Namespace:
    return V1Namespace(metadata=V1ObjectMeta(name=name))


def make_node(name: str, *, ready: bool | None = True) -> V1Node:
    """Construct a node, omitting the ``Ready`` condition if `None`."""
    conditions = []
    if ready is not None:
        status = "True" if ready else "False"
        conditions.append(V1NodeCondition(type="Ready", status=status))
    return V1Node(
        metadata=V1ObjectMeta(name=name),
        status=V1NodeStatus(conditions=conditions),
    )


def make_nodepool(
    name: str, namespace: str, spec: dict[str, Any]
) -> dict[str, Any]:
    """Construct a node pool custom object."""
    return {
        "apiVersion": "hypershift.openshift.io/v1alpha1",
        "kind": "NodePool",
        "metadata": {"name": name, "namespace": namespace},
        "spec": spec,
    }


def make_pod(name: str, namespace: str, restarts: dict[str, int]) -> V1Pod:
    """Construct a pod whose containers have the given restart counts."""
    statuses = [
        V1ContainerStatus(
            name=container,
            image="example/image:latest",
            image_id="",
            ready=True,
            restart_count=count,
        )
        for container, count in restarts.items()
    ]
    return V1Pod(
        metadata=V1ObjectMeta(name=name, namespace=namespace),
        status=V1PodStatus(container_statuses=statuses),
    )
