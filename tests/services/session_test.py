"""Tests for guest cluster sessions."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
import yaml
from kubernetes_asyncio.client import ApiException
from safir.testing.kubernetes import MockKubernetesApi
from structlog.stdlib import BoundLogger

from hostedcp.config import Config
from hostedcp.exceptions import (
    ConnectivityFailedError,
    CredentialUnavailableError,
    InvalidCredentialError,
)
from hostedcp.factory import Factory
from hostedcp.services.session import parse_kubeconfig
from hostedcp.timeout import Timeout

from ..support.constants import TEST_CLUSTER, TEST_NAMESPACE
from ..support.data import (
    make_cluster,
    make_credential_secret,
    make_kubeconfig,
    make_node,
)
from ..support.kubernetes import MockGuestClients, create_cluster

SECRET = f"{TEST_CLUSTER}-admin-kubeconfig"


async def publish(
    mock_kubernetes: MockKubernetesApi,
    config: Config,
    credential: bytes | None = None,
    key: str = "kubeconfig",
) -> None:
    if credential is None:
        credential = make_kubeconfig()
    secret = make_credential_secret(SECRET, TEST_NAMESPACE, credential, key)
    await mock_kubernetes.create_namespaced_secret(TEST_NAMESPACE, secret)
    cluster = make_cluster(TEST_CLUSTER, TEST_NAMESPACE, kubeconfig=SECRET)
    await create_cluster(mock_kubernetes, config, cluster)


def test_parse_kubeconfig() -> None:
    kubeconfig = parse_kubeconfig(make_kubeconfig())
    assert kubeconfig["current-context"] == "admin"

    with pytest.raises(InvalidCredentialError, match="not valid YAML"):
        parse_kubeconfig(b"{ not: [yaml", cluster="clusters/example")
    with pytest.raises(InvalidCredentialError, match="not a kubeconfig"):
        parse_kubeconfig(b"just a string")
    with pytest.raises(InvalidCredentialError, match="no clusters"):
        parse_kubeconfig(b"apiVersion: v1\n")

    data = yaml.safe_load(make_kubeconfig())
    del data["users"]
    with pytest.raises(InvalidCredentialError, match="no users") as excinfo:
        parse_kubeconfig(yaml.safe_dump(data).encode(), secret=SECRET)
    assert excinfo.value.secret == SECRET


@pytest.mark.asyncio
async def test_establish(
    factory: Factory,
    config: Config,
    mock_kubernetes: MockKubernetesApi,
    mock_guest_clients: MockGuestClients,
    logger: BoundLogger,
) -> None:
    credential = make_kubeconfig("https://guest.example.com:6443")
    await publish(mock_kubernetes, config, credential)
    mock_kubernetes.set_nodes_for_test([make_node("node-1")])
    manager = factory.create_session_manager()

    session = await manager.establish(TEST_NAMESPACE, TEST_CLUSTER)
    assert session.cluster == f"{TEST_NAMESPACE}/{TEST_CLUSTER}"
    assert session.credential == credential
    assert session.kubeconfig == yaml.safe_load(credential)
    assert session.api_client is mock_guest_clients.clients[0]
    assert mock_guest_clients.kubeconfigs == [session.kubeconfig]
    assert mock_guest_clients.closed == [False]

    # Every session gets its own client, and closing one session leaves the
    # other usable.
    other = await manager.establish(TEST_NAMESPACE, TEST_CLUSTER)
    assert other.api_client is not session.api_client
    await session.close()
    assert mock_guest_clients.closed == [True, False]
    timeout = Timeout("Listing guest nodes", timedelta(seconds=5))
    nodes = await other.node_storage(logger).list(timeout)
    assert [n.metadata.name for n in nodes] == ["node-1"]
    assert mock_guest_clients.closed == [True, False]

    await other.close()
    assert mock_guest_clients.closed == [True, True]


@pytest.mark.asyncio
async def test_session_context(
    factory: Factory,
    config: Config,
    mock_kubernetes: MockKubernetesApi,
    mock_guest_clients: MockGuestClients,
) -> None:
    await publish(mock_kubernetes, config)
    manager = factory.create_session_manager()

    with pytest.raises(ValueError, match="some failure"):
        async with manager.session(TEST_NAMESPACE, TEST_CLUSTER) as session:
            assert mock_guest_clients.closed == [False]
            raise ValueError("some failure")
    assert session.api_client is mock_guest_clients.clients[0]
    assert mock_guest_clients.closed == [True]


@pytest.mark.asyncio
async def test_wait_for_publication(
    factory: Factory, config: Config, mock_kubernetes: MockKubernetesApi
) -> None:
    manager = factory.create_session_manager()
    credential = make_kubeconfig()
    timeout = Timeout("Waiting for credential", timedelta(seconds=5))
    task = asyncio.create_task(
        manager.wait_for_credential(TEST_NAMESPACE, TEST_CLUSTER, timeout)
    )
    await asyncio.sleep(0.05)
    assert not task.done()

    await publish(mock_kubernetes, config, credential)
    assert await task == credential


@pytest.mark.asyncio
async def test_credential_timeout(
    factory: Factory, config: Config, mock_kubernetes: MockKubernetesApi
) -> None:
    cluster = make_cluster(TEST_CLUSTER, TEST_NAMESPACE)
    await create_cluster(mock_kubernetes, config, cluster)
    manager = factory.create_session_manager()
    timeout = Timeout(
        "Waiting for credential",
        timedelta(milliseconds=100),
        f"{TEST_NAMESPACE}/{TEST_CLUSTER}",
    )

    with pytest.raises(CredentialUnavailableError) as excinfo:
        await manager.wait_for_credential(
            TEST_NAMESPACE, TEST_CLUSTER, timeout
        )
    assert excinfo.value.observed == "credential not published"
    assert excinfo.value.cluster == f"{TEST_NAMESPACE}/{TEST_CLUSTER}"
    assert excinfo.value.attempts > 1


@pytest.mark.asyncio
async def test_missing_key(
    factory: Factory, config: Config, mock_kubernetes: MockKubernetesApi
) -> None:
    await publish(mock_kubernetes, config, key="value")
    manager = factory.create_session_manager()

    # A malformed secret fails at once instead of waiting for the timeout.
    with pytest.raises(InvalidCredentialError) as excinfo:
        await manager.establish(TEST_NAMESPACE, TEST_CLUSTER)
    assert "kubeconfig" in str(excinfo.value)
    assert excinfo.value.secret == SECRET


@pytest.mark.asyncio
async def test_invalid_credential(
    factory: Factory,
    config: Config,
    mock_kubernetes: MockKubernetesApi,
    mock_guest_clients: MockGuestClients,
) -> None:
    await publish(mock_kubernetes, config, b"- not\n- a\n- kubeconfig\n")
    manager = factory.create_session_manager()

    with pytest.raises(InvalidCredentialError):
        await manager.establish(TEST_NAMESPACE, TEST_CLUSTER)
    assert mock_guest_clients.kubeconfigs == []


@pytest.mark.asyncio
async def test_connect_retry(
    factory: Factory,
    config: Config,
    mock_kubernetes: MockKubernetesApi,
    mock_guest_clients: MockGuestClients,
) -> None:
    await publish(mock_kubernetes, config)
    mock_guest_clients.failures = 3
    manager = factory.create_session_manager()

    async with manager.session(TEST_NAMESPACE, TEST_CLUSTER) as session:
        assert len(mock_guest_clients.kubeconfigs) == 4
        assert mock_guest_clients.clients == [session.api_client]


@pytest.mark.asyncio
async def test_connect_timeout(
    factory: Factory,
    config: Config,
    mock_kubernetes: MockKubernetesApi,
    mock_guest_clients: MockGuestClients,
) -> None:
    await publish(mock_kubernetes, config)
    mock_guest_clients.failures = 1000
    config.connect_timeout = timedelta(milliseconds=100)
    manager = factory.create_session_manager()

    with pytest.raises(ConnectivityFailedError) as excinfo:
        await manager.establish(TEST_NAMESPACE, TEST_CLUSTER)
    assert excinfo.value.observed
    assert "ConnectionRefusedError" in excinfo.value.observed
    assert mock_guest_clients.clients == []


@pytest.mark.asyncio
async def test_connect_validation_retry(
    factory: Factory,
    config: Config,
    mock_kubernetes: MockKubernetesApi,
    mock_guest_clients: MockGuestClients,
) -> None:
    await publish(mock_kubernetes, config)
    failures = 2

    def callback(method: str, *args: object) -> None:
        nonlocal failures
        if method == "list_node" and failures > 0:
            failures -= 1
            raise ApiException(status=401, reason="Unauthorized")

    mock_kubernetes.error_callback = callback
    manager = factory.create_session_manager()

    # Clients that were created but failed the read-only check are closed.
    async with manager.session(TEST_NAMESPACE, TEST_CLUSTER) as session:
        assert len(mock_guest_clients.clients) == 3
        assert mock_guest_clients.clients[2] is session.api_client
        assert mock_guest_clients.closed == [True, True, False]
    assert mock_guest_clients.closed == [True, True, True]


@pytest.mark.asyncio
async def test_connect_validation_timeout(
    factory: Factory,
    config: Config,
    mock_kubernetes: MockKubernetesApi,
    mock_guest_clients: MockGuestClients,
) -> None:
    await publish(mock_kubernetes, config)

    def callback(method: str, *args: object) -> None:
        if method == "list_node":
            raise ApiException(status=401, reason="Unauthorized")

    mock_kubernetes.error_callback = callback
    config.connect_timeout = timedelta(milliseconds=100)
    manager = factory.create_session_manager()

    with pytest.raises(ConnectivityFailedError) as excinfo:
        await manager.establish(TEST_NAMESPACE, TEST_CLUSTER)
    assert excinfo.value.observed
    assert "KubernetesError" in excinfo.value.observed
    assert len(mock_guest_clients.clients) > 1
    assert all(mock_guest_clients.closed)
