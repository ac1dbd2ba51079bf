"""Test fixtures for hosted control plane convergence tests."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from contextlib import contextmanager
from datetime import timedelta

import pytest
import pytest_asyncio
import respx
import structlog
from pydantic import SecretStr
from safir.testing.kubernetes import MockKubernetesApi, patch_kubernetes
from safir.testing.slack import MockSlackWebhook, mock_slack_webhook
from structlog.stdlib import BoundLogger

from hostedcp.config import Config
from hostedcp.factory import Factory

from .support.constants import TEST_NAMESPACE
from .support.data import make_namespace
from .support.kubernetes import MockGuestClients, MockStatusPatches


@pytest.fixture
def config() -> Config:
    """Construct configuration with short intervals for tests."""
    return Config(
        credential_interval=timedelta(milliseconds=10),
        credential_timeout=timedelta(seconds=1),
        connect_interval=timedelta(milliseconds=10),
        connect_timeout=timedelta(seconds=1),
        deletion_interval=timedelta(milliseconds=10),
        finalization_timeout=timedelta(seconds=1),
        rollout_interval=timedelta(milliseconds=10),
        rollout_timeout=timedelta(seconds=1),
        node_interval=timedelta(milliseconds=10),
        node_timeout=timedelta(seconds=1),
        dump_credential_timeout=timedelta(milliseconds=200),
    )


@pytest_asyncio.fixture
async def factory(
    config: Config,
    mock_kubernetes: MockKubernetesApi,
    mock_guest_clients: MockGuestClients,
    mock_status: MockStatusPatches,
) -> AsyncIterator[Factory]:
    """Create a component factory for tests."""
    await mock_kubernetes.create_namespace(make_namespace(TEST_NAMESPACE))
    async with Factory.standalone(config, mock_guest_clients) as factory:
        yield factory


@pytest.fixture
def logger() -> BoundLogger:
    return structlog.get_logger("hostedcp")


@pytest.fixture
def mock_guest_clients() -> MockGuestClients:
    return MockGuestClients()


@pytest.fixture
def mock_kubernetes() -> Iterator[MockKubernetesApi]:
    with contextmanager(patch_kubernetes)() as mock:
        yield mock


@pytest.fixture
def mock_status(mock_kubernetes: MockKubernetesApi) -> MockStatusPatches:
    return MockStatusPatches(mock_kubernetes)


@pytest.fixture
def mock_slack(
    config: Config, respx_mock: respx.Router
) -> Iterator[MockSlackWebhook]:
    config.slack_webhook = SecretStr("https://slack.example.com/webhook")
    yield mock_slack_webhook(
        config.slack_webhook.get_secret_value(), respx_mock
    )
    config.slack_webhook = None
