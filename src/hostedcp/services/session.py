"""Sessions against the guest API server of a hosted cluster."""

from __future__ import annotations

import base64
import binascii
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from types import TracebackType
from typing import Any, Self

import yaml
from kubernetes_asyncio import config as kube_config
from kubernetes_asyncio.client import ApiClient
from structlog.stdlib import BoundLogger

from ..config import Config
from ..exceptions import (
    ConnectivityFailedError,
    CredentialUnavailableError,
    InvalidCredentialError,
)
from ..poller import Poller, PollOutcome
from ..storage.kubernetes.custom import ClusterStorage
from ..storage.kubernetes.node import NodeStorage
from ..storage.kubernetes.reader import SecretStorage
from ..timeout import Timeout

__all__ = [
    "ClientFactory",
    "GuestSession",
    "GuestSessionManager",
    "parse_kubeconfig",
]

type ClientFactory = Callable[[dict[str, Any]], Awaitable[ApiClient]]
"""Creates an API client from a parsed kubeconfig."""


async def _new_client(kubeconfig: dict[str, Any]) -> ApiClient:
    return await kube_config.new_client_from_config_dict(
        kubeconfig, persist_config=False
    )


def parse_kubeconfig(
    data: bytes, *, cluster: str | None = None, secret: str | None = None
) -> dict[str, Any]:
    """Parse and validate a guest credential.

    Parameters
    ----------
    data
        Contents of the published credential.
    cluster
        Identity of the cluster, for error reporting.
    secret
        Name of the secret holding the credential, for error reporting.

    Returns
    -------
    dict
        Parsed kubeconfig.

    Raises
    ------
    InvalidCredentialError
        Raised if the credential is not a kubeconfig document with at least
        one cluster, context, and user.
    """
    try:
        kubeconfig = yaml.safe_load(data)
    except yaml.YAMLError as e:
        msg = f"Guest credential is not valid YAML: {e}"
        error = InvalidCredentialError(msg, cluster=cluster, secret=secret)
        raise error from e
    if not isinstance(kubeconfig, dict):
        msg = "Guest credential is not a kubeconfig document"
        raise InvalidCredentialError(msg, cluster=cluster, secret=secret)
    for key in ("clusters", "contexts", "users"):
        if not kubeconfig.get(key):
            msg = f"Guest credential defines no {key}"
            raise InvalidCredentialError(msg, cluster=cluster, secret=secret)
    return kubeconfig


@dataclass
class GuestSession:
    """A validated connection to the guest API server of one cluster.

    Sessions are owned by whoever established them and are never shared or
    refreshed. If the credential rotates, establish a new session.
    """

    cluster: str
    """Identity (``namespace/name``) of the hosted cluster."""

    kubeconfig: dict[str, Any]
    """Parsed guest credential."""

    credential: bytes
    """Guest credential exactly as published."""

    api_client: ApiClient
    """Kubernetes API client for the guest cluster, private to the session."""

    def node_storage(self, logger: BoundLogger) -> NodeStorage:
        """Create node storage backed by the guest API server."""
        return NodeStorage(self.api_client, logger)

    async def close(self) -> None:
        """Close the underlying API client."""
        await self.api_client.close()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool | None:
        await self.close()
        return None


class GuestSessionManager:
    """Establish sessions against guest API servers.

    Establishing a session waits for the hosted control plane to publish its
    credential, then keeps trying to connect until the guest API server
    answers a read-only request. Both waits are bounded by the configured
    timeouts.

    Parameters
    ----------
    cluster_storage
        Storage for hosted clusters in the management cluster.
    secret_storage
        Storage for secrets in the management cluster.
    config
        Global configuration.
    logger
        Logger to use.
    client_factory
        Creates a Kubernetes API client from a parsed kubeconfig. Defaults to
        creating a client directly from the kubeconfig contents.
    """

    def __init__(
        self,
        *,
        cluster_storage: ClusterStorage,
        secret_storage: SecretStorage,
        config: Config,
        logger: BoundLogger,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self._clusters = cluster_storage
        self._secrets = secret_storage
        self._config = config
        self._logger = logger
        self._client_factory = client_factory or _new_client

    async def wait_for_credential(
        self, namespace: str, name: str, timeout: Timeout
    ) -> bytes:
        """Wait for a hosted cluster to publish its guest credential.

        Until the cluster exists, its status names a credential secret, and
        that secret exists, the credential is considered not yet published.

        Parameters
        ----------
        namespace
            Namespace of the hosted cluster.
        name
            Name of the hosted cluster.
        timeout
            Bound on the wait.

        Returns
        -------
        bytes
            Published credential.

        Raises
        ------
        CredentialUnavailableError
            Raised if the credential was not published before the timeout.
        InvalidCredentialError
            Raised if the credential secret exists but does not hold a
            credential under the expected key.
        """
        cluster = f"{namespace}/{name}"
        key = self._config.kubeconfig_key
        logger = self._logger.bind(namespace=namespace, name=name)

        async def check() -> PollOutcome[bytes]:
            obj = await self._clusters.get(name, namespace, timeout)
            if not obj:
                return PollOutcome.not_done("cluster does not exist")
            reference = obj.status.kubeconfig
            if not reference:
                return PollOutcome.not_done("credential not published")
            secret = await self._secrets.read(
                reference.name, namespace, timeout
            )
            if not secret:
                observed = f"secret {reference.name} does not exist"
                return PollOutcome.not_done(observed)
            data = secret.data or {}
            if key not in data:
                msg = f"Credential secret has no {key} key"
                error = InvalidCredentialError(
                    msg, cluster=cluster, secret=reference.name
                )
                return PollOutcome.fatal(error)
            try:
                credential = base64.b64decode(data[key], validate=True)
            except binascii.Error as e:
                msg = f"Credential {key} key is not valid base64"
                error = InvalidCredentialError(
                    msg, cluster=cluster, secret=reference.name
                )
                error.__cause__ = e
                return PollOutcome.fatal(error)
            logger.debug("Found guest credential", secret=reference.name)
            return PollOutcome.done(credential)

        poller = Poller(
            "guest credential",
            self._config.credential_interval,
            error_class=CredentialUnavailableError,
            logger=logger,
        )
        return await poller.poll(check, timeout)

    async def establish(self, namespace: str, name: str) -> GuestSession:
        """Establish a new session against the guest API server.

        Parameters
        ----------
        namespace
            Namespace of the hosted cluster.
        name
            Name of the hosted cluster.

        Returns
        -------
        GuestSession
            New session. The caller owns it and must close it.

        Raises
        ------
        ConnectivityFailedError
            Raised if no connection to the guest API server succeeded before
            the connection timeout.
        CredentialUnavailableError
            Raised if the credential was not published before the credential
            timeout.
        InvalidCredentialError
            Raised if the published credential is unusable.
        """
        cluster = f"{namespace}/{name}"
        logger = self._logger.bind(namespace=namespace, name=name)
        timeout = Timeout(
            "Waiting for guest credential",
            self._config.credential_timeout,
            cluster,
        )
        credential = await self.wait_for_credential(namespace, name, timeout)
        kubeconfig = parse_kubeconfig(credential, cluster=cluster)

        timeout = Timeout(
            "Connecting to guest cluster",
            self._config.connect_timeout,
            cluster,
        )

        async def connect() -> PollOutcome[GuestSession]:
            api_client = await self._client_factory(kubeconfig)
            session = GuestSession(
                cluster=cluster,
                kubeconfig=kubeconfig,
                credential=credential,
                api_client=api_client,
            )
            try:
                await session.node_storage(logger).list(timeout)
            except BaseException:
                await session.close()
                raise
            return PollOutcome.done(session)

        poller = Poller(
            "guest API server",
            self._config.connect_interval,
            error_class=ConnectivityFailedError,
            logger=logger,
        )
        session = await poller.poll(connect, timeout)
        logger.info("Established guest session")
        return session

    @asynccontextmanager
    async def session(
        self, namespace: str, name: str
    ) -> AsyncIterator[GuestSession]:
        """Establish a session that is closed when the context exits.

        Parameters
        ----------
        namespace
            Namespace of the hosted cluster.
        name
            Name of the hosted cluster.

        Yields
        ------
        GuestSession
            New session, private to the caller.
        """
        session = await self.establish(namespace, name)
        try:
            yield session
        finally:
            await session.close()
