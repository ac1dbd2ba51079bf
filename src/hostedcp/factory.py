"""Component factory and process-global context management."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import aclosing, asynccontextmanager
from dataclasses import dataclass
from typing import Self

import structlog
from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient
from safir.kubernetes import initialize_kubernetes
from safir.logging import configure_logging
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from .config import Config
from .constants import ROOT_LOGGER
from .services.cluster import ClusterMonitor
from .services.dump import GuestDumper
from .services.lifecycle import ResourceLifecycleWaiter
from .services.replicas import ReplicaConvergenceController
from .services.restarts import RestartAuditor
from .services.session import ClientFactory, GuestSessionManager
from .storage.kubernetes.custom import ClusterStorage, NodePoolStorage
from .storage.kubernetes.namespace import NamespaceStorage
from .storage.kubernetes.reader import PodStorage, SecretStorage

__all__ = ["Factory", "ProcessContext"]


@dataclass(frozen=True, slots=True)
class ProcessContext:
    """Per-process global state.

    Holds the singletons shared by everything a `Factory` creates. Services
    themselves are cheap and hold no state between convergence passes, so
    they are created on demand rather than kept here.
    """

    config: Config
    """Global configuration."""

    kubernetes_client: ApiClient
    """Shared Kubernetes client for the management cluster."""

    slack_client: SlackWebhookClient | None
    """Client for reporting failures to Slack, if configured."""

    @classmethod
    def from_config(cls, config: Config) -> Self:
        """Create a new process context from the configuration.

        Kubernetes configuration must already have been loaded.

        Parameters
        ----------
        config
            Global configuration.

        Returns
        -------
        ProcessContext
            Shared context for a process.
        """
        logger = structlog.get_logger(ROOT_LOGGER)
        slack_client = None
        if config.slack_webhook:
            slack_client = SlackWebhookClient(
                config.slack_webhook.get_secret_value(), config.name, logger
            )
        return cls(
            config=config,
            kubernetes_client=client.ApiClient(),
            slack_client=slack_client,
        )

    async def aclose(self) -> None:
        """Free allocated resources."""
        await self.kubernetes_client.close()


class Factory:
    """Build convergence components.

    Uses the contents of a `ProcessContext` to construct storage and service
    objects on demand.

    Parameters
    ----------
    context
        Shared process context.
    logger
        Logger to use for messages.
    client_factory
        If given, creates Kubernetes clients for guest clusters. Used by the
        test suite.
    """

    @classmethod
    @asynccontextmanager
    async def standalone(
        cls, config: Config, client_factory: ClientFactory | None = None
    ) -> AsyncIterator[Self]:
        """Async context manager for convergence components.

        Configures logging, loads the Kubernetes configuration (in-cluster if
        available, otherwise the local kubeconfig), and closes the Kubernetes
        client on exit. Intended for drivers and the test suite.

        Parameters
        ----------
        config
            Global configuration.
        client_factory
            If given, creates Kubernetes clients for guest clusters.

        Yields
        ------
        Factory
            Newly-created factory.
        """
        configure_logging(
            name=ROOT_LOGGER,
            profile=config.profile,
            log_level=config.log_level,
        )
        await initialize_kubernetes()
        logger = structlog.get_logger(ROOT_LOGGER)
        context = ProcessContext.from_config(config)
        factory = cls(context, logger, client_factory)
        async with aclosing(factory):
            yield factory

    def __init__(
        self,
        context: ProcessContext,
        logger: BoundLogger,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self._context = context
        self._logger = logger
        self._client_factory = client_factory

    async def aclose(self) -> None:
        """Shut down the factory and free allocated resources."""
        await self._context.aclose()

    def create_cluster_monitor(self) -> ClusterMonitor:
        """Create a monitor for hosted cluster state."""
        return ClusterMonitor(
            cluster_storage=self.create_cluster_storage(),
            namespace_storage=self.create_namespace_storage(),
            config=self._context.config,
            slack_client=self._context.slack_client,
            logger=self._logger,
        )

    def create_cluster_storage(self) -> ClusterStorage:
        """Create storage for hosted clusters."""
        api = self._context.config.cluster_api
        return ClusterStorage(
            self._context.kubernetes_client,
            group=api.group,
            version=api.version,
            plural=api.plural,
            logger=self._logger,
        )

    def create_guest_dumper(self) -> GuestDumper:
        """Create a helper for dumping guest cluster diagnostics."""
        return GuestDumper(
            self.create_session_manager(), self._context.config, self._logger
        )

    def create_namespace_storage(self) -> NamespaceStorage:
        """Create storage for namespaces."""
        return NamespaceStorage(self._context.kubernetes_client, self._logger)

    def create_namespace_waiter(self) -> ResourceLifecycleWaiter:
        """Create a waiter for namespace deletion and finalization."""
        return ResourceLifecycleWaiter.for_namespaces(
            self.create_namespace_storage(),
            self._context.config.deletion_interval,
            self._logger,
        )

    def create_nodepool_storage(self) -> NodePoolStorage:
        """Create storage for node pools."""
        api = self._context.config.nodepool_api
        return NodePoolStorage(
            self._context.kubernetes_client,
            group=api.group,
            version=api.version,
            plural=api.plural,
            logger=self._logger,
        )

    def create_replica_controller(self) -> ReplicaConvergenceController:
        """Create a checker for node pool replica convergence."""
        return ReplicaConvergenceController(
            self._context.config, self._logger
        )

    def create_restart_auditor(self) -> RestartAuditor:
        """Create an auditor for control plane container restarts."""
        return RestartAuditor(
            PodStorage(self._context.kubernetes_client, self._logger),
            self._context.config.restart_ignore_prefixes,
            self._logger,
        )

    def create_session_manager(self) -> GuestSessionManager:
        """Create a manager for guest cluster sessions."""
        return GuestSessionManager(
            cluster_storage=self.create_cluster_storage(),
            secret_storage=SecretStorage(
                self._context.kubernetes_client, self._logger
            ),
            config=self._context.config,
            logger=self._logger,
            client_factory=self._client_factory,
        )
