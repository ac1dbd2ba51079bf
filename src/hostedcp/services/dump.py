"""Hand a guest credential to a diagnostic dump collector."""

from __future__ import annotations

import tempfile
from collections.abc import Awaitable, Callable
from pathlib import Path

from structlog.stdlib import BoundLogger

from ..config import Config
from ..timeout import Timeout
from .session import GuestSessionManager, parse_kubeconfig

__all__ = ["DumpCollector", "GuestDumper"]

type DumpCollector = Callable[[Path, Path], Awaitable[None]]
"""Writes diagnostics for a guest cluster.

Called with the path to a kubeconfig file for the guest cluster and the
directory into which to write the dump.
"""


class GuestDumper:
    """Collect diagnostics from a guest cluster.

    Collecting the diagnostics is up to the caller. This class only writes a
    freshly fetched and validated guest credential to a temporary file for
    the collector to use, and removes the file afterwards even if the
    collector fails.

    Parameters
    ----------
    session_manager
        Used to fetch the guest credential.
    config
        Global configuration.
    logger
        Logger to use.
    """

    def __init__(
        self,
        session_manager: GuestSessionManager,
        config: Config,
        logger: BoundLogger,
    ) -> None:
        self._sessions = session_manager
        self._config = config
        self._logger = logger

    async def dump(
        self,
        namespace: str,
        name: str,
        dest_dir: Path | None,
        collector: DumpCollector,
    ) -> Path | None:
        """Dump diagnostics for a guest cluster.

        Parameters
        ----------
        namespace
            Namespace of the hosted cluster.
        name
            Name of the hosted cluster.
        dest_dir
            Directory under which to write the dump. If not set, nothing is
            dumped.
        collector
            Writes the dump.

        Returns
        -------
        pathlib.Path or None
            Directory passed to the collector, or `None` if nothing was
            dumped.

        Raises
        ------
        CredentialUnavailableError
            Raised if the credential was not published within the configured
            dump credential timeout.
        InvalidCredentialError
            Raised if the published credential is unusable.
        """
        logger = self._logger.bind(namespace=namespace, name=name)
        if not dest_dir:
            logger.info("No dump directory configured, skipping guest dump")
            return None

        cluster = f"{namespace}/{name}"
        timeout = Timeout(
            "Fetching guest credential for dump",
            self._config.dump_credential_timeout,
            cluster,
        )
        credential = await self._sessions.wait_for_credential(
            namespace, name, timeout
        )
        parse_kubeconfig(credential, cluster=cluster)

        output = dest_dir / f"hostedcluster-{name}"
        f = tempfile.NamedTemporaryFile(prefix="kubeconfig-", delete=False)
        kubeconfig_path = Path(f.name)
        try:
            with f:
                f.write(credential)
            logger.info("Dumping guest cluster", output=str(output))
            await collector(kubeconfig_path, output)
        finally:
            kubeconfig_path.unlink(missing_ok=True)
        return output
