"""Global constants."""

from datetime import timedelta

__all__ = [
    "CONNECT_INTERVAL",
    "CONNECT_TIMEOUT",
    "CREDENTIAL_INTERVAL",
    "CREDENTIAL_TIMEOUT",
    "DELETION_INTERVAL",
    "DUMP_CREDENTIAL_TIMEOUT",
    "ENV_PREFIX",
    "FINALIZATION_TIMEOUT",
    "FINAL_READ_TIMEOUT",
    "KUBECONFIG_KEY",
    "KUBERNETES_REQUEST_TIMEOUT",
    "NODE_INTERVAL",
    "NODE_TIMEOUT",
    "RESTART_IGNORE_PREFIXES",
    "ROLLOUT_INTERVAL",
    "ROLLOUT_TIMEOUT",
    "ROOT_LOGGER",
    "STATUS_UPDATE_ATTEMPTS",
]

ENV_PREFIX = "HOSTEDCP_"
"""Prefix for environment variables overriding configuration."""

ROOT_LOGGER = "hostedcp"
"""Root logger name."""

KUBECONFIG_KEY = "kubeconfig"
"""Key in the published guest credential secret holding the kubeconfig."""

CONNECT_INTERVAL = timedelta(seconds=5)
"""How frequently to retry connecting to a guest API server."""

CONNECT_TIMEOUT = timedelta(minutes=5)
"""How long to keep trying to connect to a guest API server.

The guest API server may be published (and its credentials available) well
before it is reachable, since DNS and load balancers in front of it can take
a while to settle.
"""

CREDENTIAL_INTERVAL = timedelta(seconds=1)
"""How frequently to check whether the guest credential has been published."""

CREDENTIAL_TIMEOUT = timedelta(minutes=10)
"""How long to wait for a hosted control plane to publish its credential."""

DELETION_INTERVAL = timedelta(seconds=5)
"""How frequently to retry deletes and check for finalization."""

DUMP_CREDENTIAL_TIMEOUT = timedelta(seconds=10)
"""How long to wait for a credential when dumping a guest cluster.

Dumps are usually taken after something has gone wrong, so don't wait long
for a credential that may never appear.
"""

FINALIZATION_TIMEOUT = timedelta(minutes=10)
"""How long to wait for a deleted namespace to be finalized."""

FINAL_READ_TIMEOUT = timedelta(seconds=2)
"""Bound on a single existence check."""

KUBERNETES_REQUEST_TIMEOUT = timedelta(seconds=30)
"""How long to wait for generic one-off sequences of Kubernetes API calls."""

NODE_INTERVAL = timedelta(seconds=5)
"""How frequently to list guest nodes while waiting for readiness."""

NODE_TIMEOUT = timedelta(minutes=30)
"""How long to wait for guest nodes to become ready."""

RESTART_IGNORE_PREFIXES = ("capa-controller-manager", "cluster-autoscaler")
"""Control plane pods whose restarts are expected and not reported.

The AWS provider controller crashes on an upstream node problem detector bug
and the autoscaler restarts when leader election against the guest API server
times out. Neither indicates a control plane problem.
"""

ROLLOUT_INTERVAL = timedelta(seconds=10)
"""How frequently to check rollout and condition status."""

ROLLOUT_TIMEOUT = timedelta(minutes=30)
"""How long to wait for a rollout to complete."""

STATUS_UPDATE_ATTEMPTS = 5
"""How many times to retry a status update that lost a race with a writer."""
