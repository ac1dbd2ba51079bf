"""Global configuration parsing."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Annotated, Self

import yaml
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    model_validator,
)
from pydantic.alias_generators import to_camel
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)
from safir.logging import LogLevel, Profile
from safir.pydantic import HumanTimedelta

from .constants import (
    CONNECT_INTERVAL,
    CONNECT_TIMEOUT,
    CREDENTIAL_INTERVAL,
    CREDENTIAL_TIMEOUT,
    DELETION_INTERVAL,
    DUMP_CREDENTIAL_TIMEOUT,
    ENV_PREFIX,
    FINALIZATION_TIMEOUT,
    KUBECONFIG_KEY,
    NODE_INTERVAL,
    NODE_TIMEOUT,
    RESTART_IGNORE_PREFIXES,
    ROLLOUT_INTERVAL,
    ROLLOUT_TIMEOUT,
)

__all__ = ["Config", "CustomResourceConfig"]


def _aliases(name: str) -> AliasChoices:
    """Accept a setting from the environment or in camel case from YAML."""
    return AliasChoices(ENV_PREFIX + name.upper(), to_camel(name))


class CustomResourceConfig(BaseModel):
    """Location of a custom resource in the Kubernetes API."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    group: Annotated[
        str,
        Field(title="API group", examples=["hypershift.openshift.io"]),
    ]

    version: Annotated[
        str, Field(title="API version", examples=["v1alpha1"])
    ]

    plural: Annotated[
        str, Field(title="API plural", examples=["hostedclusters"])
    ]


class Config(BaseSettings):
    """Configuration for hosted control plane convergence.

    Values come from an optional YAML file (see `from_file`), and any of them
    may be overridden by environment variables starting with ``HOSTEDCP_``.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX, extra="forbid", validate_by_name=True
    )

    log_level: Annotated[
        LogLevel,
        Field(
            validation_alias=_aliases("log_level"),
            title="Log level",
            description="Python logging level",
            examples=[LogLevel.INFO],
        ),
    ] = LogLevel.INFO

    profile: Annotated[
        Profile,
        Field(
            validation_alias=_aliases("profile"),
            title="Application logging profile",
            description=(
                "``production`` uses JSON logging. ``development`` uses"
                " logging that may be easier for humans to read but that"
                " cannot be easily parsed by computers."
            ),
            examples=[Profile.development],
        ),
    ] = Profile.production

    name: Annotated[
        str,
        Field(
            validation_alias=_aliases("name"),
            title="Name of application",
            description="Used when reporting problems to Slack",
        ),
    ] = "hostedcp"

    slack_webhook: Annotated[
        SecretStr | None,
        Field(
            validation_alias=_aliases("slack_webhook"),
            title="Slack webhook for alerts",
            description=(
                "If set, failures waiting for hosted clusters to converge"
                " will be reported to Slack via this webhook"
            ),
        ),
    ] = None

    cluster_api: Annotated[
        CustomResourceConfig,
        Field(
            validation_alias=_aliases("cluster_api"),
            title="Hosted cluster resource",
        ),
    ] = CustomResourceConfig(
        group="hypershift.openshift.io",
        version="v1alpha1",
        plural="hostedclusters",
    )

    nodepool_api: Annotated[
        CustomResourceConfig,
        Field(
            validation_alias=_aliases("nodepool_api"),
            title="Node pool resource",
        ),
    ] = CustomResourceConfig(
        group="hypershift.openshift.io",
        version="v1alpha1",
        plural="nodepools",
    )

    kubeconfig_key: Annotated[
        str,
        Field(
            validation_alias=_aliases("kubeconfig_key"),
            title="Guest credential key",
            description=(
                "Key in the published credential secret holding the guest"
                " kubeconfig"
            ),
        ),
    ] = KUBECONFIG_KEY

    credential_interval: Annotated[
        HumanTimedelta,
        Field(
            validation_alias=_aliases("credential_interval"),
            title="Interval between checks for a published credential",
        ),
    ] = CREDENTIAL_INTERVAL

    credential_timeout: Annotated[
        HumanTimedelta,
        Field(
            validation_alias=_aliases("credential_timeout"),
            title="How long to wait for a credential to be published",
        ),
    ] = CREDENTIAL_TIMEOUT

    connect_interval: Annotated[
        HumanTimedelta,
        Field(
            validation_alias=_aliases("connect_interval"),
            title="Interval between guest connection attempts",
        ),
    ] = CONNECT_INTERVAL

    connect_timeout: Annotated[
        HumanTimedelta,
        Field(
            validation_alias=_aliases("connect_timeout"),
            title="How long to keep trying to connect to a guest",
        ),
    ] = CONNECT_TIMEOUT

    deletion_interval: Annotated[
        HumanTimedelta,
        Field(
            validation_alias=_aliases("deletion_interval"),
            title="Interval between delete retries and existence checks",
        ),
    ] = DELETION_INTERVAL

    finalization_timeout: Annotated[
        HumanTimedelta,
        Field(
            validation_alias=_aliases("finalization_timeout"),
            title="How long to wait for deleted resources to disappear",
        ),
    ] = FINALIZATION_TIMEOUT

    rollout_interval: Annotated[
        HumanTimedelta,
        Field(
            validation_alias=_aliases("rollout_interval"),
            title="Interval between rollout and condition checks",
        ),
    ] = ROLLOUT_INTERVAL

    rollout_timeout: Annotated[
        HumanTimedelta,
        Field(
            validation_alias=_aliases("rollout_timeout"),
            title="How long to wait for rollouts and conditions",
        ),
    ] = ROLLOUT_TIMEOUT

    node_interval: Annotated[
        HumanTimedelta,
        Field(
            validation_alias=_aliases("node_interval"),
            title="Interval between guest node listings",
        ),
    ] = NODE_INTERVAL

    node_timeout: Annotated[
        HumanTimedelta,
        Field(
            validation_alias=_aliases("node_timeout"),
            title="How long to wait for guest nodes to become ready",
        ),
    ] = NODE_TIMEOUT

    dump_credential_timeout: Annotated[
        HumanTimedelta,
        Field(
            validation_alias=_aliases("dump_credential_timeout"),
            title="How long to wait for a credential when dumping a guest",
        ),
    ] = DUMP_CREDENTIAL_TIMEOUT

    restart_ignore_prefixes: Annotated[
        list[str],
        Field(
            validation_alias=_aliases("restart_ignore_prefixes"),
            title="Pods excluded from the restart audit",
            description=(
                "Control plane pods whose names start with any of these"
                " prefixes are expected to restart and are not reported"
            ),
        ),
    ] = list(RESTART_IGNORE_PREFIXES)

    @model_validator(mode="after")
    def _validate_intervals(self) -> Self:
        pairs = [
            ("credential", self.credential_interval, self.credential_timeout),
            (
                "dump credential",
                self.credential_interval,
                self.dump_credential_timeout,
            ),
            ("connect", self.connect_interval, self.connect_timeout),
            ("deletion", self.deletion_interval, self.finalization_timeout),
            ("rollout", self.rollout_interval, self.rollout_timeout),
            ("node", self.node_interval, self.node_timeout),
        ]
        for name, interval, timeout in pairs:
            if interval <= timedelta(seconds=0):
                raise ValueError(f"{name} interval must be positive")
            if interval >= timeout:
                msg = f"{name} interval must be shorter than its timeout"
                raise ValueError(msg)
        return self

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Override the sources of settings.

        Deactivate :file:`.env` and secret file support. Allow environment
        variables to override init parameters, since init parameters come
        from the YAML configuration file and environment variables should
        take precedence.
        """
        return (env_settings, init_settings)

    @classmethod
    def from_file(cls, path: Path) -> Self:
        """Load the configuration from a YAML file.

        Parameters
        ----------
        path
            Path to the configuration file.
        """
        with path.open("r") as f:
            return cls.model_validate(yaml.safe_load(f) or {})
