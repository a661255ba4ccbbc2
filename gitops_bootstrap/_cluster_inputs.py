"""Resolve cluster-pass inputs from CLI parameters and the environment.

Configuration is read once, here, and handed to the bootstrap as explicit
objects. Nothing below this layer consults ``os.environ``.
"""

from __future__ import annotations

import logging
from collections import abc as cabc
from collections.abc import Callable
from typing import TypeAlias
from dataclasses import dataclass
from pathlib import Path

from gitops_bootstrap._auth_errors import RetryConfigError
from gitops_bootstrap._auth_models import (
    DEFAULT_INITIAL_WAIT,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_WAIT,
    Credentials,
    Phase,
    RetryConfig,
    SecretStr,
)
from gitops_bootstrap._gitops_installer import GITOPS_NAMESPACE, GitOpsConfig
from gitops_bootstrap._input_resolution import (
    InputResolution,
    parse_bool,
    resolve_input,
    resolve_int,
)
from gitops_bootstrap._phase_gate import resolve_phase
from gitops_bootstrap._token_rotation import (
    DEFAULT_NAMESPACE,
    DEFAULT_SECRET_NAME,
    DEFAULT_SERVICE_ACCOUNT,
    TokenIdentity,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RawClusterInputs:
    """Raw cluster-pass inputs from CLI or defaults."""

    api_url: str | None = None
    identity_url: str | None = None
    username: str | None = None
    password: str | None = None
    token: str | None = None
    phase: str | None = None
    enable_cluster_config: str | None = None
    max_retries: int | None = None
    initial_wait: int | None = None
    max_wait: int | None = None
    token_namespace: str | None = None
    token_secret_name: str | None = None
    service_account: str | None = None
    cluster_name: str | None = None
    gitops_repo_url: str | None = None
    gitops_revision: str | None = None
    gitops_path: str | None = None
    gitops_layers: str | None = None
    ca_certificate: str | None = None


@dataclass(frozen=True, slots=True)
class ClusterPassInputs:
    """Validated inputs for one execution pass."""

    phase: Phase
    api_url: str
    identity_url: str | None
    credentials: Credentials
    retry_config: RetryConfig
    token_identity: TokenIdentity
    gitops: GitOpsConfig | None
    ca_certificate: Path | None = None


_Resolver: TypeAlias = Callable[[str | Path | None, InputResolution], str | Path | None]


def resolve_retry_config(
    max_retries: int | None = None,
    initial_wait: int | None = None,
    max_wait: int | None = None,
    env: cabc.Mapping[str, str] | None = None,
) -> RetryConfig:
    """Build a validated :class:`RetryConfig` from parameters and environment.

    Examples
    --------
    >>> resolve_retry_config(env={"MAX_RETRIES": "3"}).max_attempts
    3
    """
    try:
        return RetryConfig(
            max_attempts=resolve_int(max_retries, "MAX_RETRIES", DEFAULT_MAX_ATTEMPTS, env),
            initial_wait=resolve_int(
                initial_wait, "INITIAL_WAIT_SECONDS", DEFAULT_INITIAL_WAIT, env
            ),
            max_wait=resolve_int(max_wait, "MAX_WAIT_SECONDS", DEFAULT_MAX_WAIT, env),
        )
    except RetryConfigError as exc:
        msg = f"invalid retry configuration: {exc}"
        raise SystemExit(msg) from exc


def _optional(value: str | Path | None) -> str | None:
    return str(value) if value else None


def _resolve_credentials(raw: RawClusterInputs, _resolved: _Resolver) -> Credentials:
    username = _resolved(raw.username, InputResolution(env_key="ADMIN_USERNAME"))
    password = _resolved(raw.password, InputResolution(env_key="ADMIN_PASSWORD"))
    token = _resolved(raw.token, InputResolution(env_key="CLUSTER_TOKEN"))
    return Credentials(
        username=str(username or ""),
        password=SecretStr(str(password)) if password else None,
        token=SecretStr(str(token)) if token else None,
    )


def _resolve_token_identity(raw: RawClusterInputs, _resolved: _Resolver) -> TokenIdentity:
    namespace = _resolved(
        raw.token_namespace,
        InputResolution(env_key="TOKEN_NAMESPACE", default=DEFAULT_NAMESPACE),
    )
    secret_name = _resolved(
        raw.token_secret_name,
        InputResolution(env_key="TOKEN_SECRET_NAME", default=DEFAULT_SECRET_NAME),
    )
    service_account = _resolved(
        raw.service_account,
        InputResolution(env_key="SERVICE_ACCOUNT", default=DEFAULT_SERVICE_ACCOUNT),
    )
    return TokenIdentity(
        namespace=str(namespace),
        service_account=str(service_account),
        secret_name=str(secret_name),
    )


def _resolve_gitops(raw: RawClusterInputs, _resolved: _Resolver) -> GitOpsConfig | None:
    repo_url = _resolved(raw.gitops_repo_url, InputResolution(env_key="GITOPS_REPO_URL"))
    if not repo_url:
        return None
    cluster_name = _resolved(
        raw.cluster_name, InputResolution(env_key="CLUSTER_NAME", required=True)
    )
    revision = _resolved(
        raw.gitops_revision, InputResolution(env_key="GITOPS_REVISION", default="main")
    )
    path = _resolved(
        raw.gitops_path,
        InputResolution(env_key="GITOPS_PATH", default="gitops-layers/layers"),
    )
    layers_raw = _resolved(raw.gitops_layers, InputResolution(env_key="GITOPS_LAYERS"))
    layers = tuple(
        layer.strip() for layer in str(layers_raw or "").split(",") if layer.strip()
    )
    return GitOpsConfig(
        cluster_name=str(cluster_name),
        repo_url=str(repo_url),
        revision=str(revision),
        layers_path=str(path),
        namespace=GITOPS_NAMESPACE,
        layers=layers,
    )


def resolve_cluster_inputs(
    raw: RawClusterInputs,
    env: cabc.Mapping[str, str] | None = None,
) -> ClusterPassInputs:
    """Resolve cluster-pass inputs from CLI and environment.

    The phase comes from ``PHASE`` when set. Otherwise the two-pass flag
    ``ENABLE_CLUSTER_CONFIG`` (default off) decides whether the pass touches
    the cluster, and a supplied long-lived token selects steady state.

    Examples
    --------
    >>> inputs = resolve_cluster_inputs(
    ...     RawClusterInputs(api_url="https://api.demo.example.com:6443"), env={}
    ... )
    >>> inputs.phase
    <Phase.INFRA_ONLY: 'infra_only'>
    """

    def _resolved(
        value: str | Path | None,
        resolution: InputResolution,
    ) -> str | Path | None:
        if value is not None:
            return value
        return resolve_input(None, resolution, env)

    api_url = _resolved(raw.api_url, InputResolution(env_key="CLUSTER_API_URL", required=True))
    identity_url = _resolved(raw.identity_url, InputResolution(env_key="IDENTITY_URL"))
    ca_certificate = _resolved(
        raw.ca_certificate, InputResolution(env_key="CLUSTER_CA_CERT", as_path=True)
    )
    credentials = _resolve_credentials(raw, _resolved)
    phase_raw = _resolved(raw.phase, InputResolution(env_key="PHASE"))
    enable_raw = _resolved(
        raw.enable_cluster_config, InputResolution(env_key="ENABLE_CLUSTER_CONFIG")
    )
    try:
        phase = resolve_phase(
            _optional(phase_raw),
            enable_cluster_config=parse_bool(_optional(enable_raw), default=False),
            has_stored_token=credentials.has_token,
        )
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc

    inputs = ClusterPassInputs(
        phase=phase,
        api_url=str(api_url).rstrip("/"),
        identity_url=_optional(identity_url),
        credentials=credentials,
        retry_config=resolve_retry_config(
            raw.max_retries, raw.initial_wait, raw.max_wait, env
        ),
        token_identity=_resolve_token_identity(raw, _resolved),
        gitops=_resolve_gitops(raw, _resolved),
        ca_certificate=Path(ca_certificate) if ca_certificate else None,
    )
    logger.debug("Resolved pass inputs for %s in phase %s", inputs.api_url, phase.value)
    return inputs


__all__ = [
    "ClusterPassInputs",
    "RawClusterInputs",
    "resolve_cluster_inputs",
    "resolve_retry_config",
]
