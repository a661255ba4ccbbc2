"""Run one cluster-configuration pass: gate, bootstrap, token store, install.

A pass never raises for cluster-side failures. An unreachable cluster or a
rejected credential is reported in the :class:`PassReport` with remediation
text, so the infrastructure run that invoked the pass can still complete.
"""

from __future__ import annotations

import functools
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from gitops_bootstrap._auth_bootstrap import AuthBootstrapper
from gitops_bootstrap._auth_errors import ClusterAuthError
from gitops_bootstrap._auth_models import AuthResult, ErrorKind, Phase, StoredTokenRef
from gitops_bootstrap._cluster_api import ClusterApiClient
from gitops_bootstrap._cluster_inputs import ClusterPassInputs
from gitops_bootstrap._error_classifier import remediation
from gitops_bootstrap._gitops_installer import ApplyOutcome, GitOpsInstaller
from gitops_bootstrap._http import Transport, check_client_environment, send_request
from gitops_bootstrap._identity_discovery import discover_identity_url
from gitops_bootstrap._negotiator import OAuthNegotiator
from gitops_bootstrap._phase_gate import evaluate_gate
from gitops_bootstrap._token_rotation import TokenRotationController

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PassReport:
    """Redactable summary of one execution pass."""

    phase: Phase
    gate_open: bool
    auth: AuthResult
    attempts: int = 0
    error_kind: ErrorKind | None = None
    stored_token: StoredTokenRef | None = None
    install: dict[str, ApplyOutcome] = field(default_factory=dict)
    error: str = ""
    remediation: str = ""

    @property
    def ok(self) -> bool:
        """Return ``True`` when the pass did everything its phase allows."""
        if not self.gate_open:
            return True
        return self.auth.authenticated and not self.error

    def to_mapping(self) -> dict[str, object]:
        """Return a JSON-serialisable view that never includes a token value."""
        return {
            "phase": self.phase.value,
            "gate_open": self.gate_open,
            "ok": self.ok,
            "auth": self.auth.to_status(),
            "attempts": self.attempts,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "stored_token": str(self.stored_token) if self.stored_token else None,
            "install": {step: outcome.value for step, outcome in self.install.items()},
            "error": self.error,
            "remediation": self.remediation,
        }


def build_bootstrapper(
    inputs: ClusterPassInputs,
    *,
    transport: Transport = send_request,
    sleep: Callable[[float], None] = time.sleep,
) -> AuthBootstrapper:
    """Wire an :class:`AuthBootstrapper` to a single transport and CA bundle."""
    ca_certificate = inputs.ca_certificate
    return AuthBootstrapper(
        inputs.retry_config,
        negotiate=OAuthNegotiator(transport=transport, ca_certificate=ca_certificate),
        discover=functools.partial(
            discover_identity_url, transport=transport, ca_certificate=ca_certificate
        ),
        preflight=functools.partial(check_client_environment, ca_certificate),
        sleep=sleep,
    )


def run_cluster_pass(
    inputs: ClusterPassInputs,
    *,
    bootstrapper: AuthBootstrapper | None = None,
    transport: Transport = send_request,
    sleep: Callable[[float], None] = time.sleep,
) -> PassReport:
    """Execute the pass selected by ``inputs.phase`` and report the outcome.

    In ``BOOTSTRAP`` the long-lived service-account token is issued (or
    reused) after authentication. ``STEADY_STATE`` authenticates with the
    supplied token and leaves the store untouched, so repeating it converges.
    """
    gate = evaluate_gate(inputs.phase, inputs.api_url, inputs.identity_url)
    runner = bootstrapper or build_bootstrapper(inputs, transport=transport, sleep=sleep)
    run = runner.run(gate, inputs.credentials)
    auth = run.result

    if not gate.open:
        logger.info("Phase %s: cluster configuration skipped", gate.phase.value)
        return PassReport(phase=gate.phase, gate_open=False, auth=auth)

    token = auth.token
    if token is None:
        logger.error("Cluster authentication failed: %s", auth.error)
        return PassReport(
            phase=gate.phase,
            gate_open=True,
            auth=auth,
            attempts=run.attempt_count,
            error_kind=run.error_kind,
            error=auth.error,
            remediation=remediation(run.error_kind) if run.error_kind else "",
        )

    stored_ref: StoredTokenRef | None = None
    install: dict[str, ApplyOutcome] = {}
    try:
        if gate.phase is Phase.BOOTSTRAP:
            client = ClusterApiClient(
                gate.api_url,
                token,
                transport=transport,
                ca_certificate=inputs.ca_certificate,
            )
            controller = TokenRotationController(client, inputs.token_identity, sleep=sleep)
            controller.ensure_identity()
            stored_ref = controller.issue().ref
            logger.info("Long-lived token available at %s", stored_ref)
        if inputs.gitops is not None:
            installer = GitOpsInstaller.from_auth(
                gate,
                auth,
                inputs.gitops,
                transport=transport,
                ca_certificate=inputs.ca_certificate,
                sleep=sleep,
            )
            install = installer.install()
        else:
            logger.info("No GitOps repository configured; installer skipped")
    except ClusterAuthError as exc:
        logger.error("Cluster configuration failed: %s", exc)
        return PassReport(
            phase=gate.phase,
            gate_open=True,
            auth=auth,
            attempts=run.attempt_count,
            stored_token=stored_ref,
            install=install,
            error=str(exc),
            remediation="resolve the cluster-side error above, then re-run this pass",
        )

    return PassReport(
        phase=gate.phase,
        gate_open=True,
        auth=auth,
        attempts=run.attempt_count,
        stored_token=stored_ref,
        install=install,
    )


__all__ = ["PassReport", "build_bootstrapper", "run_cluster_pass"]
