"""Phase gate for cluster-internal configuration.

Cluster-internal work needs network reachability that the infrastructure
pass does not guarantee (a private cluster may only be reachable from inside
its own network). The gate is structural: in ``INFRA_ONLY`` the endpoints
handed to downstream code are replaced by an unreachable local placeholder,
so a code path that forgets to check the phase fails immediately instead of
hanging or partially succeeding.

Examples
--------
>>> decision = evaluate_gate(Phase.INFRA_ONLY, "https://api.demo.example.com:6443")
>>> decision.open, decision.api_url
(False, 'https://127.0.0.1:1')
>>> evaluate_gate(Phase.BOOTSTRAP, "https://api.demo.example.com:6443").api_url
'https://api.demo.example.com:6443'
"""

from __future__ import annotations

from dataclasses import dataclass

from gitops_bootstrap._auth_errors import GateClosedError
from gitops_bootstrap._auth_models import Phase

PLACEHOLDER_ENDPOINT = "https://127.0.0.1:1"
CLOSED_REASON = (
    "cluster configuration is disabled for this pass; establish network "
    "connectivity to the cluster, then re-run with cluster configuration enabled"
)


@dataclass(frozen=True, slots=True)
class GateDecision:
    """Endpoints that cluster-internal code is allowed to use this pass."""

    phase: Phase
    open: bool
    api_url: str
    identity_url: str | None
    reason: str = ""


def gate_open(phase: Phase) -> bool:
    """Return ``True`` when ``phase`` permits calls into the cluster."""
    return phase is not Phase.INFRA_ONLY


def evaluate_gate(
    phase: Phase,
    api_url: str,
    identity_url: str | None = None,
) -> GateDecision:
    """Return the gate decision, substituting endpoints when closed."""
    if gate_open(phase):
        return GateDecision(
            phase=phase,
            open=True,
            api_url=api_url,
            identity_url=identity_url,
        )
    return GateDecision(
        phase=phase,
        open=False,
        api_url=PLACEHOLDER_ENDPOINT,
        identity_url=PLACEHOLDER_ENDPOINT,
        reason=CLOSED_REASON,
    )


def ensure_reachable_endpoint(url: str) -> str:
    """Reject the placeholder endpoint before any request is attempted."""
    if url.rstrip("/") == PLACEHOLDER_ENDPOINT:
        raise GateClosedError(CLOSED_REASON)
    return url


def resolve_phase(
    phase: str | None,
    *,
    enable_cluster_config: bool,
    has_stored_token: bool,
) -> Phase:
    """Derive the pass phase at the CLI boundary.

    An explicit ``phase`` wins. Otherwise the two-pass flag decides whether
    cluster configuration runs at all, and a stored token selects the
    steady-state path.

    Examples
    --------
    >>> resolve_phase(None, enable_cluster_config=False, has_stored_token=True)
    <Phase.INFRA_ONLY: 'infra_only'>
    >>> resolve_phase(None, enable_cluster_config=True, has_stored_token=True)
    <Phase.STEADY_STATE: 'steady_state'>
    """
    if phase:
        return Phase.parse(phase)
    if not enable_cluster_config:
        return Phase.INFRA_ONLY
    return Phase.STEADY_STATE if has_stored_token else Phase.BOOTSTRAP


__all__ = [
    "CLOSED_REASON",
    "PLACEHOLDER_ENDPOINT",
    "GateDecision",
    "ensure_reachable_endpoint",
    "evaluate_gate",
    "gate_open",
    "resolve_phase",
]
