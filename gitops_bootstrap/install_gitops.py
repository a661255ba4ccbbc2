#!/usr/bin/env -S uv run python
# /// script
# requires-python = ">=3.13"
# dependencies = ["cyclopts>=2.9", "pyyaml", "requests"]
# ///
"""Run a single OpenShift GitOps installer action against the cluster API.

The bearer token is read from ``CLUSTER_TOKEN`` only, and the phase gate
must be open (``PHASE`` or ``ENABLE_CLUSTER_CONFIG=true``). Actions:

  validate, namespace, subscription, rbac, wait-crd, argocd, configmap,
  appset, apply-yaml, apply-yaml-optional, wait-operator, install

Usage:
  ./gitops_bootstrap/install_gitops.py validate
  ./gitops_bootstrap/install_gitops.py apply-yaml --description "Logging operator" \\
      --endpoint /apis/operators.coreos.com/v1alpha1/namespaces/openshift-logging/subscriptions \\
      --manifest layers/logging/subscription.yaml
  ./gitops_bootstrap/install_gitops.py wait-operator --api-group oadp.openshift.io \\
      --version v1alpha1 --kind DataProtectionApplication
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from cyclopts import App
from gitops_bootstrap._auth_errors import ClusterAuthError, InstallerError
from gitops_bootstrap._auth_models import AuthResult
from gitops_bootstrap._cluster_inputs import (
    ClusterPassInputs,
    RawClusterInputs,
    resolve_cluster_inputs,
)
from gitops_bootstrap._gitops_installer import GitOpsConfig, GitOpsInstaller
from gitops_bootstrap._phase_gate import evaluate_gate

app = App(help="Run a single OpenShift GitOps installer action.")
logger = logging.getLogger(__name__)

ACTIONS = (
    "validate",
    "namespace",
    "subscription",
    "rbac",
    "wait-crd",
    "argocd",
    "configmap",
    "appset",
    "apply-yaml",
    "apply-yaml-optional",
    "wait-operator",
    "install",
)
_NEEDS_REPOSITORY = frozenset({"configmap", "appset", "install"})


def build_installer(inputs: ClusterPassInputs, action: str) -> GitOpsInstaller:
    """Build an installer from the supplied token, honouring the phase gate."""
    gate = evaluate_gate(inputs.phase, inputs.api_url, inputs.identity_url)
    token = inputs.credentials.token if inputs.credentials.has_token else None
    auth = AuthResult(
        enabled=gate.open,
        authenticated=token is not None,
        host=gate.api_url,
        token=token,
        error="" if token else "CLUSTER_TOKEN is empty; check the cluster authentication output",
    )
    config = inputs.gitops
    if config is None:
        if action in _NEEDS_REPOSITORY:
            msg = f"GITOPS_REPO_URL is required for the {action} action"
            raise InstallerError(msg)
        config = GitOpsConfig(cluster_name="", repo_url="")
    return GitOpsInstaller.from_auth(
        gate, auth, config, ca_certificate=inputs.ca_certificate
    )


def run_action(
    installer: GitOpsInstaller,
    action: str,
    *,
    description: str | None = None,
    endpoint: str | None = None,
    manifest: Path | None = None,
    api_group: str | None = None,
    version: str | None = None,
    kind: str | None = None,
) -> str:
    """Dispatch ``action`` and return a one-line result."""
    simple = {
        "namespace": installer.namespace,
        "subscription": installer.subscription,
        "rbac": installer.rbac,
        "argocd": installer.argocd,
        "configmap": installer.configmap,
        "appset": installer.appset,
    }
    if action == "validate":
        installer.validate()
        return "API connectivity verified"
    if action in simple:
        return f"{action}: {simple[action]().value}"
    if action == "wait-crd":
        return "Argo CD CRD ready" if installer.wait_crd() else "Argo CD CRD not ready yet"
    if action in ("apply-yaml", "apply-yaml-optional"):
        if not (description and endpoint and manifest):
            msg = f"{action} requires --description, --endpoint and --manifest"
            raise InstallerError(msg)
        content = manifest.read_text(encoding="utf-8")
        apply = (
            installer.apply_yaml
            if action == "apply-yaml"
            else installer.apply_yaml_optional
        )
        return f"{description}: {apply(description, endpoint, content).value}"
    if action == "wait-operator":
        if not (api_group and version and kind):
            msg = "wait-operator requires --api-group, --version and --kind"
            raise InstallerError(msg)
        installer.wait_operator(api_group, version, kind)
        return f"{kind} CRD ready"
    if action == "install":
        outcomes = installer.install()
        return ", ".join(f"{step}: {outcome.value}" for step, outcome in outcomes.items())
    msg = f"Unknown action {action!r}; valid actions: {', '.join(ACTIONS)}"
    raise InstallerError(msg)


@app.command()
def main(
    action: str,
    *,
    api_url: str | None = None,
    phase: str | None = None,
    description: str | None = None,
    endpoint: str | None = None,
    manifest: Path | None = None,
    api_group: str | None = None,
    version: str | None = None,
    kind: str | None = None,
    cluster_name: str | None = None,
    gitops_repo_url: str | None = None,
    gitops_revision: str | None = None,
    gitops_path: str | None = None,
    gitops_layers: str | None = None,
    ca_certificate: str | None = None,
) -> int:
    """Run one installer action.

    Parameters
    ----------
    action
        Installer action to run.
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    inputs = resolve_cluster_inputs(
        RawClusterInputs(
            api_url=api_url,
            phase=phase,
            cluster_name=cluster_name,
            gitops_repo_url=gitops_repo_url,
            gitops_revision=gitops_revision,
            gitops_path=gitops_path,
            gitops_layers=gitops_layers,
            ca_certificate=ca_certificate,
        )
    )
    try:
        installer = build_installer(inputs, action)
        result = run_action(
            installer,
            action,
            description=description,
            endpoint=endpoint,
            manifest=manifest,
            api_group=api_group,
            version=version,
            kind=kind,
        )
    except ClusterAuthError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    print(result)
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(app())
