#!/usr/bin/env -S uv run python
# /// script
# requires-python = ">=3.13"
# dependencies = ["cyclopts>=2.9", "pyyaml", "requests"]
# ///
"""Run one cluster-configuration pass.

This script:
- derives the pass phase from ``PHASE`` or ``ENABLE_CLUSTER_CONFIG``;
- authenticates against the cluster identity server with retry and backoff;
- issues the long-lived service-account token on the bootstrap pass; and
- installs OpenShift GitOps when ``GITOPS_REPO_URL`` is configured.

The redacted pass report is printed as JSON on stdout.
"""

from __future__ import annotations

import json
import logging
import sys

from cyclopts import App
from gitops_bootstrap._cluster_inputs import RawClusterInputs, resolve_cluster_inputs
from gitops_bootstrap._cluster_pass import PassReport, run_cluster_pass

app = App(help="Authenticate to the cluster and apply phased GitOps configuration.")
logger = logging.getLogger(__name__)


def print_summary(report: PassReport) -> None:
    """Print a human-readable summary to stderr."""
    if not report.gate_open:
        print(
            f"Phase {report.phase.value}: cluster configuration skipped.",
            file=sys.stderr,
        )
        return
    if report.ok:
        print(
            f"Phase {report.phase.value}: cluster configured "
            f"({report.attempts} negotiation attempt(s)).",
            file=sys.stderr,
        )
        if report.stored_token:
            print(f"Long-lived token stored in {report.stored_token}", file=sys.stderr)
        return
    print(f"error: {report.error}", file=sys.stderr)
    if report.remediation:
        print(f"remediation: {report.remediation}", file=sys.stderr)


@app.command()
def main(
    api_url: str | None = None,
    identity_url: str | None = None,
    username: str | None = None,
    phase: str | None = None,
    enable_cluster_config: str | None = None,
    max_retries: int | None = None,
    initial_wait: int | None = None,
    max_wait: int | None = None,
    token_namespace: str | None = None,
    token_secret_name: str | None = None,
    service_account: str | None = None,
    cluster_name: str | None = None,
    gitops_repo_url: str | None = None,
    gitops_revision: str | None = None,
    gitops_path: str | None = None,
    gitops_layers: str | None = None,
    ca_certificate: str | None = None,
) -> int:
    """Run the configuration pass selected by the phase.

    Secrets are read from ``ADMIN_PASSWORD`` and ``CLUSTER_TOKEN`` only, so
    they never appear in the process argument list.
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    inputs = resolve_cluster_inputs(
        RawClusterInputs(
            api_url=api_url,
            identity_url=identity_url,
            username=username,
            phase=phase,
            enable_cluster_config=enable_cluster_config,
            max_retries=max_retries,
            initial_wait=initial_wait,
            max_wait=max_wait,
            token_namespace=token_namespace,
            token_secret_name=token_secret_name,
            service_account=service_account,
            cluster_name=cluster_name,
            gitops_repo_url=gitops_repo_url,
            gitops_revision=gitops_revision,
            gitops_path=gitops_path,
            gitops_layers=gitops_layers,
            ca_certificate=ca_certificate,
        )
    )
    report = run_cluster_pass(inputs)
    print(json.dumps(report.to_mapping(), indent=2))
    print_summary(report)
    return 0 if report.ok else 1


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(app())
