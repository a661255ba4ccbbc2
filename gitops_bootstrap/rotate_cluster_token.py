#!/usr/bin/env -S uv run python
# /// script
# requires-python = ">=3.13"
# dependencies = ["cyclopts>=2.9", "pyyaml", "requests"]
# ///
"""Rotate the long-lived service-account token used for cluster configuration.

Rotation deletes the Secret that backs the token and creates a replacement
for the same ServiceAccount. The previous token stops working immediately;
there is no overlap window. Redistribute the new token (for example by
re-running the steady-state pass with the new ``CLUSTER_TOKEN``) straight
after rotating.

The rotation itself is authenticated with a session token negotiated from
``ADMIN_USERNAME``/``ADMIN_PASSWORD`` or, failing that, with ``CLUSTER_TOKEN``.
The token being rotated cannot authenticate its own replacement.

Usage:
  ./gitops_bootstrap/rotate_cluster_token.py --api-url https://api.demo.example.com:6443
  ./gitops_bootstrap/rotate_cluster_token.py --namespace kube-system --secret-name gitops-bootstrap-token
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass

from cyclopts import App
from gitops_bootstrap._auth_errors import ClusterAuthError, TokenStoreError
from gitops_bootstrap._auth_models import Credentials, SecretStr, StoredToken
from gitops_bootstrap._cluster_api import ClusterApiClient
from gitops_bootstrap._cluster_inputs import (
    ClusterPassInputs,
    RawClusterInputs,
    resolve_cluster_inputs,
)
from gitops_bootstrap._cluster_pass import build_bootstrapper
from gitops_bootstrap._phase_gate import evaluate_gate
from gitops_bootstrap._token_rotation import (
    TokenRotationController,
    compute_fingerprint,
)

app = App(help="Rotate the long-lived cluster configuration token.")
logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RotationResult:
    """Fingerprints before and after a rotation."""

    old_fingerprint: str | None
    new_fingerprint: str
    token: StoredToken


def acting_token(inputs: ClusterPassInputs) -> SecretStr:
    """Return the token that authenticates the rotation.

    Administrator credentials win so the stored token can be rotated even
    when it is the only token at hand.
    """
    credentials = inputs.credentials
    if credentials.has_password:
        gate = evaluate_gate(inputs.phase, inputs.api_url, inputs.identity_url)
        run = build_bootstrapper(inputs).run(
            gate,
            Credentials(username=credentials.username, password=credentials.password),
        )
        if run.result.token is None:
            raise TokenStoreError(run.result.error)
        return run.result.token
    if credentials.token is None or not credentials.token:
        msg = "ADMIN_USERNAME/ADMIN_PASSWORD or CLUSTER_TOKEN is required"
        raise TokenStoreError(msg)
    return credentials.token


def rotate_token(controller: TokenRotationController, token: SecretStr) -> RotationResult:
    """Rotate the stored token and report both fingerprints.

    Raises
    ------
    TokenStoreError
        If ``token`` is the stored token itself.
    """
    current = controller.current()
    if current is not None and current.value.reveal() == token.reveal():
        msg = (
            "refusing to rotate the stored token with itself; supply administrator "
            "credentials or a different token"
        )
        raise TokenStoreError(msg)
    old_fingerprint = compute_fingerprint(current.value) if current else None
    replacement = controller.rotate()
    return RotationResult(
        old_fingerprint=old_fingerprint,
        new_fingerprint=compute_fingerprint(replacement.value),
        token=replacement,
    )


def print_rotation_summary(result: RotationResult) -> None:
    """Print the rotation summary with old and new fingerprints."""
    print("\n=== Rotation Summary ===")
    if result.old_fingerprint:
        print(f"Old fingerprint: {result.old_fingerprint}")
    else:
        print("Old fingerprint: (none - new secret)")
    print(f"New fingerprint: {result.new_fingerprint}")
    print(f"Secret: {result.token.ref}")
    print("\nThe previous token is no longer valid. Fetch the new value with:")
    print(
        f"  oc get secret {result.token.ref.secret_name} -n {result.token.ref.namespace} "
        "-o jsonpath='{.data.token}' | base64 -d"
    )


@app.command()
def main(
    api_url: str | None = None,
    identity_url: str | None = None,
    username: str | None = None,
    namespace: str | None = None,
    secret_name: str | None = None,
    service_account: str | None = None,
    ca_certificate: str | None = None,
) -> int:
    """Rotate the token and print old and new fingerprints."""
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
            phase="bootstrap",
            token_namespace=namespace,
            token_secret_name=secret_name,
            service_account=service_account,
            ca_certificate=ca_certificate,
        )
    )
    try:
        token = acting_token(inputs)
        client = ClusterApiClient(
            inputs.api_url, token, ca_certificate=inputs.ca_certificate
        )
        result = rotate_token(TokenRotationController(client, inputs.token_identity), token)
    except ClusterAuthError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    print_rotation_summary(result)
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(app())
