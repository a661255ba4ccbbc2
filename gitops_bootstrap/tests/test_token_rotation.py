"""Unit tests for the long-lived token store and rotation."""

from __future__ import annotations

import base64
import json

import pytest

from gitops_bootstrap._auth_errors import ClusterApiError, TokenStoreError
from gitops_bootstrap._auth_models import SecretStr
from gitops_bootstrap._cluster_api import ClusterApiClient, expect_status
from gitops_bootstrap._http import HttpResponse
from gitops_bootstrap._token_rotation import (
    TokenIdentity,
    TokenRotationController,
    compute_fingerprint,
)
from gitops_bootstrap.tests._fakes import ADMIN_TOKEN, API_URL, FakeCluster


def _controller(
    cluster: FakeCluster, sleeps: list[float] | None = None, **kwargs: object
) -> TokenRotationController:
    client = ClusterApiClient(API_URL, SecretStr(ADMIN_TOKEN), transport=cluster)
    recorded = sleeps if sleeps is not None else []
    return TokenRotationController(client, sleep=recorded.append, **kwargs)


def test_issue_creates_token_once() -> None:
    cluster = FakeCluster()
    controller = _controller(cluster)

    first = controller.issue()
    second = controller.issue()

    assert first.value == second.value
    assert first.ref == TokenIdentity().ref
    assert first.subject_identity == "system:serviceaccount:kube-system:gitops-bootstrap"
    assert first.created_at.year == 2026
    assert cluster.posted_paths().count("/api/v1/namespaces/kube-system/secrets") == 1


def test_created_secret_is_service_account_token() -> None:
    cluster = FakeCluster()
    _controller(cluster).issue()

    secret = cluster.secrets[("kube-system", "gitops-bootstrap-token")]
    assert secret["type"] == "kubernetes.io/service-account-token"
    assert secret["metadata"]["annotations"] == {
        "kubernetes.io/service-account.name": "gitops-bootstrap"
    }


def test_rotation_invalidates_previous_token() -> None:
    cluster = FakeCluster()
    controller = _controller(cluster)
    old = controller.issue()

    new = controller.rotate()

    assert new.value != old.value
    old_client = ClusterApiClient(API_URL, old.value, transport=cluster)
    new_client = ClusterApiClient(API_URL, new.value, transport=cluster)
    with pytest.raises(ClusterApiError, match="authentication failed"):
        expect_status(old_client.request("GET", "/api/v1/namespaces/default"), "old token")
    expect_status(new_client.request("GET", "/api/v1/namespaces/default"), "new token")


def test_current_returns_none_when_absent() -> None:
    assert _controller(FakeCluster()).current() is None


def test_issue_polls_until_populated() -> None:
    sleeps: list[float] = []
    controller = _controller(
        FakeCluster(populate_delay=2), sleeps, poll_attempts=5, poll_interval=1
    )

    token = controller.issue()

    assert token.value
    assert sleeps == [1, 1]


def test_issue_fails_when_never_populated() -> None:
    sleeps: list[float] = []
    controller = _controller(
        FakeCluster(populate_delay=10), sleeps, poll_attempts=3, poll_interval=1
    )

    with pytest.raises(TokenStoreError, match="not populated after 3 checks"):
        controller.issue()
    assert sleeps == [1, 1]


def test_ensure_identity_is_idempotent() -> None:
    cluster = FakeCluster()
    controller = _controller(cluster)

    controller.ensure_identity()
    controller.ensure_identity()

    assert "/api/v1/namespaces/kube-system/serviceaccounts" in cluster.objects
    assert "/apis/rbac.authorization.k8s.io/v1/clusterrolebindings" in cluster.objects


def test_malformed_token_is_rejected() -> None:
    def transport(_request: object) -> HttpResponse:
        body = {"data": {"token": "%%%"}, "metadata": {}}
        return HttpResponse(status=200, body=json.dumps(body))

    client = ClusterApiClient(API_URL, SecretStr(ADMIN_TOKEN), transport=transport)
    with pytest.raises(TokenStoreError, match="malformed"):
        TokenRotationController(client).current()


def test_fingerprint_is_short_and_stable() -> None:
    token = SecretStr("sa-token-1")
    fingerprint = compute_fingerprint(token)

    assert len(fingerprint) == 16
    assert fingerprint == compute_fingerprint(SecretStr("sa-token-1"))
    assert fingerprint != compute_fingerprint(SecretStr("sa-token-2"))
    assert "sa-token" not in fingerprint


def test_custom_identity_paths() -> None:
    cluster = FakeCluster()
    identity = TokenIdentity(namespace="ops", service_account="deployer", secret_name="deployer-tok")
    client = ClusterApiClient(API_URL, SecretStr(ADMIN_TOKEN), transport=cluster)

    token = TokenRotationController(client, identity, sleep=lambda _s: None).issue()

    assert str(token.ref) == "ops/deployer-tok"
    stored = cluster.secrets[("ops", "deployer-tok")]
    encoded = stored["data"]["token"]
    assert base64.b64decode(encoded).decode() == token.value.reveal()
