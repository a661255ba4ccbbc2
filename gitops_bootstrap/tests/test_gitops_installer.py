"""Unit tests for the gated GitOps installer."""

from __future__ import annotations

import pytest
import yaml

from gitops_bootstrap._auth_errors import InstallerBlockedError, InstallerError
from gitops_bootstrap._auth_models import AuthResult, Phase, SecretStr
from gitops_bootstrap._gitops_installer import (
    ApplyOutcome,
    GitOpsConfig,
    GitOpsInstaller,
    applicationset_manifest,
    argocd_manifest,
    configmap_manifest,
    render_manifest,
)
from gitops_bootstrap._http import HttpResponse, TransportFailure
from gitops_bootstrap._phase_gate import evaluate_gate
from gitops_bootstrap.tests._fakes import ADMIN_TOKEN, API_URL, FakeCluster

CONFIG = GitOpsConfig(
    cluster_name="demo",
    repo_url="https://git.example.com/platform/layers.git",
    layers=("monitoring", "logging"),
)
ARGOCD_READY = {"argoproj.io/v1beta1": ["ArgoCD"]}


def _auth(token: str | None = ADMIN_TOKEN) -> AuthResult:
    return AuthResult(
        enabled=True,
        authenticated=token is not None,
        host=API_URL,
        token=SecretStr(token) if token else None,
        error="" if token else "credential_invalid: invalid credentials",
    )


def _installer(cluster: FakeCluster, sleeps: list[float] | None = None) -> GitOpsInstaller:
    recorded = sleeps if sleeps is not None else []
    return GitOpsInstaller.from_auth(
        evaluate_gate(Phase.BOOTSTRAP, API_URL),
        _auth(),
        CONFIG,
        transport=cluster,
        sleep=recorded.append,
    )


def test_blocked_when_gate_closed() -> None:
    with pytest.raises(InstallerBlockedError, match="disabled"):
        GitOpsInstaller.from_auth(evaluate_gate(Phase.INFRA_ONLY, API_URL), _auth(), CONFIG)


def test_blocked_when_not_authenticated() -> None:
    with pytest.raises(InstallerBlockedError, match="credential_invalid"):
        GitOpsInstaller.from_auth(evaluate_gate(Phase.BOOTSTRAP, API_URL), _auth(None), CONFIG)


def test_install_creates_then_reports_existing() -> None:
    cluster = FakeCluster(api_resources=ARGOCD_READY)

    first = _installer(cluster).install()
    second = _installer(cluster).install()

    assert list(first) == ["namespace", "subscription", "rbac", "argocd", "configmap", "appset"]
    assert set(first.values()) == {ApplyOutcome.CREATED}
    assert set(second.values()) == {ApplyOutcome.EXISTS}


def test_install_posts_yaml_manifests() -> None:
    cluster = FakeCluster(api_resources=ARGOCD_READY)
    _installer(cluster).install()

    post = next(r for r in cluster.requests if r.url.endswith("/applicationsets"))
    assert post.headers["Content-Type"] == "application/yaml"
    manifest = yaml.safe_load(post.body or "")
    assert manifest["kind"] == "ApplicationSet"
    assert manifest["metadata"]["namespace"] == "openshift-gitops"


def test_auth_failure_raises() -> None:
    cluster = FakeCluster(valid_tokens=())
    with pytest.raises(InstallerError, match="authentication failed"):
        _installer(cluster).namespace()


def test_unreachable_cluster_raises() -> None:
    installer = GitOpsInstaller.from_auth(
        evaluate_gate(Phase.BOOTSTRAP, API_URL),
        _auth(),
        CONFIG,
        transport=lambda _request: HttpResponse(
            failure=TransportFailure.UNREACHABLE, detail="connection refused"
        ),
    )
    with pytest.raises(InstallerError, match="unreachable"):
        installer.validate()


def test_optional_apply_skips_missing_crd() -> None:
    cluster = FakeCluster()
    endpoint = "/apis/logging.openshift.io/v1/namespaces/openshift-logging/clusterloggings"
    cluster.overrides[("POST", endpoint)] = 404

    outcome = _installer(cluster).apply_yaml_optional("Cluster logging", endpoint, "kind: X\n")

    assert outcome is ApplyOutcome.SKIPPED


def test_optional_apply_still_fails_on_auth() -> None:
    cluster = FakeCluster(valid_tokens=())
    with pytest.raises(InstallerError, match="authentication failed"):
        _installer(cluster).apply_yaml_optional("Cluster logging", "/apis/x/v1/ys", "kind: Y\n")


def test_required_apply_fails_on_missing_crd() -> None:
    cluster = FakeCluster()
    cluster.overrides[("POST", "/apis/x/v1/ys")] = 404
    with pytest.raises(InstallerError, match="unexpected HTTP 404"):
        _installer(cluster).apply_yaml("Thing", "/apis/x/v1/ys", "kind: Y\n")


def test_wait_crd_times_out_with_warning() -> None:
    sleeps: list[float] = []
    ready = _installer(FakeCluster(), sleeps).wait_crd(attempts=3)

    assert ready is False
    assert sleeps == [10, 10]


def test_wait_operator_succeeds_when_kind_served() -> None:
    cluster = FakeCluster(api_resources={"oadp.openshift.io/v1alpha1": ["DataProtectionApplication"]})
    _installer(cluster).wait_operator("oadp.openshift.io", "v1alpha1", "DataProtectionApplication")


def test_wait_operator_raises_on_timeout() -> None:
    sleeps: list[float] = []
    with pytest.raises(InstallerError, match="not ready after 4 attempts"):
        _installer(FakeCluster(), sleeps).wait_operator(
            "oadp.openshift.io", "v1alpha1", "DataProtectionApplication", attempts=4
        )
    assert len(sleeps) == 3


def test_configmap_lists_enabled_layers() -> None:
    data = configmap_manifest(CONFIG)["data"]
    assert data["cluster_name"] == "demo"
    assert data["layer_monitoring_enabled"] == "true"
    assert data["layer_logging_enabled"] == "true"


def test_applicationset_templates_layer_path() -> None:
    rendered = yaml.safe_load(render_manifest(applicationset_manifest(CONFIG)))
    elements = rendered["spec"]["generators"][0]["list"]["elements"]
    source = rendered["spec"]["template"]["spec"]["source"]

    assert elements == [{"layer": "monitoring"}, {"layer": "logging"}]
    assert source["path"] == "gitops-layers/layers/{{layer}}"
    assert rendered["spec"]["template"]["metadata"]["name"] == "demo-{{layer}}"


def test_argocd_manifest_round_trips_through_yaml() -> None:
    rendered = yaml.safe_load(render_manifest(argocd_manifest("openshift-gitops")))
    assert rendered["spec"]["sso"] == {"provider": "dex", "dex": {"openShiftOAuth": True}}
