"""Install OpenShift GitOps through the cluster API.

The installer is the downstream consumer of a bootstrap run. It only exists
when the phase gate is open and the run produced a token; construction via
:meth:`GitOpsInstaller.from_auth` enforces both conditions.

Every create is a ``POST`` of a YAML manifest. A ``409`` means the object is
already present and counts as success, so re-running a pass is idempotent.

Examples
--------
>>> config = GitOpsConfig(cluster_name="demo", repo_url="https://git.example/layers.git")
>>> print(render_manifest(namespace_manifest(config.namespace)).splitlines()[1])
kind: Namespace
"""

from __future__ import annotations

import enum
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import yaml

from gitops_bootstrap._auth_errors import (
    ClusterApiError,
    InstallerBlockedError,
    InstallerError,
)
from gitops_bootstrap._auth_models import AuthResult
from gitops_bootstrap._cluster_api import (
    HTTP_CONFLICT,
    HTTP_NOT_FOUND,
    HTTP_OK,
    ClusterApiClient,
    expect_status,
)
from gitops_bootstrap._http import HttpResponse, Transport, send_request
from gitops_bootstrap._phase_gate import GateDecision

logger = logging.getLogger(__name__)

GITOPS_NAMESPACE = "openshift-gitops"
OPERATORS_NAMESPACE = "openshift-operators"
OPERATOR_PACKAGE = "openshift-gitops-operator"
CONFIGMAP_NAME = "cluster-gitops-config"
APPLICATIONSET_NAME = "cluster-layers"
ARGOCD_API = "/apis/argoproj.io/v1beta1"
CRD_WAIT_ATTEMPTS = 30
OPERATOR_WAIT_ATTEMPTS = 36
POLL_INTERVAL_SECONDS = 10
YAML_CONTENT_TYPE = "application/yaml"


class ApplyOutcome(enum.Enum):
    """Result of applying one manifest."""

    CREATED = "created"
    EXISTS = "exists"
    SKIPPED = "skipped"


@dataclass(frozen=True, slots=True)
class GitOpsConfig:
    """Repository and layer selection for the GitOps installation."""

    cluster_name: str
    repo_url: str
    revision: str = "main"
    layers_path: str = "gitops-layers/layers"
    namespace: str = GITOPS_NAMESPACE
    layers: tuple[str, ...] = ()


def render_manifest(manifest: dict[str, object]) -> str:
    """Render ``manifest`` as a YAML document preserving key order."""
    return yaml.safe_dump(manifest, sort_keys=False)


def namespace_manifest(namespace: str) -> dict[str, object]:
    return {
        "apiVersion": "v1",
        "kind": "Namespace",
        "metadata": {
            "name": namespace,
            "labels": {"openshift.io/cluster-monitoring": "true"},
        },
    }


def subscription_manifest() -> dict[str, object]:
    return {
        "apiVersion": "operators.coreos.com/v1alpha1",
        "kind": "Subscription",
        "metadata": {"name": OPERATOR_PACKAGE, "namespace": OPERATORS_NAMESPACE},
        "spec": {
            "channel": "latest",
            "installPlanApproval": "Automatic",
            "name": OPERATOR_PACKAGE,
            "source": "redhat-operators",
            "sourceNamespace": "openshift-marketplace",
        },
    }


def rbac_manifest(namespace: str) -> dict[str, object]:
    """Bind ``cluster-admin`` to the Argo CD application controller."""
    return {
        "apiVersion": "rbac.authorization.k8s.io/v1",
        "kind": "ClusterRoleBinding",
        "metadata": {"name": f"{namespace}-cluster-admin"},
        "roleRef": {
            "apiGroup": "rbac.authorization.k8s.io",
            "kind": "ClusterRole",
            "name": "cluster-admin",
        },
        "subjects": [
            {
                "kind": "ServiceAccount",
                "name": f"{namespace}-argocd-application-controller",
                "namespace": namespace,
            }
        ],
    }


def _resources(
    limit_cpu: str, limit_memory: str, request_cpu: str, request_memory: str
) -> dict[str, object]:
    return {
        "limits": {"cpu": limit_cpu, "memory": limit_memory},
        "requests": {"cpu": request_cpu, "memory": request_memory},
    }


def argocd_manifest(namespace: str) -> dict[str, object]:
    return {
        "apiVersion": "argoproj.io/v1beta1",
        "kind": "ArgoCD",
        "metadata": {"name": namespace, "namespace": namespace},
        "spec": {
            "controller": {
                "processors": {},
                "resources": _resources("2", "2Gi", "250m", "1Gi"),
                "sharding": {},
            },
            "ha": {"enabled": False},
            "redis": {"resources": _resources("500m", "256Mi", "250m", "128Mi")},
            "repo": {"resources": _resources("1", "1Gi", "250m", "256Mi")},
            "server": {
                "autoscale": {"enabled": False},
                "route": {
                    "enabled": True,
                    "tls": {
                        "termination": "reencrypt",
                        "insecureEdgeTerminationPolicy": "Redirect",
                    },
                },
                "service": {"type": "ClusterIP"},
            },
            "applicationSet": {"resources": _resources("2", "1Gi", "250m", "512Mi")},
            "rbac": {
                "defaultPolicy": "",
                "policy": "g, system:cluster-admins, role:admin\ng, cluster-admins, role:admin\n",
                "scopes": "[groups]",
            },
            "sso": {"provider": "dex", "dex": {"openShiftOAuth": True}},
        },
    }


def configmap_manifest(config: GitOpsConfig) -> dict[str, object]:
    """Describe the cluster and its enabled layers for the GitOps repository."""
    data = {
        "cluster_name": config.cluster_name,
        "repo_url": config.repo_url,
        "revision": config.revision,
        "layers_path": config.layers_path,
    }
    data.update({f"layer_{layer}_enabled": "true" for layer in config.layers})
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": CONFIGMAP_NAME, "namespace": config.namespace},
        "data": data,
    }


def applicationset_manifest(config: GitOpsConfig) -> dict[str, object]:
    """Generate one Argo CD Application per enabled layer."""
    return {
        "apiVersion": "argoproj.io/v1alpha1",
        "kind": "ApplicationSet",
        "metadata": {"name": APPLICATIONSET_NAME, "namespace": config.namespace},
        "spec": {
            "generators": [
                {"list": {"elements": [{"layer": layer} for layer in config.layers]}}
            ],
            "template": {
                "metadata": {"name": f"{config.cluster_name}-{{{{layer}}}}"},
                "spec": {
                    "project": "default",
                    "source": {
                        "repoURL": config.repo_url,
                        "targetRevision": config.revision,
                        "path": f"{config.layers_path}/{{{{layer}}}}",
                    },
                    "destination": {"server": "https://kubernetes.default.svc"},
                    "syncPolicy": {
                        "automated": {"prune": True, "selfHeal": True},
                        "syncOptions": ["CreateNamespace=true"],
                    },
                },
            },
        },
    }


def _lists_kind(body: str, kind: str) -> bool:
    """Return ``True`` when an APIResourceList body advertises ``kind``."""
    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        return kind.lower() in body.lower()
    wanted = kind.lower()
    for resource in payload.get("resources", []) if isinstance(payload, dict) else []:
        if str(resource.get("kind", "")).lower() == wanted:
            return True
        if str(resource.get("name", "")).lower().startswith(wanted):
            return True
    return False


class GitOpsInstaller:
    """Apply the GitOps operator, Argo CD instance and layer ApplicationSet."""

    def __init__(
        self,
        client: ClusterApiClient,
        config: GitOpsConfig,
        *,
        sleep: Callable[[float], None] = time.sleep,
        poll_interval: float = POLL_INTERVAL_SECONDS,
    ) -> None:
        self.client = client
        self.config = config
        self._sleep = sleep
        self._poll_interval = poll_interval

    @classmethod
    def from_auth(
        cls,
        gate: GateDecision,
        auth: AuthResult,
        config: GitOpsConfig,
        *,
        transport: Transport = send_request,
        ca_certificate: Path | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> GitOpsInstaller:
        """Build an installer for an authenticated, gate-open pass.

        Raises
        ------
        InstallerBlockedError
            If the gate is closed or the bootstrap run did not authenticate.
        """
        if not gate.open:
            raise InstallerBlockedError(gate.reason)
        if not auth.authenticated or auth.token is None:
            detail = auth.error or "no token available"
            msg = f"cluster authentication did not succeed: {detail}"
            raise InstallerBlockedError(msg)
        client = ClusterApiClient(
            gate.api_url,
            auth.token,
            transport=transport,
            ca_certificate=ca_certificate,
        )
        return cls(client, config, sleep=sleep)

    def _post(self, endpoint: str, manifest: str) -> HttpResponse:
        return self.client.request(
            "POST",
            endpoint,
            body=manifest,
            content_type=YAML_CONTENT_TYPE,
            accept=YAML_CONTENT_TYPE,
        )

    def apply_yaml(self, description: str, endpoint: str, manifest: str) -> ApplyOutcome:
        """POST ``manifest`` to ``endpoint``; an existing object is success."""
        logger.info("Applying: %s", description)
        try:
            response = expect_status(
                self._post(endpoint, manifest),
                description,
                accepted=(*HTTP_OK, HTTP_CONFLICT),
            )
        except ClusterApiError as exc:
            raise InstallerError(str(exc)) from exc
        if response.status == HTTP_CONFLICT:
            logger.info("%s: already exists", description)
            return ApplyOutcome.EXISTS
        return ApplyOutcome.CREATED

    def apply_yaml_optional(
        self, description: str, endpoint: str, manifest: str
    ) -> ApplyOutcome:
        """Best-effort apply for resources whose CRD may not exist yet.

        ``404`` and unexpected statuses are skipped with a warning.
        Authentication failures and an unreachable cluster still raise.
        """
        logger.info("Applying (optional): %s", description)
        response = self._post(endpoint, manifest)
        if response.transport_failed or response.status in (401, 403):
            try:
                expect_status(response, description)
            except ClusterApiError as exc:
                raise InstallerError(str(exc)) from exc
        if response.status in HTTP_OK:
            return ApplyOutcome.CREATED
        if response.status == HTTP_CONFLICT:
            return ApplyOutcome.EXISTS
        if response.status == HTTP_NOT_FOUND:
            logger.warning(
                "%s: skipped, CRD not ready yet; re-run once the operator is installed",
                description,
            )
        else:
            logger.warning(
                "%s: unexpected HTTP %s, continuing", description, response.status
            )
        return ApplyOutcome.SKIPPED

    def validate(self) -> None:
        """Check API connectivity with the bootstrap token."""
        logger.info("Validating API connectivity to %s", self.client.api_url)
        try:
            expect_status(
                self.client.request("GET", "/api/v1/namespaces/default"),
                "Testing API connectivity",
            )
        except ClusterApiError as exc:
            raise InstallerError(str(exc)) from exc

    def namespace(self) -> ApplyOutcome:
        return self.apply_yaml(
            f"Creating {self.config.namespace} namespace",
            "/api/v1/namespaces",
            render_manifest(namespace_manifest(self.config.namespace)),
        )

    def subscription(self) -> ApplyOutcome:
        return self.apply_yaml(
            "Creating GitOps operator subscription",
            f"/apis/operators.coreos.com/v1alpha1/namespaces/{OPERATORS_NAMESPACE}/subscriptions",
            render_manifest(subscription_manifest()),
        )

    def rbac(self) -> ApplyOutcome:
        return self.apply_yaml(
            "Creating cluster-admin RBAC for Argo CD",
            "/apis/rbac.authorization.k8s.io/v1/clusterrolebindings",
            render_manifest(rbac_manifest(self.config.namespace)),
        )

    def argocd(self) -> ApplyOutcome:
        return self.apply_yaml(
            "Creating Argo CD instance",
            f"{ARGOCD_API}/namespaces/{self.config.namespace}/argocds",
            render_manifest(argocd_manifest(self.config.namespace)),
        )

    def configmap(self) -> ApplyOutcome:
        return self.apply_yaml(
            f"Creating {CONFIGMAP_NAME} ConfigMap",
            f"/api/v1/namespaces/{self.config.namespace}/configmaps",
            render_manifest(configmap_manifest(self.config)),
        )

    def appset(self) -> ApplyOutcome:
        return self.apply_yaml(
            f"Creating {APPLICATIONSET_NAME} ApplicationSet",
            f"/apis/argoproj.io/v1alpha1/namespaces/{self.config.namespace}/applicationsets",
            render_manifest(applicationset_manifest(self.config)),
        )

    def wait_crd(self, attempts: int = CRD_WAIT_ATTEMPTS) -> bool:
        """Wait for the Argo CD API group; returns ``False`` on timeout.

        A timeout is only a warning: the operator may finish installing
        before the next pass.
        """
        for attempt in range(1, attempts + 1):
            response = self.client.request("GET", ARGOCD_API)
            if response.status == 200 and _lists_kind(response.body, "ArgoCD"):
                logger.info("Argo CD CRD is ready")
                return True
            logger.info("Waiting for Argo CD CRD (%d/%d)", attempt, attempts)
            if attempt < attempts:
                self._sleep(self._poll_interval)
        logger.warning("Argo CD CRD not ready after %d checks", attempts)
        return False

    def wait_operator(
        self,
        api_group: str,
        version: str,
        kind: str,
        attempts: int = OPERATOR_WAIT_ATTEMPTS,
    ) -> None:
        """Wait until ``kind`` is served under ``api_group/version``.

        Raises
        ------
        InstallerError
            If the kind is not served after ``attempts`` checks.
        """
        for attempt in range(1, attempts + 1):
            response = self.client.request("GET", f"/apis/{api_group}/{version}")
            if response.status == 200 and _lists_kind(response.body, kind):
                logger.info("%s CRD is ready (attempt %d)", kind, attempt)
                return
            logger.info(
                "Waiting for %s CRD (%d/%d, HTTP %s)",
                kind,
                attempt,
                attempts,
                response.status,
            )
            if attempt < attempts:
                self._sleep(self._poll_interval)
        msg = (
            f"{kind} CRD not ready after {attempts} attempts; "
            f"the operator for {api_group} may still be installing"
        )
        raise InstallerError(msg)

    def install(self) -> dict[str, ApplyOutcome]:
        """Run the standard installation sequence and return per-step outcomes."""
        self.validate()
        outcomes = {
            "namespace": self.namespace(),
            "subscription": self.subscription(),
            "rbac": self.rbac(),
        }
        self.wait_crd()
        outcomes["argocd"] = self.argocd()
        outcomes["configmap"] = self.configmap()
        outcomes["appset"] = self.appset()
        return outcomes


__all__ = [
    "ApplyOutcome",
    "GitOpsConfig",
    "GitOpsInstaller",
    "applicationset_manifest",
    "argocd_manifest",
    "configmap_manifest",
    "namespace_manifest",
    "rbac_manifest",
    "render_manifest",
    "subscription_manifest",
]
