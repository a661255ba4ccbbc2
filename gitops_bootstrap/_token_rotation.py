"""Issue and rotate the long-lived service-account token.

After the first bootstrap, the cluster holds a ``kubernetes.io/service-account-token``
Secret bound to a dedicated ServiceAccount. Downstream consumers reference
that Secret by name; the value itself is only read by this controller.

Rotation deletes the backing Secret and creates a new one for the same
ServiceAccount. The old token stops working the instant its Secret is gone:
there is no grace period, and rotation is not transactional across
consumers. Callers must re-fetch and redistribute the new token before
relying on it.
"""

from __future__ import annotations

import base64
import binascii
import datetime as dt
import hashlib
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from gitops_bootstrap._auth_errors import ClusterApiError, TokenStoreError
from gitops_bootstrap._auth_models import SecretStr, StoredToken, StoredTokenRef
from gitops_bootstrap._cluster_api import (
    HTTP_CONFLICT,
    HTTP_NOT_FOUND,
    HTTP_OK,
    ClusterApiClient,
    expect_status,
)

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "kube-system"
DEFAULT_SERVICE_ACCOUNT = "gitops-bootstrap"
DEFAULT_SECRET_NAME = "gitops-bootstrap-token"
SERVICE_ACCOUNT_ANNOTATION = "kubernetes.io/service-account.name"
SERVICE_ACCOUNT_TOKEN_TYPE = "kubernetes.io/service-account-token"
FINGERPRINT_BYTES = 8


@dataclass(frozen=True, slots=True)
class TokenIdentity:
    """ServiceAccount and Secret that back the long-lived token."""

    namespace: str = DEFAULT_NAMESPACE
    service_account: str = DEFAULT_SERVICE_ACCOUNT
    secret_name: str = DEFAULT_SECRET_NAME

    @property
    def ref(self) -> StoredTokenRef:
        return StoredTokenRef(namespace=self.namespace, secret_name=self.secret_name)

    @property
    def subject(self) -> str:
        """Return the Kubernetes username of the ServiceAccount.

        Examples
        --------
        >>> TokenIdentity().subject
        'system:serviceaccount:kube-system:gitops-bootstrap'
        """
        return f"system:serviceaccount:{self.namespace}:{self.service_account}"


def compute_fingerprint(token: SecretStr) -> str:
    """Return a truncated SHA-256 fingerprint safe to print in logs."""
    digest = hashlib.sha256(token.reveal().encode("utf-8")).hexdigest()
    return digest[: FINGERPRINT_BYTES * 2]


def _parse_timestamp(value: object) -> dt.datetime:
    if isinstance(value, str) and value:
        try:
            return dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.warning("Unparseable creationTimestamp %r", value)
    return dt.datetime.now(dt.UTC)


class TokenRotationController:
    """Manage the Secret that backs the long-lived cluster token."""

    def __init__(
        self,
        client: ClusterApiClient,
        identity: TokenIdentity | None = None,
        *,
        poll_attempts: int = 15,
        poll_interval: float = 2,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.identity = identity or TokenIdentity()
        self._poll_attempts = poll_attempts
        self._poll_interval = poll_interval
        self._sleep = sleep

    @property
    def _secrets_path(self) -> str:
        return f"/api/v1/namespaces/{self.identity.namespace}/secrets"

    def ensure_identity(self) -> None:
        """Create the ServiceAccount and its cluster-admin binding if missing."""
        identity = self.identity
        service_account = {
            "apiVersion": "v1",
            "kind": "ServiceAccount",
            "metadata": {"name": identity.service_account, "namespace": identity.namespace},
        }
        binding = {
            "apiVersion": "rbac.authorization.k8s.io/v1",
            "kind": "ClusterRoleBinding",
            "metadata": {"name": f"{identity.service_account}-cluster-admin"},
            "roleRef": {
                "apiGroup": "rbac.authorization.k8s.io",
                "kind": "ClusterRole",
                "name": "cluster-admin",
            },
            "subjects": [
                {
                    "kind": "ServiceAccount",
                    "name": identity.service_account,
                    "namespace": identity.namespace,
                }
            ],
        }
        expect_status(
            self.client.request(
                "POST",
                f"/api/v1/namespaces/{identity.namespace}/serviceaccounts",
                body=json.dumps(service_account),
            ),
            f"Creating service account {identity.service_account}",
            accepted=(*HTTP_OK, HTTP_CONFLICT),
        )
        expect_status(
            self.client.request(
                "POST",
                "/apis/rbac.authorization.k8s.io/v1/clusterrolebindings",
                body=json.dumps(binding),
            ),
            f"Binding cluster-admin to {identity.service_account}",
            accepted=(*HTTP_OK, HTTP_CONFLICT),
        )

    def current(self) -> StoredToken | None:
        """Return the stored token, or ``None`` when absent or not yet populated."""
        response = expect_status(
            self.client.request("GET", f"{self._secrets_path}/{self.identity.secret_name}"),
            f"Reading secret {self.identity.ref}",
            accepted=(*HTTP_OK, HTTP_NOT_FOUND),
        )
        if response.status == HTTP_NOT_FOUND:
            return None
        try:
            payload: dict[str, Any] = json.loads(response.body)
        except json.JSONDecodeError as exc:
            msg = f"Secret {self.identity.ref} returned invalid JSON: {exc}"
            raise TokenStoreError(msg) from exc
        encoded = (payload.get("data") or {}).get("token")
        if not encoded:
            return None
        try:
            value = base64.b64decode(encoded, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as exc:
            msg = f"Secret {self.identity.ref} holds a malformed token"
            raise TokenStoreError(msg) from exc
        metadata = payload.get("metadata") or {}
        return StoredToken(
            value=SecretStr(value),
            created_at=_parse_timestamp(metadata.get("creationTimestamp")),
            subject_identity=self.identity.subject,
            ref=self.identity.ref,
        )

    def issue(self) -> StoredToken:
        """Return the existing token, creating its Secret on first use."""
        existing = self.current()
        if existing is not None:
            logger.info("Reusing stored token %s", self.identity.ref)
            return existing
        return self._create()

    def rotate(self) -> StoredToken:
        """Destroy the current token and create a replacement.

        The previous token is invalid as soon as this returns.
        """
        self._delete()
        token = self._create()
        logger.info(
            "Rotated token %s (fingerprint %s)",
            self.identity.ref,
            compute_fingerprint(token.value),
        )
        return token

    def _delete(self) -> None:
        expect_status(
            self.client.request("DELETE", f"{self._secrets_path}/{self.identity.secret_name}"),
            f"Deleting secret {self.identity.ref}",
            accepted=(*HTTP_OK, HTTP_NOT_FOUND),
        )

    def _create(self) -> StoredToken:
        secret = {
            "apiVersion": "v1",
            "kind": "Secret",
            "type": SERVICE_ACCOUNT_TOKEN_TYPE,
            "metadata": {
                "name": self.identity.secret_name,
                "namespace": self.identity.namespace,
                "annotations": {SERVICE_ACCOUNT_ANNOTATION: self.identity.service_account},
            },
        }
        try:
            expect_status(
                self.client.request("POST", self._secrets_path, body=json.dumps(secret)),
                f"Creating secret {self.identity.ref}",
            )
        except ClusterApiError as exc:
            raise TokenStoreError(str(exc)) from exc

        for attempt in range(1, self._poll_attempts + 1):
            token = self.current()
            if token is not None:
                return token
            logger.info(
                "Waiting for token controller to populate %s (%d/%d)",
                self.identity.ref,
                attempt,
                self._poll_attempts,
            )
            if attempt < self._poll_attempts:
                self._sleep(self._poll_interval)
        msg = f"Token for {self.identity.ref} was not populated after {self._poll_attempts} checks"
        raise TokenStoreError(msg)


__all__ = [
    "DEFAULT_NAMESPACE",
    "DEFAULT_SECRET_NAME",
    "DEFAULT_SERVICE_ACCOUNT",
    "TokenIdentity",
    "TokenRotationController",
    "compute_fingerprint",
]
