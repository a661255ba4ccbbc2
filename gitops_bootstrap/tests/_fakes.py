"""In-memory stand-ins for the identity server and the cluster API."""

from __future__ import annotations

import base64
import json
from collections.abc import Iterable
from dataclasses import dataclass, field
from urllib.parse import urlsplit

from gitops_bootstrap._auth_models import Credentials, SecretStr
from gitops_bootstrap._error_classifier import NegotiationOutcome
from gitops_bootstrap._http import HttpRequest, HttpResponse, TransportFailure

ADMIN_TOKEN = "sha256~admin-session"
API_URL = "https://api.demo.example.com:6443"


@dataclass
class ScriptedNegotiator:
    """Return queued outcomes and record every call."""

    outcomes: list[NegotiationOutcome]
    calls: list[tuple[str, Credentials]] = field(default_factory=list)

    def __call__(self, identity_url: str, credentials: Credentials) -> NegotiationOutcome:
        self.calls.append((identity_url, credentials))
        if len(self.outcomes) > 1:
            return self.outcomes.pop(0)
        return self.outcomes[0]


def success(token: str = ADMIN_TOKEN) -> NegotiationOutcome:
    return NegotiationOutcome(token=SecretStr(token), status=302)


def unreachable() -> NegotiationOutcome:
    return NegotiationOutcome(
        transport_failure=TransportFailure.UNREACHABLE, detail="connection refused"
    )


def status(code: int) -> NegotiationOutcome:
    return NegotiationOutcome(status=code)


class FakeCluster:
    """Transport that behaves like a small Kubernetes API server.

    Service-account token Secrets are populated on read and their tokens
    become valid bearer tokens; deleting the Secret revokes the token.
    """

    def __init__(
        self,
        *,
        valid_tokens: Iterable[str] = (ADMIN_TOKEN,),
        api_resources: dict[str, list[str]] | None = None,
        populate_delay: int = 0,
    ) -> None:
        self.valid_tokens = set(valid_tokens)
        self.api_resources = api_resources or {}
        self.populate_delay = populate_delay
        self.objects: dict[str, dict[str, object]] = {}
        self.secrets: dict[tuple[str, str], dict[str, object]] = {}
        self.overrides: dict[tuple[str, str], int] = {}
        self.requests: list[HttpRequest] = []
        self._issued = 0
        self._pending_reads: dict[tuple[str, str], int] = {}

    def __call__(self, request: HttpRequest) -> HttpResponse:
        self.requests.append(request)
        auth = request.headers.get("Authorization")
        bearer = auth.reveal() if isinstance(auth, SecretStr) else str(auth or "")
        if bearer.removeprefix("Bearer ") not in self.valid_tokens:
            return _json(401, {"kind": "Status", "reason": "Unauthorized"})

        method = request.method.upper()
        path = urlsplit(request.url).path
        if (method, path) in self.overrides:
            return _json(self.overrides[(method, path)], {})

        parts = path.strip("/").split("/")
        if len(parts) >= 5 and parts[:2] == ["api", "v1"] and parts[4] == "secrets":
            return self._secrets(method, parts[3], parts[5] if len(parts) > 5 else None, request)
        if method == "POST":
            return self._create_object(path, request.body or "")
        if method == "GET":
            return self._discovery(path)
        return _json(405, {})

    def _secrets(
        self, method: str, namespace: str, name: str | None, request: HttpRequest
    ) -> HttpResponse:
        if method == "POST":
            payload = json.loads(request.body or "{}")
            key = (namespace, payload["metadata"]["name"])
            if key in self.secrets:
                return _json(409, {})
            self.secrets[key] = payload
            self._pending_reads[key] = self.populate_delay
            return _json(201, payload)
        assert name is not None
        key = (namespace, name)
        if method == "DELETE":
            secret = self.secrets.pop(key, None)
            if secret is None:
                return _json(404, {})
            token = _token_of(secret)
            if token:
                self.valid_tokens.discard(token)
            return _json(200, {})
        if key not in self.secrets:
            return _json(404, {})
        secret = self.secrets[key]
        if self._pending_reads.get(key, 0) > 0:
            self._pending_reads[key] -= 1
        elif not _token_of(secret):
            self._issued += 1
            token = f"sa-token-{self._issued}"
            secret["data"] = {"token": base64.b64encode(token.encode()).decode()}
            secret["metadata"]["creationTimestamp"] = f"2026-01-0{self._issued}T00:00:00Z"
            self.valid_tokens.add(token)
        return _json(200, secret)

    def _create_object(self, path: str, body: str) -> HttpResponse:
        if path in self.objects:
            return _json(409, {})
        self.objects[path] = {"body": body}
        return _json(201, {})

    def _discovery(self, path: str) -> HttpResponse:
        if path == "/api/v1/namespaces/default":
            return _json(200, {"kind": "Namespace"})
        group_version = path.removeprefix("/apis/")
        kinds = self.api_resources.get(group_version)
        if kinds is None:
            return _json(404, {})
        resources = [{"name": f"{kind.lower()}s", "kind": kind} for kind in kinds]
        return _json(200, {"kind": "APIResourceList", "resources": resources})

    def posted_paths(self) -> list[str]:
        return [
            urlsplit(request.url).path
            for request in self.requests
            if request.method.upper() == "POST"
        ]


def _token_of(secret: dict[str, object]) -> str:
    data = secret.get("data") or {}
    assert isinstance(data, dict)
    encoded = data.get("token")
    return base64.b64decode(encoded).decode() if encoded else ""


def _json(code: int, payload: object) -> HttpResponse:
    return HttpResponse(status=code, body=json.dumps(payload))
