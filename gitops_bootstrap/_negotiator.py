"""Browser-less OAuth token negotiation against the cluster identity server.

The challenging client flow sends HTTP Basic credentials together with a
CSRF-bypass header to the authorize endpoint and asks for an implicit-grant
token. A redirect whose target carries ``access_token`` is success. The
redirect is never followed: the token is parsed straight out of the
``Location`` header so it does not reach a second request or its logs.

No check is made that the token is usable; an invalid token surfaces later at
the consuming API as a distinct failure.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from urllib.parse import parse_qs, urlsplit

from gitops_bootstrap._auth_errors import MissingToolError
from gitops_bootstrap._auth_models import Credentials, SecretStr
from gitops_bootstrap._error_classifier import NegotiationOutcome
from gitops_bootstrap._http import HttpRequest, Transport, TransportFailure, send_request

AUTHORIZE_PATH = "/oauth/authorize"
CHALLENGING_CLIENT_ID = "openshift-challenging-client"


def extract_access_token(location: str | None) -> SecretStr | None:
    """Return the ``access_token`` carried by a redirect target.

    OpenShift places the implicit-grant token in the fragment; the query
    string is accepted as well.

    Examples
    --------
    >>> extract_access_token(
    ...     "https://oauth.example/oauth/token/implicit#access_token=sha256~abc&expires_in=86400"
    ... ).reveal()
    'sha256~abc'
    >>> extract_access_token("https://oauth.example/login") is None
    True
    """
    if not location:
        return None
    parts = urlsplit(location)
    for component in (parts.fragment, parts.query):
        values = parse_qs(component).get("access_token")
        if values and values[0]:
            return SecretStr(values[0])
    return None


def authorize_url(identity_url: str) -> str:
    """Return the implicit-grant authorize URL for ``identity_url``.

    Examples
    --------
    >>> authorize_url("https://oauth.example/")
    'https://oauth.example/oauth/authorize?response_type=token&client_id=openshift-challenging-client'
    """
    base = identity_url.rstrip("/")
    return f"{base}{AUTHORIZE_PATH}?response_type=token&client_id={CHALLENGING_CLIENT_ID}"


@dataclass(slots=True)
class OAuthNegotiator:
    """Perform one challenge/redirect exchange per call."""

    transport: Transport = send_request
    connect_timeout: float = 10
    read_timeout: float = 30
    ca_certificate: Path | None = None

    def negotiate(self, identity_url: str, credentials: Credentials) -> NegotiationOutcome:
        """Attempt to obtain a bearer token for ``credentials``."""
        password = credentials.password
        if not credentials.username or password is None or not password:
            msg = "username and password are required for token negotiation"
            raise ValueError(msg)
        request = HttpRequest(
            method="GET",
            url=authorize_url(identity_url),
            headers={"X-CSRF-Token": "1"},
            basic_auth=(credentials.username, password),
            allow_redirects=False,
            connect_timeout=self.connect_timeout,
            read_timeout=self.read_timeout,
            ca_certificate=self.ca_certificate,
        )
        try:
            response = self.transport(request)
        except MissingToolError as exc:
            return NegotiationOutcome(missing_tool="ca-certificate", detail=str(exc))

        if response.transport_failed:
            return NegotiationOutcome(
                transport_failure=response.failure or TransportFailure.OTHER,
                detail=response.detail,
            )
        token = extract_access_token(response.header("location"))
        return NegotiationOutcome(token=token, status=response.status)

    __call__ = negotiate


__all__ = [
    "AUTHORIZE_PATH",
    "CHALLENGING_CLIENT_ID",
    "OAuthNegotiator",
    "authorize_url",
    "extract_access_token",
]
